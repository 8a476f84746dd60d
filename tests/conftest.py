"""
Shared fixtures: in-memory SQLite store, profile factory, onboarding data.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from matchmaker.database import init_db
from matchmaker.models import Profile
from matchmaker.services.embedding_providers import HashEmbeddingProvider
from matchmaker.services.store import SqlAlchemyMatchStore


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return SqlAlchemyMatchStore(session_factory)


@pytest.fixture
def provider():
    return HashEmbeddingProvider(dimensions=64)


@pytest.fixture
def add_profile(session_factory):
    """Insert a profile row and return its id."""

    def _add(profile_id, onboarding=None, completed=True, embedding=None, **fields):
        fields.setdefault("display_name", profile_id.title())
        with session_factory() as session:
            session.add(
                Profile(
                    id=profile_id,
                    onboarding_completed=completed,
                    project_preferences=onboarding,
                    text_embedding=embedding,
                    **fields,
                )
            )
            session.commit()
        return profile_id

    return _add


@pytest.fixture
def full_onboarding():
    """Onboarding answers with every category populated."""
    return {
        "industries": ["AI/Machine Learning", "Fintech"],
        "problemToSolve": "Small businesses cannot forecast cash flow",
        "noIdeaYet": False,
        "goals": ["Launch MVP quickly", "Pursue technical innovation"],
        "partnerRoles": ["Developer/Engineer"],
        "expectations": ["Equal equity split"],
        "collaboration": ["Fast iterative execution", "Data-driven decisions"],
        "timeCommitment": "Full-time (40+ hours/week)",
        "teamCulture": ["Remote first"],
        "projectName": "Cashcast",
        "decideWithPartner": False,
    }
