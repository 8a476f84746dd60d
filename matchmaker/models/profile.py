"""
Profile Model - Public profile, onboarding answers and embedding cache

One row per user. The matching engine reads three columns:

    - onboarding_completed: eligibility flag for the candidate pool
    - project_preferences: onboarding answers (JSON, camelCase keys)
    - text_embedding: cached dense embedding of the onboarding answers

The remaining public fields are only used to enrich ranked results.
"""

from sqlalchemy import Column, String, Boolean, JSON, DateTime
from sqlalchemy.sql import func
from matchmaker.database import Base
import uuid


class Profile(Base):
    """
    User profile for co-founder matching.

    Attributes:
        display_name/headline/role/status/avatar_url: Public card fields
        skills/work_styles/industries: Public tag lists (JSON arrays)
        github/x/website: Public links
        onboarding_completed: True once onboarding was submitted
        project_preferences: Raw onboarding answers, may be null or malformed
        text_embedding: Cached embedding (JSON array), null until generated
    """

    __tablename__ = "profiles"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    display_name = Column(String(200), nullable=False, default="")
    headline = Column(String(500), nullable=True)
    role = Column(String(200), nullable=True)
    status = Column(String(100), nullable=True)
    avatar_url = Column(String(2000), nullable=True)
    skills = Column(JSON, nullable=False, default=list)
    work_styles = Column(JSON, nullable=False, default=list)
    industries = Column(JSON, nullable=False, default=list)
    github = Column(String(500), nullable=True)
    x = Column(String(500), nullable=True)
    website = Column(String(500), nullable=True)
    onboarding_completed = Column(Boolean, nullable=False, default=False, index=True)
    project_preferences = Column(JSON, nullable=True)
    text_embedding = Column(JSON, nullable=True)  # Store as JSON array
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
