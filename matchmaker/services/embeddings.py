"""
Onboarding Embeddings - Serialization and validated generation

Key Functions:
    - serialize_onboarding(): Onboarding answers → single delimited string
    - generate_user_embedding(): Onboarding answers → validated dense vector
    - generate_user_embeddings(): Several users in one provider call
    - is_valid_embedding(): Cache check used before reusing a stored vector

Serialization order:
    industries | goals | partnerRoles | expectations | collaboration |
    teamCulture | timeCommitment | problem (unless noIdeaYet) | projectName

Empty fields are omitted entirely.
"""

import math
import time
from typing import Any, List, Sequence

from matchmaker.exceptions import EmbeddingDimensionError, EmbeddingError
from matchmaker.middleware.metrics import record_embedding_latency
from matchmaker.schemas.onboarding import OnboardingProfile
from matchmaker.services.embedding_providers import EmbeddingProvider

FIELD_SEPARATOR = " | "


def serialize_onboarding(onboarding: Any) -> str:
    """
    Serialize onboarding answers into embedding input text.

    Args:
        onboarding: OnboardingProfile or raw onboarding JSON

    Returns:
        Delimited text, empty string if nothing was answered

    Example:
        >>> serialize_onboarding({"industries": ["Fintech"], "timeCommitment": "Full-time (40+ hours/week)"})
        'industries: Fintech | timeCommitment: Full-time (40+ hours/week)'
    """
    profile = OnboardingProfile.from_raw(onboarding)
    parts: List[str] = []

    for label, values in (
        ("industries", profile.industries),
        ("goals", profile.goals),
        ("partnerRoles", profile.partner_roles),
        ("expectations", profile.expectations),
        ("collaboration", profile.collaboration),
        ("teamCulture", profile.team_culture),
    ):
        if values:
            parts.append(f"{label}: {', '.join(values)}")

    if profile.time_commitment:
        parts.append(f"timeCommitment: {profile.time_commitment}")
    if not profile.no_idea_yet and profile.problem_to_solve:
        parts.append(f"problem: {profile.problem_to_solve}")
    if profile.project_name:
        parts.append(f"projectName: {profile.project_name}")

    return FIELD_SEPARATOR.join(parts)


def is_valid_embedding(value: Any, dimensions: int) -> bool:
    """
    Check whether a cached embedding can be reused.

    Anything that is not a list of exactly `dimensions` finite numbers is
    treated as absent.
    """
    if not isinstance(value, list) or len(value) != dimensions:
        return False
    return all(
        isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)
        for v in value
    )


def generate_user_embedding(onboarding: Any, provider: EmbeddingProvider) -> List[float]:
    """
    Generate an embedding for one user's onboarding answers.

    Args:
        onboarding: OnboardingProfile or raw onboarding JSON
        provider: Embedding backend

    Returns:
        Embedding of exactly provider.dimensions floats

    Raises:
        EmbeddingDimensionError: If the backend returned the wrong length
        Exception: Whatever the backend raised
    """
    text = serialize_onboarding(onboarding)

    start_time = time.perf_counter()
    embedding = [float(v) for v in provider.embed(text)]
    record_embedding_latency(getattr(provider, "name", type(provider).__name__), time.perf_counter() - start_time)

    if len(embedding) != provider.dimensions:
        raise EmbeddingDimensionError(len(embedding), provider.dimensions)
    return embedding


def generate_user_embeddings(onboardings: Sequence[Any], provider: EmbeddingProvider) -> List[List[float]]:
    """
    Generate embeddings for several users with one embed_batch call.

    Vectors are returned unchecked, in input order; callers validate each
    one and drop the ones with the wrong length.

    Raises:
        EmbeddingError: If the backend returned a different number of vectors
        Exception: Whatever the backend raised
    """
    if not onboardings:
        return []
    texts = [serialize_onboarding(o) for o in onboardings]

    start_time = time.perf_counter()
    embeddings = [[float(v) for v in e] for e in provider.embed_batch(texts)]
    record_embedding_latency(getattr(provider, "name", type(provider).__name__), time.perf_counter() - start_time)

    if len(embeddings) != len(texts):
        raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(embeddings)}")
    return embeddings
