"""
Similarity Calculator - Co-founder compatibility scoring

Match Score Composition:
    Categorical similarity (primary, 90% of the final score):
        - Industry overlap (30%): cosine over industry presence vectors
        - Role preferences (25%): cosine over partner role presence vectors
        - Collaboration style (20%): cosine over style presence vectors
        - Goal alignment (15%): cosine over goal presence vectors
        - Time commitment (10%): 1 - |level_a - level_b|

    Embedding similarity (secondary, 10% of the final score):
        - Cosine similarity of the two onboarding embeddings

Score Range: 0-100 integers, rounded half up.

A category where either user selected nothing scores 0 but keeps its full
weight, so users with empty categories are penalized rather than excused.
"""

import math
from typing import Any, Dict, Optional, Sequence

import numpy as np

from matchmaker.services.vectorizer import FeatureVector

# Categorical sub-weights (sum to 1.0)
CATEGORY_WEIGHTS: Dict[str, float] = {
    "industry": 0.30,
    "role": 0.25,
    "collaboration": 0.20,
    "goals": 0.15,
    "time_commitment": 0.10,
}

# Final blend of categorical and embedding scores
CATEGORICAL_BLEND_WEIGHT = 0.9
EMBEDDING_BLEND_WEIGHT = 0.1


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 always rounding up."""
    return int(math.floor(value + 0.5))


def vector_similarity(vec1: Dict[str, float], vec2: Dict[str, float]) -> float:
    """
    Cosine similarity of two presence vectors over the union of their keys.

    Keys missing on one side count as 0.

    Returns:
        Similarity in [0, 1]; 0.0 if either side has zero norm
    """
    keys = list(dict.fromkeys([*vec1.keys(), *vec2.keys()]))
    if not keys:
        return 0.0

    a = np.array([vec1.get(k, 0.0) for k in keys], dtype=float)
    b = np.array([vec2.get(k, 0.0) for k in keys], dtype=float)

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))


def category_scores(vector1: FeatureVector, vector2: FeatureVector) -> Dict[str, float]:
    """Per-category similarity in [0, 1], keyed like CATEGORY_WEIGHTS."""
    return {
        "industry": vector_similarity(vector1.industry_weights, vector2.industry_weights),
        "role": vector_similarity(vector1.role_preferences, vector2.role_preferences),
        "collaboration": vector_similarity(vector1.collaboration_style, vector2.collaboration_style),
        "goals": vector_similarity(vector1.goal_alignment, vector2.goal_alignment),
        "time_commitment": 1 - abs(vector1.time_commitment_level - vector2.time_commitment_level),
    }


def calculate_categorical_similarity(vector1: FeatureVector, vector2: FeatureVector) -> int:
    """
    Calculate the weighted categorical compatibility of two users.

    Args:
        vector1: Requester feature vector
        vector2: Candidate feature vector

    Returns:
        Integer score 0-100

    Example:
        >>> v = create_feature_vector(full_onboarding)
        >>> calculate_categorical_similarity(v, v)
        100
    """
    scores = category_scores(vector1, vector2)
    total = sum(scores[name] * weight for name, weight in CATEGORY_WEIGHTS.items())
    weights = sum(CATEGORY_WEIGHTS.values())
    return round_half_up(total / weights * 100)


def calculate_cosine_similarity(vec1: Optional[Sequence[Any]], vec2: Optional[Sequence[Any]]) -> float:
    """
    Calculate cosine similarity between two embedding vectors.

    Formula: cos(θ) = (a · b) / (||a|| × ||b||)

    Never raises: missing, empty, unequal-length, non-numeric or zero-norm
    input yields 0.0. Non-finite entries count as 0.

    Returns:
        Similarity from -1 (opposite) to 1 (identical)
    """
    if not isinstance(vec1, (list, tuple)) or not isinstance(vec2, (list, tuple)):
        return 0.0
    if len(vec1) == 0 or len(vec2) == 0 or len(vec1) != len(vec2):
        return 0.0

    try:
        a = np.asarray(vec1, dtype=float)
        b = np.asarray(vec2, dtype=float)
    except (TypeError, ValueError):
        return 0.0
    if a.ndim != 1 or b.ndim != 1:
        return 0.0

    a = np.where(np.isfinite(a), a, 0.0)
    b = np.where(np.isfinite(b), b, 0.0)

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))


def calculate_embedding_similarity(vec1: Optional[Sequence[Any]], vec2: Optional[Sequence[Any]]) -> float:
    """Embedding cosine similarity scaled to 0-100 (negative similarity clamps to 0)."""
    return max(0.0, min(100.0, calculate_cosine_similarity(vec1, vec2) * 100))


def blend_scores(categorical_score: float, embedding_score: float) -> int:
    """Final candidate score: 90% categorical + 10% embedding, rounded half up."""
    return round_half_up(
        categorical_score * CATEGORICAL_BLEND_WEIGHT + embedding_score * EMBEDDING_BLEND_WEIGHT
    )
