"""
Onboarding Vectorizer - Categorical feature vectors for co-founder matching

Turns a user's onboarding answers into presence vectors over fixed
vocabularies plus one ordinal time-commitment level.

Feature families:
    - industry_weights (40 industries)
    - role_preferences (6 partner roles)
    - collaboration_style (6 styles)
    - goal_alignment (6 goals)
    - time_commitment_level (0.25 / 0.5 / 0.75 / 1.0, default 0.5)

Every vocabulary entry is always present as a key (1.0 selected, 0.0 not).
Answers outside the vocabulary are ignored.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from matchmaker.schemas.onboarding import OnboardingProfile

INDUSTRIES: List[str] = [
    # Deep tech & infrastructure
    "AI/Machine Learning", "DevTools", "Cybersecurity", "Cloud/Infrastructure", "Blockchain",
    # Finance & enterprise
    "Fintech", "InsurTech", "HR/People", "LegalTech", "Enterprise SaaS",
    # Education
    "EdTech", "Online Learning", "Skill Development", "Language Learning", "Assessment Tools",
    # Health
    "Digital Health", "Telemedicine", "Mental Health", "Fitness Tech", "Medical Devices",
    # Climate
    "Clean Energy", "Carbon Management", "Sustainable Living", "Green Transport", "Circular Economy",
    # Commerce
    "E-commerce", "Social Commerce", "Supply Chain", "Consumer Apps", "Marketplaces",
    # Media
    "Content Creation", "Gaming", "Social Media", "Streaming", "Creator Economy",
    # Mobility
    "Urban Mobility", "Logistics", "Travel Tech", "Autonomous Systems", "Delivery Tech",
]

ROLES: List[str] = [
    "Developer/Engineer",
    "Designer (UI/UX)",
    "Product Manager",
    "Business/Marketing",
    "Data Scientist",
    "Domain Expert",
]

COLLABORATION_STYLES: List[str] = [
    "Fast iterative execution",
    "Regular meetings (1-2x/week)",
    "Autonomous role division",
    "Deep discussion focused",
    "Data-driven decisions",
    "Intuitive and flexible approach",
]

GOALS: List[str] = [
    "Launch MVP quickly",
    "Build long-term growth foundation",
    "Community building",
    "Learn through experimentation",
    "Create social impact",
    "Pursue technical innovation",
]


@dataclass(frozen=True)
class FeatureVector:
    """
    Categorical representation of one user's onboarding answers.

    Attributes:
        industry_weights: Industry -> 1.0 / 0.0
        role_preferences: Partner role -> 1.0 / 0.0
        collaboration_style: Collaboration style -> 1.0 / 0.0
        goal_alignment: Goal -> 1.0 / 0.0
        time_commitment_level: Ordinal level in [0, 1]
    """
    industry_weights: Dict[str, float]
    role_preferences: Dict[str, float]
    collaboration_style: Dict[str, float]
    goal_alignment: Dict[str, float]
    time_commitment_level: float


def presence_vector(vocabulary: List[str], selected: List[str]) -> Dict[str, float]:
    """Map every vocabulary entry to 1.0 if selected, else 0.0."""
    chosen = set(selected)
    return {term: 1.0 if term in chosen else 0.0 for term in vocabulary}


def create_feature_vector(onboarding: Any) -> FeatureVector:
    """
    Build a FeatureVector from onboarding answers.

    Args:
        onboarding: OnboardingProfile or raw onboarding JSON (any shape)

    Returns:
        FeatureVector with every vocabulary key present
    """
    profile = OnboardingProfile.from_raw(onboarding)

    return FeatureVector(
        industry_weights=presence_vector(INDUSTRIES, profile.industries),
        role_preferences=presence_vector(ROLES, profile.partner_roles),
        collaboration_style=presence_vector(COLLABORATION_STYLES, profile.collaboration),
        goal_alignment=presence_vector(GOALS, profile.goals),
        time_commitment_level=profile.time_commitment_level,
    )
