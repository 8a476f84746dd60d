"""
Onboarding answers - the single normalization boundary

Onboarding JSON arrives from the profile row with whatever shape the
client stored: lists, strings, nulls or missing keys. OnboardingProfile
turns it into a fully typed value once; the vectorizer and the embedding
generator only ever see this model.

Rules:
    - collection fields that are not lists become []
    - non-string or blank list items are dropped, duplicates removed
    - text fields that are not strings become ""
    - flags that are not booleans become False
"""

from typing import Any, List, Mapping

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

# Ordinal categories for time commitment
TIME_COMMITMENT_LEVELS = {
    "Light involvement (5-10 hours/week)": 0.25,
    "Side project (10-15 hours/week)": 0.5,
    "Part-time (20-30 hours/week)": 0.75,
    "Full-time (40+ hours/week)": 1.0,
}


class OnboardingProfile(BaseModel):
    """Typed onboarding answers of one user."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    industries: List[str] = []
    problem_to_solve: str = ""
    no_idea_yet: bool = False
    goals: List[str] = []
    partner_roles: List[str] = []
    expectations: List[str] = []
    collaboration: List[str] = []
    time_commitment: str = ""
    team_culture: List[str] = []
    project_name: str = ""
    decide_with_partner: bool = False

    @field_validator(
        "industries",
        "goals",
        "partner_roles",
        "expectations",
        "collaboration",
        "team_culture",
        mode="before",
    )
    @classmethod
    def _normalize_collection(cls, value: Any) -> List[str]:
        if not isinstance(value, (list, tuple)):
            return []
        items: List[str] = []
        for item in value:
            if not isinstance(item, str):
                continue
            item = item.strip()
            if item and item not in items:
                items.append(item)
        return items

    @field_validator("problem_to_solve", "time_commitment", "project_name", mode="before")
    @classmethod
    def _normalize_text(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    @field_validator("no_idea_yet", "decide_with_partner", mode="before")
    @classmethod
    def _normalize_flag(cls, value: Any) -> bool:
        return value if isinstance(value, bool) else False

    @classmethod
    def from_raw(cls, data: Any) -> "OnboardingProfile":
        """
        Build a profile from stored onboarding JSON.

        Args:
            data: Mapping with camelCase (or snake_case) keys, an existing
                OnboardingProfile, or anything else (treated as empty)

        Returns:
            OnboardingProfile, never raises on malformed input
        """
        if isinstance(data, OnboardingProfile):
            return data
        if not isinstance(data, Mapping):
            return cls()
        return cls.model_validate({str(k): v for k, v in data.items()})

    @property
    def time_commitment_level(self) -> float:
        """Ordinal level in [0, 1]; unknown or missing values map to 0.5."""
        return TIME_COMMITMENT_LEVELS.get(self.time_commitment, 0.5)
