"""Child profile model (read-only to this service)."""

from pydantic import BaseModel


class ChildProfile(BaseModel):
    """A child's intake profile as written by the parent questionnaire."""

    id: str
    family_id: str = ""
    name: str = ""
    age: int | None = None
    gender: str = ""
    current_concerns: str = ""
    triggers: str = ""
    parent_goals: str = ""
    reason_for_adding: str = ""
    background: str = ""
    family_dynamics: str = ""
    social_situation: str = ""
    school_info: str = ""
    coping_strategies: str = ""
    previous_therapy: str = ""
    interests: str = ""
    emergency_contacts: str = ""
    profile_completed: bool = False
    is_active: bool = True

    @property
    def concerns(self) -> list[str]:
        """``current_concerns`` split on commas."""
        return [c.strip() for c in self.current_concerns.split(",") if c.strip()]

    @property
    def is_complete(self) -> bool:
        """Required questionnaire answers are present and the profile is marked done."""
        required = (self.name, self.current_concerns, self.parent_goals, self.reason_for_adding)
        return all(v.strip() for v in required) and self.profile_completed
