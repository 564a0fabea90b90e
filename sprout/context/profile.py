"""Render a ChildProfile into the profile section of the prompt."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sprout.children.models import ChildProfile

YOUNG = "young"
MIDDLE = "middle"
TEEN = "teen"

AGE_BAND_RULES: dict[str, str] = {
    YOUNG: """\
AGE-APPROPRIATE APPROACH (AGES 8 AND UNDER):
- Use only simple, concrete words: scared, happy, sad, fun, hard.
- Keep sentences short.
- Make ideas playful and visual; use {play} as a metaphor when it fits.
- Offer concrete actions such as holding a favourite toy or taking big dragon breaths.
- Avoid abstract words like "overwhelming" or "situations".""",
    MIDDLE: """\
AGE-APPROPRIATE APPROACH (AGES 9 TO 12):
- Use age-appropriate emotional vocabulary and name feelings clearly.
- Focus on problem-solving and practical coping skills.
- Support friendships and peer relationships.
- Balance growing independence with family connection.
- Build self-awareness and emotional regulation, including around school.""",
    TEEN: """\
AGE-APPROPRIATE APPROACH (AGES 13 AND OVER):
- Respect growing independence, privacy and identity.
- Engage with social complexity and peer pressure honestly.
- Support self-expression, future planning and independent decisions.
- Encourage critical thinking about emotions and relationships.
- Acknowledge that family relationships are changing.""",
}

AGE_UNKNOWN_RULES = """\
AGE-APPROPRIATE APPROACH:
- Age is not recorded; listen for cues and match the child's own vocabulary."""

_FIELDS = (
    ("CURRENT CONCERNS", "current_concerns", "None recorded"),
    ("KNOWN TRIGGERS", "triggers", "No specific triggers identified yet"),
    ("PARENT/GUARDIAN GOALS", "parent_goals", "None recorded"),
    ("BACKGROUND", "background", "No significant background events noted"),
    ("FAMILY DYNAMICS", "family_dynamics", "No specific family dynamics noted"),
    ("SOCIAL SITUATION", "social_situation", "No specific social situation noted"),
    ("SCHOOL", "school_info", "No specific school information noted"),
    ("CURRENT COPING STRATEGIES", "coping_strategies", "No coping strategies identified yet"),
    ("PREVIOUS THERAPY", "previous_therapy", "No previous therapy noted"),
    ("INTERESTS & HOBBIES", "interests", "No specific interests noted yet"),
)


def age_band(age: int | None) -> str | None:
    """Map an age to ``young`` (<=8), ``middle`` (9-12) or ``teen`` (13+)."""
    if age is None:
        return None
    if age <= 8:
        return YOUNG
    if age <= 12:
        return MIDDLE
    return TEEN


def age_rules(age: int | None, interests: str = "") -> str:
    band = age_band(age)
    if band is None:
        return AGE_UNKNOWN_RULES
    return AGE_BAND_RULES[band].replace("{play}", interests.strip() or "a game")


def _personalization(profile: ChildProfile) -> str:
    name = profile.name or "the child"
    lines = [f"PERSONALIZATION FOR {name.upper()}:"]
    interests = profile.interests.strip()
    if interests:
        lines.append(
            f"- {name} enjoys {interests}; use these as metaphors and in coping "
            "ideas when they are relevant, using the actual interests rather than generic examples."
        )
    else:
        lines.append(
            "- No interests recorded yet; personalise from what the child mentions."
        )
    family = profile.family_dynamics.strip()
    if family:
        lines.append(
            f"- If {name} talks about home, moving or missing someone, acknowledge the "
            f"family situation ({family}) as a therapist would, never as a family member."
        )
    if profile.coping_strategies.strip():
        lines.append(f"- Build on what already helps {name} before suggesting anything new.")
    if profile.triggers.strip():
        lines.append(f"- Approach these carefully: {profile.triggers.strip()}.")
    return "\n".join(lines)


def render_profile(profile: ChildProfile) -> str:
    """Full profile section: facts, age-band rules and personalization rules."""
    name = profile.name or "Not provided"
    age = f"{profile.age} years old" if profile.age is not None else "Not provided"
    parts = [
        "CHILD PROFILE:",
        f"- Name: {name} (use this name in replies)",
        f"- Age: {age}",
        f"- Gender: {profile.gender or 'Not specified'}",
        f"- Reason for support: {profile.reason_for_adding or 'Not provided'}",
    ]
    for label, attr, fallback in _FIELDS:
        value = getattr(profile, attr).strip()
        parts.append(f"\n{label}:\n{value or fallback}")
    return "\n".join(
        [
            "\n".join(parts),
            age_rules(profile.age, profile.interests),
            _personalization(profile),
        ]
    )
