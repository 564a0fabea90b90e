"""Situational directives derived from the profile and the current message."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sprout.context.profile import MIDDLE, TEEN, YOUNG, age_band

if TYPE_CHECKING:
    from sprout.children.models import ChildProfile

# (label, trigger substrings, directive)
KEYWORD_DIRECTIVES: tuple[tuple[str, tuple[str, ...], str], ...] = (
    (
        "anxiety",
        ("anxious", "worried", "scared"),
        "The child sounds anxious. Offer a grounding technique (breathing, "
        "naming five things they can see) before exploring the worry.",
    ),
    (
        "sadness",
        ("sad", "upset", "cry"),
        "The child sounds sad. Reflect the feeling back, make room for it, "
        "and gently ask what happened just before it started.",
    ),
    (
        "anger",
        ("angry", "mad", "frustrat"),
        "The child sounds angry or frustrated. Validate the feeling, separate "
        "feelings from actions, and explore a safe way to let the energy out.",
    ),
)

_BAND_GUIDANCE = {
    YOUNG: "Young child: keep it to one idea at a time and use play.",
    MIDDLE: "Pre-teen: pair feelings with a concrete next step.",
    TEEN: "Teen: ask before advising and respect their judgement.",
}


def matched_directives(message: str) -> list[str]:
    """Labels of the keyword directives triggered by *message*."""
    lowered = message.lower()
    return [
        label
        for label, keywords, _ in KEYWORD_DIRECTIVES
        if any(keyword in lowered for keyword in keywords)
    ]


def build_guidance(profile: ChildProfile | None, message: str) -> str:
    """Render the CONTEXTUAL GUIDANCE section for this turn."""
    lines = ["CONTEXTUAL GUIDANCE:"]
    if profile is not None:
        band = age_band(profile.age)
        if band is not None:
            lines.append(f"- {_BAND_GUIDANCE[band]}")
        for concern in profile.concerns:
            lines.append(f"- Known concern: {concern}. Notice whether this message relates to it.")

    matched = matched_directives(message)
    for label, _, directive in KEYWORD_DIRECTIVES:
        if label in matched:
            lines.append(f"- {directive}")

    if len(lines) == 1:
        lines.append("- No specific signals in this message; follow the child's lead.")
    return "\n".join(lines)
