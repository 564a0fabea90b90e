"""Keyword gate for self-harm, suicidality and abuse disclosures.

Runs on raw input before any model call. Matching is a case-insensitive
substring scan; false positives are acceptable, misses are not.
"""

CRISIS_PHRASES: tuple[str, ...] = (
    "hurt myself",
    "kill myself",
    "want to die",
    "end it all",
    "suicide",
    "suicidal",
    "cut myself",
    "harm myself",
    "better off dead",
    "can't go on",
    "cant go on",
    "no point living",
    "hurt me",
    "hit me",
    "touched inappropriately",
    "touched me",
    "abuse",
    "sexual abuse",
)

CRISIS_REPLY = """\
I'm really glad you told me this, and I'm worried about how you're feeling right now. \
What you shared matters, and you deserve help with it today.

You don't have to handle this on your own. Please tell a grown-up you trust as soon \
as you can, like a parent, a teacher, or your school counselor.

If you might hurt yourself, or someone is hurting you, you can reach people right now:
- Call or text 988 (Suicide & Crisis Lifeline)
- Text HOME to 741741 (Crisis Text Line)
- Call 911 or go to the nearest emergency room if you are in danger

You matter, and people want to help you stay safe."""


def matched_phrase(text: str) -> str | None:
    """Return the first crisis phrase found in *text*, or None."""
    lowered = text.lower().replace("\u2019", "'")
    for phrase in CRISIS_PHRASES:
        if phrase in lowered:
            return phrase
    return None


def detect(text: str) -> bool:
    """True when *text* contains any crisis phrase."""
    return matched_phrase(text) is not None
