"""Grade rules for subject marks.

Two tables exist. ``compute_result`` is the stored, authoritative rule: a
binary Pass/Fail split at 50%. ``preview_grade`` is the six-tier table the
dashboards show while a student is typing marks in. They disagree on the
letter (``P`` vs ``S``..``D``) but agree on Pass/Fail.
"""

import math
import re

PASS_PERCENTAGE = 50

# (minimum percentage, grade); first match wins
PREVIEW_TIERS = (
    (90, "S"),
    (80, "A"),
    (70, "B"),
    (60, "C"),
    (50, "D"),
)

DEFAULT_TOTAL_MARKS = 100

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def parse_int(value):
    """Parse an int the way a form field would be read: leading integer part, else None.

    ``"45 marks"`` gives 45 and ``"12.9"`` gives 12; NaN and infinities give None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def resolve_total(total_marks) -> int:
    """Total marks default to 100 when missing, unparsable or zero."""
    parsed = parse_int(total_marks)
    return parsed or DEFAULT_TOTAL_MARKS


def percentage(score: int, total: int) -> float:
    return (score / total) * 100


def compute_result(score: int, total: int = DEFAULT_TOTAL_MARKS):
    """Return (grade, status) for a stored mark."""
    if percentage(score, total) < PASS_PERCENTAGE:
        return "F", "Fail"
    return "P", "Pass"


def preview_grade(score: int, total: int = DEFAULT_TOTAL_MARKS) -> dict:
    pct = percentage(score, total)
    for minimum, grade in PREVIEW_TIERS:
        if pct >= minimum:
            return {"grade": grade, "status": "Pass", "percentage": round(pct, 2)}
    return {"grade": "F", "status": "Fail", "percentage": round(pct, 2)}
