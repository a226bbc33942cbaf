from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from datetime import date

from ..models.classification import (
    UNKNOWN,
    Block,
    ClassificationResult,
    ClassName,
    Role,
)

"""Line item text classifier.

Maps a free-text product title and variant string to one ClassificationResult
using a fixed, priority-ordered substring rule table. Pure and deterministic:
identical inputs always give identical results, which is what makes a re-sync
idempotent.

Also parses the class date of free-class variants ("27th May").
"""

__all__ = [
    "CLASSIFICATION_RULES",
    "classify",
    "extract_role",
    "extract_term_block",
    "is_bundle_title",
    "is_social_title",
    "parse_class_date",
]

logger = logging.getLogger(__name__)

FREE_CLASS_MARKER = "free class"
# social tickets are projected separately (services/social.py)
SOCIAL_MARKER = "social"

# (title substring, class) - first match wins. ClassName.UNKNOWN entries are
# explicit skips for products that look like classes but are not enrollments.
CLASSIFICATION_RULES: tuple[tuple[str, ClassName], ...] = (
    ("one class pass", ClassName.UNKNOWN),
    ("level 1", ClassName.LEVEL_1),
    ("level 2", ClassName.LEVEL_2),
    ("level 3", ClassName.LEVEL_3),
    ("body movement", ClassName.BODY_MOVEMENT),
    ("shines", ClassName.SHINES),
    ("unlimited bundle", ClassName.BUNDLE),
    ("platinum bundle", ClassName.BUNDLE),
)

BUNDLE_MARKERS = tuple(marker for marker, name in CLASSIFICATION_RULES if name is ClassName.BUNDLE)

TERM_PATTERN = re.compile(r"term\s*(\d+)\s*([ab])?\b")
DATE_PATTERN = re.compile(r"(\d{1,2})(st|nd|rd|th)\s+(\w+)", re.IGNORECASE)
# "June 14th", used by some social ticket titles
MONTH_FIRST_PATTERN = re.compile(r"([a-z]+)\s+(\d{1,2})(st|nd|rd|th)\b", re.IGNORECASE)

MONTHS = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
}
MONTHS.update({name[:3]: num for name, num in list(MONTHS.items())})

# parsed dates further ahead than this are most likely last year's classes
YEAR_BOUNDARY_SUSPECT_DAYS = 180


def is_social_title(title: str) -> bool:
    return SOCIAL_MARKER in (title or "").lower()


def is_bundle_title(title: str) -> bool:
    lowered = title.lower()
    return any(marker in lowered for marker in BUNDLE_MARKERS)


def extract_term_block(variant: str | None) -> tuple[str | None, Block]:
    """Return (term, block) for a variant string.

    "Term 2B" -> ("2", B), "Term 2" -> ("2", Both). When both "term 2a" and
    "term 2b" appear the purchase covers both blocks. Without any "term"
    mention -> (None, NONE).
    """
    text = (variant or "").lower()
    matches = TERM_PATTERN.findall(text)
    if not matches:
        return None, Block.NONE
    term = matches[0][0]
    letters = {letter for digit, letter in matches if digit == term and letter}
    if letters == {"a"}:
        return term, Block.A
    if letters == {"b"}:
        return term, Block.B
    return term, Block.BOTH


def extract_role(variant: str | None) -> Role:
    text = (variant or "").lower()
    if "leader" in text:
        return Role.LEADER
    if "follower" in text:
        return Role.FOLLOWER
    return Role.UNSPECIFIED


def _match_class(title: str) -> ClassName:
    for marker, class_name in CLASSIFICATION_RULES:
        if marker in title:
            return class_name
    return ClassName.UNKNOWN


def classify(title: str, variant: str | None) -> ClassificationResult:
    """Classify one line item.

    Free classes take precedence over every other rule. Body Movement and
    Shines never carry a role; level classes without a role substring come
    back as Role.UNSPECIFIED and are left for the caller to drop.
    """
    lowered = (title or "").lower()
    role = extract_role(variant)

    if FREE_CLASS_MARKER in lowered:
        return ClassificationResult(
            class_name=ClassName.FREE_CLASS,
            role=role,
            is_free=True,
        )

    class_name = _match_class(lowered)
    if class_name is ClassName.UNKNOWN:
        return UNKNOWN

    term, block = extract_term_block(variant)
    if class_name in (ClassName.BODY_MOVEMENT, ClassName.SHINES):
        role = Role.NO_ROLE
    return ClassificationResult(
        class_name=class_name,
        term=term,
        block=block,
        role=role,
        is_bundle=class_name is ClassName.BUNDLE,
    )


def _day_month_candidates(text: str) -> Iterator[tuple[int, str]]:
    # "1st Class 27th May": the first ordinal is not a date, keep looking
    for m in DATE_PATTERN.finditer(text):
        yield int(m.group(1)), m.group(3)
    for m in MONTH_FIRST_PATTERN.finditer(text):
        yield int(m.group(2)), m.group(1)


def parse_class_date(variant: str | None, reference: date) -> date | None:
    """Parse "27th May" (or "May 27th") style text into a date in `reference.year`.

    Returns None when no day/month pattern is present, the month name is not
    recognised, or the day does not exist in that month.
    """
    if not variant:
        return None
    for day, month_name in _day_month_candidates(variant):
        month = MONTHS.get(month_name.lower())
        if month is not None:
            break
    else:
        return None
    try:
        parsed = date(reference.year, month, day)
    except ValueError:
        return None
    if (parsed - reference).days > YEAR_BOUNDARY_SUSPECT_DAYS:
        logger.warning(
            "class date %s parsed from %r is %d days after %s; year assumed from reference date",
            parsed.isoformat(),
            variant,
            (parsed - reference).days,
            reference.isoformat(),
        )
    return parsed
