"""
Flag Interpretation Engine

Compares a measured lab value against its reference-range text and classifies
it as normal, high, low or critical. Reference ranges in real lab data are
inconsistently formatted ("10-40", "10 - 40", "<200", "M: >40, F: >50"), so
the range text is parsed into one of a small set of tagged variants:

    LessThan(x) | GreaterThan(x) | Between(lo, hi) | Unparseable

Parsing happens once per distinct range text and is cached. Anything that
cannot be interpreted yields no flag; classification never raises.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum as PyEnum
from functools import lru_cache
from typing import Iterable, Mapping, Optional, Union

from ..core.exceptions import ParseFailure

logger = logging.getLogger(__name__)


class Flag(str, PyEnum):
    """Result abnormal flag; NONE covers both normal and undetermined"""
    NONE = ""
    HIGH = "H"
    LOW = "L"
    CRITICAL = "C"


FLAG_DESCRIPTIONS = {
    Flag.HIGH: "High",
    Flag.LOW: "Low",
    Flag.CRITICAL: "Critical",
}

ABNORMAL_FLAGS = frozenset({Flag.HIGH, Flag.LOW, Flag.CRITICAL})

# Leading numeric prefix, the same way lab systems read "200 mg/dL" as 200
_LEADING_NUMBER = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")
_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_THOUSANDS_SEPARATOR = re.compile(r"(?<=\d),(?=\d{3}(?!\d))")
_DASHES = re.compile(r"[‒–—−]")
_LOOSE_RANGE = re.compile(r"(\d+(?:\.\d+)?)\s*-\s*(\d+(?:\.\d+)?)")
_SEX_LABEL = re.compile(r"^\s*[mf]:")


@dataclass(frozen=True)
class LessThan:
    """Upper-bounded range such as "<200"; at or above the limit is high"""
    limit: float

    def evaluate(self, value: float) -> Flag:
        return Flag.HIGH if value >= self.limit else Flag.NONE


@dataclass(frozen=True)
class GreaterThan:
    """Lower-bounded range such as ">40"; at or below the limit is low"""
    limit: float

    def evaluate(self, value: float) -> Flag:
        return Flag.LOW if value <= self.limit else Flag.NONE


@dataclass(frozen=True)
class Between:
    """Closed interval such as 10-40"""
    low: float
    high: float

    def evaluate(self, value: float) -> Flag:
        if value < self.low:
            return Flag.LOW
        if value > self.high:
            return Flag.HIGH
        return Flag.NONE


@dataclass(frozen=True)
class Unparseable:
    """Range text that matched none of the known forms"""
    text: str

    def evaluate(self, value: float) -> Flag:
        return Flag.NONE


ReferenceRange = Union[LessThan, GreaterThan, Between, Unparseable]


def leading_number(text: Optional[str]) -> Optional[float]:
    """Parse the numeric prefix of text, or None when there is none"""
    if not text:
        return None
    match = _LEADING_NUMBER.match(text)
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def parse_value(value: Optional[str]) -> Optional[float]:
    """Extract a number from a raw lab value such as <5, 7.5 g/dL or 4,500"""
    if value is None:
        return None
    return leading_number(_NON_NUMERIC.sub("", str(value)))


def normalize_range(reference_range: str) -> str:
    """Lowercase and trim range text, folding typographic dashes and thousands separators"""
    text = _DASHES.sub("-", reference_range.lower().strip())
    return _THOUSANDS_SEPARATOR.sub("", text)


def select_sex_segment(range_text: str, sex: Optional[str] = None) -> str:
    """Pick the male or female segment of a range like "m: >40, f: >50"

    Ranges without both segments are returned unchanged. Without a usable sex
    the first segment is used.
    """
    if "m:" not in range_text or "f:" not in range_text:
        return range_text

    parts = range_text.split(",")
    sex = (sex or "").strip().upper()

    if sex == "M":
        segment = next((p for p in parts if "m:" in p), "")
        return segment.replace("m:", "").strip()
    if sex == "F":
        segment = next((p for p in parts if "f:" in p), "")
        return segment.replace("f:", "").strip()

    return _SEX_LABEL.sub("", parts[0]).strip()


@lru_cache(maxsize=2048)
def parse_range_expression(expression: str) -> ReferenceRange:
    """Parse an already normalized, single-segment range expression"""
    if expression.startswith("<"):
        limit = leading_number(expression[1:].lstrip("="))
        return LessThan(limit) if limit is not None else Unparseable(expression)

    if expression.startswith(">"):
        limit = leading_number(expression[1:].lstrip("="))
        return GreaterThan(limit) if limit is not None else Unparseable(expression)

    if "-" in expression:
        parts = expression.split("-")
        if len(parts) == 2:
            low = leading_number(parts[0])
            high = leading_number(parts[1])
            if low is not None and high is not None:
                return Between(low, high)

    match = _LOOSE_RANGE.search(expression)
    if match:
        return Between(float(match.group(1)), float(match.group(2)))

    return Unparseable(expression)


def parse_reference_range(reference_range: Optional[str], sex: Optional[str] = None) -> ReferenceRange:
    """Parse reference-range text for a patient of the given sex"""
    if not reference_range or not reference_range.strip():
        return Unparseable(reference_range or "")
    expression = select_sex_segment(normalize_range(reference_range), sex)
    return parse_range_expression(expression)


def parse_reference_range_strict(reference_range: Optional[str], sex: Optional[str] = None) -> ReferenceRange:
    """Like parse_reference_range but raises ParseFailure for unparseable text"""
    parsed = parse_reference_range(reference_range, sex)
    if isinstance(parsed, Unparseable):
        raise ParseFailure(reference_range or "", f"Unrecognized reference range '{reference_range}'")
    return parsed


def classify(value: Optional[str], reference_range: Optional[str], sex: Optional[str] = None) -> Flag:
    """Classify a raw value against its reference range

    Returns Flag.NONE when the value is normal or when either input cannot be
    interpreted. Never yields Flag.CRITICAL; see classify_with_criticals.
    """
    if not value or not reference_range:
        return Flag.NONE

    numeric = parse_value(value)
    if numeric is None:
        return Flag.NONE

    return parse_reference_range(reference_range, sex).evaluate(numeric)


def classify_with_criticals(
    value: Optional[str],
    reference_range: Optional[str],
    sex: Optional[str] = None,
    low_critical: Optional[str] = None,
    high_critical: Optional[str] = None,
) -> Flag:
    """Classify a value, escalating to CRITICAL when a panic threshold is crossed"""
    flag = classify(value, reference_range, sex)

    numeric = parse_value(value)
    if numeric is None:
        return flag

    low = leading_number(normalize_range(low_critical)) if low_critical else None
    high = leading_number(normalize_range(high_critical)) if high_critical else None

    if low is not None and numeric < low:
        return Flag.CRITICAL
    if high is not None and numeric > high:
        return Flag.CRITICAL
    return flag


def effective_flag(result_value, sex: Optional[str] = None) -> Flag:
    """Stored flag if present, otherwise recomputed from the value and range

    Accepts result value objects or plain dict rows; dict rows may carry the
    range under the legacy ``reference`` key.
    """
    if isinstance(result_value, Mapping):
        stored = result_value.get("flag")
        value = result_value.get("value")
        reference_range = result_value.get("reference_range") or result_value.get("reference")
    else:
        stored = getattr(result_value, "flag", None)
        value = getattr(result_value, "value", None)
        reference_range = getattr(result_value, "reference_range", None)
    if stored:
        try:
            return Flag(stored)
        except ValueError:
            logger.warning(f"Ignoring unknown stored flag {stored!r}")
    return classify(value, reference_range, sex)


def has_abnormal_flags(values: Iterable, sex: Optional[str] = None) -> bool:
    """True if any value is flagged high, low or critical"""
    return any(effective_flag(v, sex) in ABNORMAL_FLAGS for v in values)


def flag_description(flag: Optional[Union[Flag, str]]) -> str:
    """Human-readable label for a flag"""
    try:
        return FLAG_DESCRIPTIONS.get(Flag(flag or ""), "Normal")
    except ValueError:
        return "Normal"
