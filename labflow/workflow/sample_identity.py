"""
Sample Identity Allocator

Maps a calendar day and a per-day sequence number to the human-readable sample
ID and tube color used for chain-of-custody tracking. The mapping is a pure
function: the same (date, sequence) always yields the same identity.

The sequence number itself is not owned here. It is the count of orders
already created for the day plus one, read from the record store before the
order insert. Two concurrent order creations can read the same count and end
up with the same identity; uniqueness has to be enforced by the store.
"""

import json
from dataclasses import dataclass, asdict
from datetime import date, datetime
from typing import Optional, Tuple

from ..core.exceptions import ValidationException


@dataclass(frozen=True)
class PaletteColor:
    hex: str
    name: str


# 12 high-contrast colors; sequence 1 is Red, 13 is Red again
COLOR_PALETTE: Tuple[PaletteColor, ...] = (
    PaletteColor("#EF4444", "Red"),
    PaletteColor("#3B82F6", "Blue"),
    PaletteColor("#10B981", "Green"),
    PaletteColor("#F59E0B", "Orange"),
    PaletteColor("#8B5CF6", "Purple"),
    PaletteColor("#06B6D4", "Cyan"),
    PaletteColor("#EC4899", "Pink"),
    PaletteColor("#84CC16", "Lime"),
    PaletteColor("#F97316", "Amber"),
    PaletteColor("#6366F1", "Indigo"),
    PaletteColor("#14B8A6", "Teal"),
    PaletteColor("#A855F7", "Violet"),
)

# Fixed English abbreviations so the ID does not depend on the process locale
MONTH_ABBREVIATIONS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


@dataclass(frozen=True)
class SampleIdentity:
    """Sample ID plus tube color assigned to one order"""
    sample_id: str
    color_code: str
    color_name: str
    daily_sequence: int

    def to_dict(self) -> dict:
        return asdict(self)


def _validate_sequence(daily_sequence: int):
    if isinstance(daily_sequence, bool) or not isinstance(daily_sequence, int):
        raise ValidationException(f"Daily sequence must be an integer, got {daily_sequence!r}")
    if daily_sequence < 1:
        raise ValidationException(f"Daily sequence must start at 1, got {daily_sequence}")


def color_for_sequence(daily_sequence: int) -> PaletteColor:
    """Rotating palette color for the nth order of the day"""
    _validate_sequence(daily_sequence)
    return COLOR_PALETTE[(daily_sequence - 1) % len(COLOR_PALETTE)]


def format_sample_id(day: date, daily_sequence: int) -> str:
    """Format as DD-Mon-YYYY-NNN, e.g. 05-Jan-2025-003"""
    _validate_sequence(daily_sequence)
    month = MONTH_ABBREVIATIONS[day.month - 1]
    return f"{day.day:02d}-{month}-{day.year:04d}-{daily_sequence:03d}"


def assign(day: date, daily_sequence: int) -> SampleIdentity:
    """Derive the sample identity for the nth order created on a day"""
    if isinstance(day, datetime):
        day = day.date()
    color = color_for_sequence(daily_sequence)
    return SampleIdentity(
        sample_id=format_sample_id(day, daily_sequence),
        color_code=color.hex,
        color_name=color.name,
        daily_sequence=daily_sequence,
    )


def next_daily_sequence(existing_orders_today: int) -> int:
    """Sequence for the next order given how many already exist for the day"""
    return (existing_orders_today or 0) + 1


def build_qr_payload(
    order_id: str,
    patient_id: str,
    identity: SampleIdentity,
    order_date: date,
    patient_name: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """JSON payload printed as a QR code on the sample tube label"""
    generated_at = generated_at or datetime.utcnow()
    return json.dumps({
        "orderId": order_id,
        "patientId": patient_id,
        "sampleId": identity.sample_id,
        "orderDate": order_date.isoformat(),
        "colorCode": identity.color_code,
        "colorName": identity.color_name,
        "patientName": patient_name or "Unknown",
        "generated": generated_at.isoformat(),
    })
