"""
Result State Controller

Per-test result review lifecycle:

    Entered -> Under Review -> Approved -> Reported
    Under Review -> Entered        (rejected back to the technician)
    Reported -> Under Review       (correction after reporting)

Every operation returns a new ResultSnapshot; persistence and the reporting
side effects belong to the orchestration service.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple, Union
from uuid import uuid4

from ..core.exceptions import InvalidTransition, ValidationException
from .flags import Flag, classify, effective_flag, has_abnormal_flags
from .states import APPROVED_RESULT_STATUSES, ResultStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResultValue:
    """One measured parameter; flag is derived from value and reference range"""
    parameter: str
    value: str
    unit: str = ""
    reference_range: str = ""
    flag: Flag = Flag.NONE

    def __post_init__(self):
        object.__setattr__(self, "value", "" if self.value is None else str(self.value))
        object.__setattr__(self, "unit", self.unit or "")
        object.__setattr__(self, "reference_range", self.reference_range or "")
        object.__setattr__(self, "flag", Flag(self.flag or ""))

    @classmethod
    def from_mapping(cls, data: Mapping) -> "ResultValue":
        """Build from a dict, accepting the legacy "reference" key for the range"""
        return cls(
            parameter=data.get("parameter", ""),
            value=data.get("value", ""),
            unit=data.get("unit") or "",
            reference_range=data.get("reference_range") or data.get("reference") or "",
            flag=data.get("flag") or "",
        )

    def to_dict(self) -> dict:
        return {
            "parameter": self.parameter,
            "value": self.value,
            "unit": self.unit,
            "reference_range": self.reference_range,
            "flag": self.flag.value,
        }


Flagger = Callable[[ResultValue, Optional[str]], Flag]


def default_flagger(value: ResultValue, sex: Optional[str] = None) -> Flag:
    return classify(value.value, value.reference_range, sex)


@dataclass(frozen=True)
class ResultSnapshot:
    """Immutable view of one test result within an order"""
    id: str
    order_id: str
    test_name: str
    status: ResultStatus = ResultStatus.ENTERED
    values: Tuple[ResultValue, ...] = ()
    patient_id: Optional[str] = None
    entered_by: Optional[str] = None
    entered_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reported_at: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "status", ResultStatus(self.status))
        object.__setattr__(self, "values", tuple(self.values))

    @property
    def has_values(self) -> bool:
        return len(self.values) > 0

    @property
    def is_approved(self) -> bool:
        """Approved or already reported"""
        return self.status in APPROVED_RESULT_STATUSES

    def is_abnormal(self, sex: Optional[str] = None) -> bool:
        return has_abnormal_flags(self.values, sex)

    def abnormal_values(self, sex: Optional[str] = None) -> Tuple[ResultValue, ...]:
        return tuple(v for v in self.values if effective_flag(v, sex) != Flag.NONE)


# Targets reachable from each status; Entered -> Under Review happens by resubmitting values
RESULT_TRANSITIONS: Dict[ResultStatus, FrozenSet[ResultStatus]] = {
    ResultStatus.ENTERED: frozenset({ResultStatus.UNDER_REVIEW}),
    ResultStatus.UNDER_REVIEW: frozenset({ResultStatus.APPROVED, ResultStatus.ENTERED}),
    ResultStatus.APPROVED: frozenset({ResultStatus.REPORTED}),
    ResultStatus.REPORTED: frozenset({ResultStatus.UNDER_REVIEW}),
}

# Results that may still have their values replaced by a new submission
EDITABLE_RESULT_STATUSES = frozenset({ResultStatus.ENTERED, ResultStatus.UNDER_REVIEW})


def _coerce_values(values: Iterable[Union[ResultValue, Mapping]]) -> Tuple[ResultValue, ...]:
    coerced = []
    for value in values:
        if isinstance(value, ResultValue):
            coerced.append(value)
        elif isinstance(value, Mapping):
            coerced.append(ResultValue.from_mapping(value))
        else:
            coerced.append(ResultValue(
                parameter=getattr(value, "parameter"),
                value=getattr(value, "value"),
                unit=getattr(value, "unit", ""),
                reference_range=getattr(value, "reference_range", ""),
                flag=getattr(value, "flag", None) or "",
            ))
    return tuple(coerced)


class ResultStateController:
    """Creates results and moves them through review"""

    def __init__(self, flagger: Optional[Flagger] = None, clock: Callable[[], datetime] = None):
        self.flagger = flagger or default_flagger
        self.clock = clock or datetime.utcnow

    def submit(self, order_id: str, test_name: str, values, actor: str,
               sex: Optional[str] = None, existing: Optional[ResultSnapshot] = None,
               patient_id: Optional[str] = None, now: Optional[datetime] = None) -> ResultSnapshot:
        """
        Create a result, or replace the value set of an existing one, and put
        it under review. Flags are recomputed for every value; any flag
        supplied with the input is discarded.
        """
        test_name = (test_name or "").strip()
        if not test_name:
            raise ValidationException("Test name is required")

        values = _coerce_values(values)
        if not values:
            raise ValidationException(f"No values submitted for {test_name}")

        if existing is not None and existing.status not in EDITABLE_RESULT_STATUSES:
            raise InvalidTransition(
                existing.status.value, ResultStatus.UNDER_REVIEW.value,
                f"Result for {test_name} is {existing.status.value}; revert it to review before changing values"
            )

        flagged = tuple(replace(v, flag=self.flagger(replace(v, flag=Flag.NONE), sex)) for v in values)
        now = now or self.clock()

        if existing is None:
            result = ResultSnapshot(
                id=uuid4().hex,
                order_id=order_id,
                test_name=test_name,
                patient_id=patient_id,
                status=ResultStatus.UNDER_REVIEW,
                values=flagged,
                entered_by=actor,
                entered_at=now,
            )
            logger.info(f"Result {result.id} entered for order {order_id} test {test_name} by {actor}")
            return result

        logger.info(f"Result {existing.id} values replaced for order {order_id} test {test_name} by {actor}")
        return replace(
            existing,
            status=ResultStatus.UNDER_REVIEW,
            values=flagged,
            entered_by=actor,
            entered_at=now,
        )

    def _transition(self, result: ResultSnapshot, target: ResultStatus,
                    source: ResultStatus, **changes) -> ResultSnapshot:
        if result.status == target:
            logger.debug(f"Result {result.id} already '{target.value}', nothing to do")
            return result

        if result.status != source:
            logger.warning(f"Rejected result {result.id} transition {result.status.value} -> {target.value}")
            raise InvalidTransition(
                result.status.value, target.value,
                f"Result cannot move from '{result.status.value}' to '{target.value}'"
            )

        logger.info(f"Result {result.id}: '{result.status.value}' -> '{target.value}'")
        return replace(result, status=target, **changes)

    def approve(self, result: ResultSnapshot, actor: str, now: Optional[datetime] = None) -> ResultSnapshot:
        """Under Review -> Approved, stamping the reviewer"""
        if not result.has_values:
            raise InvalidTransition(
                result.status.value, ResultStatus.APPROVED.value,
                "Result has no entered values to approve"
            )
        now = now or self.clock()
        return self._transition(result, ResultStatus.APPROVED, ResultStatus.UNDER_REVIEW, reviewed_by=actor, reviewed_at=now)

    def reject(self, result: ResultSnapshot, actor: str, now: Optional[datetime] = None) -> ResultSnapshot:
        """Under Review -> Entered; entered values are kept for the technician to fix"""
        now = now or self.clock()
        return self._transition(result, ResultStatus.ENTERED, ResultStatus.UNDER_REVIEW, reviewed_by=actor, reviewed_at=now)

    def mark_reported(self, result: ResultSnapshot, now: Optional[datetime] = None) -> ResultSnapshot:
        """Approved -> Reported"""
        now = now or self.clock()
        return self._transition(result, ResultStatus.REPORTED, ResultStatus.APPROVED, reported_at=now)

    def revert_to_under_review(self, result: ResultSnapshot) -> ResultSnapshot:
        """Reported -> Under Review for corrections"""
        return self._transition(result, ResultStatus.UNDER_REVIEW, ResultStatus.REPORTED)

    def available_transitions(self, result: ResultSnapshot) -> FrozenSet[ResultStatus]:
        """Statuses the result can be moved to from where it is now"""
        return RESULT_TRANSITIONS[result.status]
