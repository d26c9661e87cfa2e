import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Mapping, Optional

from errors import ValidationError

_DATE_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[012])-(0[1-9]|[12][0-9]|3[01])$")

RECOGNIZED_KEYS = ("from", "upTo", "date", "min", "max")


def _parse_day(value: str, name: str) -> date:
    if not _DATE_PATTERN.match(value):
        raise ValidationError(f"Format {name} is not valid")
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError(f"Format {name} is not valid") from exc


def _parse_amount(value: str, name: str) -> float:
    try:
        amount = float(value)
    except ValueError as exc:
        raise ValidationError(f"{name} parameter is not a number") from exc
    if not math.isfinite(amount):
        raise ValidationError(f"{name} parameter is not a number")
    return amount


@dataclass(frozen=True)
class TransactionFilters:
    """Optional date and amount bounds; every bound is inclusive.

    An absent bound leaves that side unconstrained. ``on`` is a single
    calendar day and cannot be combined with ``start`` or ``end``.
    """

    start: Optional[date] = None
    end: Optional[date] = None
    on: Optional[date] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None

    def __post_init__(self) -> None:
        if self.on is not None and (self.start is not None or self.end is not None):
            raise ValidationError("Parameters are not valid")

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> "TransactionFilters":
        raw = {key: params.get(key) or None for key in RECOGNIZED_KEYS}
        if raw["date"] and (raw["from"] or raw["upTo"]):
            raise ValidationError("Parameters are not valid")
        return cls(
            start=_parse_day(raw["from"], "from") if raw["from"] else None,
            end=_parse_day(raw["upTo"], "upTo") if raw["upTo"] else None,
            on=_parse_day(raw["date"], "date") if raw["date"] else None,
            min_amount=_parse_amount(raw["min"], "min") if raw["min"] else None,
            max_amount=_parse_amount(raw["max"], "max") if raw["max"] else None,
        )

    def date_bounds(self) -> tuple[Optional[datetime], Optional[datetime]]:
        first = self.on or self.start
        last = self.on or self.end
        lower = datetime.combine(first, time.min) if first else None
        upper = datetime.combine(last, time.max) if last else None
        return lower, upper

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (
                self.start,
                self.end,
                self.on,
                self.min_amount,
                self.max_amount,
            )
        )
