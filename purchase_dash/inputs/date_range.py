"""Date-range validation, wire normalization and the picker state machine.

The picker applies changes immediately: every valid edit, preset and reset is
emitted to the listener right away; there is no separate confirm step.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Literal, Optional

from purchase_dash.data.models import DateRange, PurchaseFrequencyParams
from purchase_dash.errors import ValidationError
from purchase_dash.logging import get_logger

logger = get_logger(__name__)

START_AFTER_END = "start date after end date"
START_IN_FUTURE = "start date in future"
END_IN_FUTURE = "end date in future"

DEFAULT_PLACEHOLDER = "기간을 선택해주세요"

Preset = Literal["today", "last-7-days", "last-30-days", "all-time"]
PRESETS = ("today", "last-7-days", "last-30-days", "all-time")


@dataclass(frozen=True)
class DateRangeValidation:
    """Outcome of validating a range. `error` is None when the range is usable."""
    range: DateRange
    error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> DateRange:
        if self.error is not None:
            raise ValidationError(self.error)
        return self.range


def validate_date_range(date_range: DateRange, today: Optional[date] = None) -> DateRangeValidation:
    """Check ordering first, then that neither bound lies after `today`."""
    today = today or date.today()
    start, end = date_range.start_date, date_range.end_date

    if start is not None and end is not None and start > end:
        return DateRangeValidation(date_range, START_AFTER_END)
    if start is not None and start > today:
        return DateRangeValidation(date_range, START_IN_FUTURE)
    if end is not None and end > today:
        return DateRangeValidation(date_range, END_IN_FUTURE)
    return DateRangeValidation(date_range)


def to_iso_instant(day: date) -> str:
    """Midnight UTC of `day`, e.g. 2024-01-01T00:00:00.000Z."""
    return f"{day.isoformat()}T00:00:00.000Z"


def to_wire_params(date_range: DateRange) -> PurchaseFrequencyParams:
    """Render present bounds as ISO instants; absent bounds stay unset."""
    return PurchaseFrequencyParams(
        from_=to_iso_instant(date_range.start_date) if date_range.start_date else None,
        to=to_iso_instant(date_range.end_date) if date_range.end_date else None,
    )


def preset_range(preset: Preset, today: Optional[date] = None) -> DateRange:
    today = today or date.today()
    if preset == "today":
        return DateRange(start_date=today, end_date=today)
    if preset == "last-7-days":
        return DateRange(start_date=today - timedelta(days=7), end_date=today)
    if preset == "last-30-days":
        return DateRange(start_date=today - timedelta(days=30), end_date=today)
    if preset == "all-time":
        return DateRange()
    raise ValueError(f"Unknown date range preset: {preset}")


def format_display_date(day: date) -> str:
    return f"{day.year}년 {day.month}월 {day.day}일"


def date_range_label(date_range: DateRange, placeholder: str = "") -> str:
    """Label such as "2024년 1월 1일 ~ 2024년 1월 31일"; one-sided ranges keep the "~"."""
    start, end = date_range.start_date, date_range.end_date
    if start and end:
        return f"{format_display_date(start)} ~ {format_display_date(end)}"
    if start:
        return f"{format_display_date(start)} ~"
    if end:
        return f"~ {format_display_date(end)}"
    return placeholder


class PickerState(str, Enum):
    CLOSED = "closed"
    EDITING = "editing"
    VALIDATING = "validating"
    ERROR = "error"


class DateRangePicker:
    """Explicit state machine behind the date-range dropdown.

    States: closed, editing(draft), validating, error(msg). Only the public
    methods move between states. `on_change` receives a DateRangeValidation for
    every attempted change and decides itself what to do with an error.
    """

    def __init__(
        self,
        value: Optional[DateRange] = None,
        on_change: Optional[Callable[[DateRangeValidation], None]] = None,
        today: Optional[Callable[[], date]] = None,
        placeholder: str = DEFAULT_PLACEHOLDER,
    ) -> None:
        self.value = value or DateRange()
        self.draft = self.value
        self.state = PickerState.CLOSED
        self.error: Optional[str] = None
        self.placeholder = placeholder
        self._on_change = on_change
        self._today = today or date.today

    @property
    def is_open(self) -> bool:
        return self.state != PickerState.CLOSED

    def open(self) -> None:
        if self.is_open:
            return
        self.draft = self.value
        self.error = None
        self.state = PickerState.EDITING

    def toggle(self) -> None:
        if self.is_open:
            self.close()
        else:
            self.open()

    def close(self) -> None:
        self.draft = self.value
        self.error = None
        self.state = PickerState.CLOSED

    def set_start(self, start_date: Optional[date]) -> DateRangeValidation:
        return self._edit(self.draft.model_copy(update={"start_date": start_date}))

    def set_end(self, end_date: Optional[date]) -> DateRangeValidation:
        return self._edit(self.draft.model_copy(update={"end_date": end_date}))

    def apply_preset(self, preset: Preset) -> DateRangeValidation:
        # Presets are valid by construction
        result = DateRangeValidation(preset_range(preset, self._today()))
        self._commit(result.range)
        self.close()
        self._emit(result)
        return result

    def reset(self) -> DateRangeValidation:
        result = DateRangeValidation(DateRange())
        self._commit(result.range)
        if self.is_open:
            self.state = PickerState.EDITING
        self._emit(result)
        return result

    def display_text(self) -> str:
        return date_range_label(self.value, self.placeholder)

    def _edit(self, draft: DateRange) -> DateRangeValidation:
        if not self.is_open:
            self.open()
        self.draft = draft
        self.state = PickerState.VALIDATING
        result = validate_date_range(draft, self._today())
        if result.is_valid:
            self._commit(draft)
            self.state = PickerState.EDITING
        else:
            logger.debug(f"Rejected date range {draft}: {result.error}")
            self.error = result.error
            self.state = PickerState.ERROR
        self._emit(result)
        return result

    def _commit(self, date_range: DateRange) -> None:
        self.value = date_range
        self.draft = date_range
        self.error = None

    def _emit(self, result: DateRangeValidation) -> None:
        if self._on_change is not None:
            self._on_change(result)
