"""
SLA Value Objects
==================

Immutable value objects for SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared. Rule conditions, business
hours and breach behaviour arrive from storage as JSON bags; the models
below turn them into typed structures while keeping the "absent key means
no constraint" semantics.
"""

import json
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, FrozenSet, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_START = time(8, 0)
DEFAULT_WINDOW_END = time(18, 0)

# Alternative spellings accepted in stored condition bags
_CONDITION_ALIASES = {
    "owningteamid": "owning_team_id",
    "owning_team": "owning_team_id",
    "team_id": "owning_team_id",
}


def _parse_time_of_day(value: str, fallback: time) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS``; unparseable input yields ``fallback``."""
    try:
        parts = [int(p) for p in value.strip().split(":")]
        if len(parts) not in (2, 3):
            raise ValueError(value)
        return time(*parts)
    except (ValueError, TypeError, AttributeError):
        return fallback


class RuleConditions(BaseModel):
    """
    Matching criteria of an SLA rule.

    Every present field must equal the ticket's attribute (case-insensitive).
    Missing or empty fields impose no constraint, so an empty instance
    matches every ticket.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    priority: Optional[str] = None
    category: Optional[str] = None
    owning_team_id: Optional[str] = None
    status: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def normalise_keys(cls, data: Any) -> Dict[str, str]:
        """Lower-case keys, resolve aliases and drop empty values."""
        if data is None:
            return {}
        if isinstance(data, RuleConditions):
            return data.model_dump(exclude_none=True)
        if not isinstance(data, Mapping):
            raise ValueError("conditions must be a mapping of field name to value")

        normalised: Dict[str, str] = {}
        for key, value in data.items():
            name = str(key).strip().lower()
            name = _CONDITION_ALIASES.get(name, name)
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            if isinstance(value, (Mapping, list, tuple, set)):
                raise ValueError(f"condition '{key}' must be a single value")
            normalised[name] = str(value).strip()
        return normalised

    @classmethod
    def from_raw(cls, raw: Any) -> "RuleConditions":
        """
        Build conditions from a stored representation.

        Accepts an existing instance, a mapping, a JSON object string or None.

        Raises:
            ValueError: If the representation cannot be parsed (pydantic's
                ValidationError is a ValueError subclass).
        """
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, str):
            raw = json.loads(raw) if raw.strip() else None
        return cls.model_validate(raw)

    def constraints(self) -> Dict[str, str]:
        """Only the fields that constrain a match."""
        return self.model_dump(exclude_none=True)


class BusinessHoursConfig(BaseModel):
    """
    Recurring weekly working window used for business-hours arithmetic.

    ``workdays`` uses 0=Sunday through 6=Saturday. Times are wall-clock
    ``HH:MM`` strings in the organisation's local time, or in ``timezone``
    when one is named.
    """
    model_config = ConfigDict(frozen=True)

    workdays: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    start_time: str = Field(default="08:00")
    end_time: str = Field(default="18:00")
    timezone: Optional[str] = None
    holidays: List[date] = Field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["BusinessHoursConfig"]:
        """Parse a stored config; None or an empty string means no config."""
        if raw is None or isinstance(raw, cls):
            return raw
        if isinstance(raw, str):
            if not raw.strip():
                return None
            raw = json.loads(raw)
        return cls.model_validate(raw)

    @property
    def window_start(self) -> time:
        return _parse_time_of_day(self.start_time, DEFAULT_WINDOW_START)

    @property
    def window_end(self) -> time:
        return _parse_time_of_day(self.end_time, DEFAULT_WINDOW_END)

    @property
    def valid_workdays(self) -> FrozenSet[int]:
        return frozenset(d for d in self.workdays if 0 <= d <= 6)

    def is_degenerate(self) -> bool:
        """True when no minute of any week could ever be counted."""
        return not self.valid_workdays or self.window_end <= self.window_start

    def is_working_day(self, day: date) -> bool:
        # datetime.weekday() is Monday=0; stored workdays are Sunday=0
        return (day.weekday() + 1) % 7 in self.valid_workdays and day not in self.holidays

    def zone(self) -> Optional[ZoneInfo]:
        if not self.timezone:
            return None
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                "Unknown business hours timezone, using timestamps as given",
                extra={"timezone": self.timezone}
            )
            return None


class BreachBehavior(BaseModel):
    """
    What the notification subsystem should do when a rule is breached.

    Carried on rules and events only; the engine never acts on it.
    """
    ui_markers: bool = True
    notify_assignee: bool = True
    notify_team: bool = False
    additional_recipients: List[str] = Field(default_factory=list)
    webhook_url: Optional[str] = None

    @field_validator("additional_recipients", mode="before")
    @classmethod
    def split_recipients(cls, v: Any) -> Any:
        """Allow a free-text comma/semicolon separated list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [part.strip() for part in v.replace(";", ",").split(",") if part.strip()]
        return v


class ApproachingBreachPolicy(BaseModel):
    """
    When an on-track ticket becomes "approaching breach".

    With ``lead_minutes`` set, the warning starts that many minutes before
    the due date. Otherwise it starts once ``elapsed_percent`` of the clock
    span (clock start to due date) has passed.
    """
    elapsed_percent: float = Field(default=75.0, gt=0, le=100)
    lead_minutes: Optional[int] = Field(default=None, ge=0)

    def is_approaching(self, started_at: datetime, due_at: datetime, now: datetime) -> bool:
        if self.lead_minutes is not None:
            return now >= due_at - timedelta(minutes=self.lead_minutes)

        total = (due_at - started_at).total_seconds()
        if total <= 0:
            return True
        elapsed = (now - started_at).total_seconds()
        return (elapsed / total) * 100 >= self.elapsed_percent


class OrganizationSLASettings(BaseModel):
    """
    Organisation-wide SLA settings loaded from YAML.

    Extension caps apply only to actors without the manage-tickets
    capability.
    """
    pause_sla_on_snooze: bool = Field(default=False, description="Shift due dates by snooze duration")
    max_extensions: int = Field(default=3, ge=0, description="Extensions allowed per ticket")
    max_extension_hours: int = Field(default=72, ge=1, description="Ceiling for a single extension")
    approaching_breach: ApproachingBreachPolicy = Field(default_factory=ApproachingBreachPolicy)


class BusinessHoursCalculator:
    """
    Pure functions turning a minutes budget into an absolute due date.

    Stateless utility class: all calendar arithmetic in one place.
    """

    @staticmethod
    def calculate_due(
        start: datetime,
        minutes: int,
        config: Optional[BusinessHoursConfig] = None
    ) -> datetime:
        """
        Calculate the due date for ``minutes`` of SLA time counted from ``start``.

        Args:
            start: Instant the SLA clock starts
            minutes: Budget in whole minutes (no upper bound)
            config: Business hours; None means plain calendar time

        Returns:
            The instant at which the budget is exhausted
        """
        if config is None:
            return start + timedelta(minutes=minutes)

        if config.is_degenerate():
            logger.warning(
                "Business hours config has no usable window, counting calendar time",
                extra={
                    "workdays": sorted(config.valid_workdays),
                    "start_time": config.start_time,
                    "end_time": config.end_time
                }
            )
            return start + timedelta(minutes=minutes)

        zone = config.zone()
        if zone is not None and start.tzinfo is not None:
            local_due = BusinessHoursCalculator._walk(start.astimezone(zone), minutes, config)
            return local_due.astimezone(start.tzinfo)

        return BusinessHoursCalculator._walk(start, minutes, config)

    @staticmethod
    def _walk(start: datetime, minutes: int, config: BusinessHoursConfig) -> datetime:
        """Consume the budget window by window; requires a non-degenerate config."""
        window_start = config.window_start
        window_end = config.window_end
        tz = start.tzinfo
        remaining = timedelta(minutes=minutes)
        current = start

        def next_window(day: date) -> datetime:
            return datetime.combine(day + timedelta(days=1), window_start, tzinfo=tz)

        while True:
            day = current.date()

            if not config.is_working_day(day):
                current = next_window(day)
                continue

            if current.time() < window_start:
                current = datetime.combine(day, window_start, tzinfo=tz)

            day_end = datetime.combine(day, window_end, tzinfo=tz)
            if current >= day_end:
                current = next_window(day)
                continue

            available = day_end - current
            if remaining <= available:
                return current + remaining

            remaining -= available
            current = next_window(day)

    @staticmethod
    def format_duration(minutes: int) -> str:
        """Human-readable label for a minutes budget, e.g. "4 hours"."""
        if minutes < 60:
            return f"{minutes} min"
        if minutes < 1440:
            hours = minutes // 60
            return f"{hours} hour{'s' if hours > 1 else ''}"
        days = minutes // 1440
        return f"{days} day{'s' if days > 1 else ''}"
