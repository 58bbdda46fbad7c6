from datetime import date, datetime, timedelta, timezone

import pytest

from helpdesk_sla.sla.domain import (
    ApproachingBreachPolicy,
    BreachBehavior,
    BusinessHoursCalculator,
    BusinessHoursConfig,
    RuleConditions,
)

NINE_TO_FIVE = BusinessHoursConfig(start_time="09:00", end_time="17:00")

# 2024-01-12 is a Friday
FRIDAY = date(2024, 1, 12)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute)


class TestCalendarMode:

    def test_adds_minutes_across_midnight(self):
        start = at(FRIDAY, 23)
        assert BusinessHoursCalculator.calculate_due(start, 60) == at(date(2024, 1, 13), 0)

    def test_keeps_timezone(self):
        start = datetime(2024, 1, 12, 23, 0, tzinfo=timezone.utc)
        due = BusinessHoursCalculator.calculate_due(start, 90)
        assert due == datetime(2024, 1, 13, 0, 30, tzinfo=timezone.utc)


class TestBusinessHoursMode:

    def test_friday_afternoon_rolls_over_weekend(self):
        # 2h on Friday, remaining 6h on Monday
        due = BusinessHoursCalculator.calculate_due(at(FRIDAY, 15), 480, NINE_TO_FIVE)
        assert due == at(date(2024, 1, 15), 15)

    def test_start_before_window_waits_for_opening(self):
        due = BusinessHoursCalculator.calculate_due(at(date(2024, 1, 15), 7), 60, NINE_TO_FIVE)
        assert due == at(date(2024, 1, 15), 10)

    def test_start_after_window_moves_to_next_day(self):
        due = BusinessHoursCalculator.calculate_due(at(date(2024, 1, 15), 18), 30, NINE_TO_FIVE)
        assert due == at(date(2024, 1, 16), 9, 30)

    def test_budget_ending_exactly_at_close(self):
        due = BusinessHoursCalculator.calculate_due(at(date(2024, 1, 15), 16), 60, NINE_TO_FIVE)
        assert due == at(date(2024, 1, 15), 17)

    def test_start_on_weekend(self):
        due = BusinessHoursCalculator.calculate_due(at(date(2024, 1, 13), 11), 30, NINE_TO_FIVE)
        assert due == at(date(2024, 1, 15), 9, 30)

    def test_large_budget_spans_weeks(self):
        # ten full working days
        due = BusinessHoursCalculator.calculate_due(at(date(2024, 1, 15), 9), 4800, NINE_TO_FIVE)
        assert due == at(date(2024, 1, 26), 17)

    def test_holidays_are_skipped(self):
        config = NINE_TO_FIVE.model_copy(update={"holidays": [date(2024, 1, 15)]})
        due = BusinessHoursCalculator.calculate_due(at(FRIDAY, 15), 480, config)
        assert due == at(date(2024, 1, 16), 15)

    def test_workdays_use_sunday_as_zero(self):
        sunday_only = BusinessHoursConfig(workdays=[0])
        due = BusinessHoursCalculator.calculate_due(at(date(2024, 1, 13), 10), 60, sunday_only)
        assert due == at(date(2024, 1, 14), 9)

    def test_defaults_are_eight_to_six_weekdays(self):
        config = BusinessHoursConfig()
        due = BusinessHoursCalculator.calculate_due(at(FRIDAY, 17), 120, config)
        assert due == at(date(2024, 1, 15), 9)

    def test_unparseable_times_fall_back_to_defaults(self):
        config = BusinessHoursConfig(start_time="not a time", end_time="25:99")
        due = BusinessHoursCalculator.calculate_due(at(date(2024, 1, 15), 7), 60, config)
        assert due == at(date(2024, 1, 15), 9)

    @pytest.mark.parametrize("config", [
        BusinessHoursConfig(workdays=[]),
        BusinessHoursConfig(workdays=[7, 9]),
        BusinessHoursConfig(start_time="17:00", end_time="09:00"),
        BusinessHoursConfig(start_time="09:00", end_time="09:00"),
    ])
    def test_degenerate_config_counts_calendar_time(self, config):
        start = at(FRIDAY, 15)
        due = BusinessHoursCalculator.calculate_due(start, 480, config)
        assert due == start + timedelta(minutes=480)

    def test_walks_in_configured_timezone(self):
        config = BusinessHoursConfig(
            start_time="09:00", end_time="17:00", timezone="America/New_York"
        )
        # 13:00 UTC is 08:00 in New York in January
        start = datetime(2024, 1, 15, 13, 0, tzinfo=timezone.utc)
        due = BusinessHoursCalculator.calculate_due(start, 60, config)
        assert due == datetime(2024, 1, 15, 15, 0, tzinfo=timezone.utc)
        assert due.tzinfo == timezone.utc

    def test_unknown_timezone_uses_timestamps_as_given(self):
        config = NINE_TO_FIVE.model_copy(update={"timezone": "Mars/Olympus_Mons"})
        start = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)
        assert BusinessHoursCalculator.calculate_due(start, 60, config) == start + timedelta(hours=1)


def test_format_duration():
    assert BusinessHoursCalculator.format_duration(30) == "30 min"
    assert BusinessHoursCalculator.format_duration(60) == "1 hour"
    assert BusinessHoursCalculator.format_duration(240) == "4 hours"
    assert BusinessHoursCalculator.format_duration(2880) == "2 days"


class TestRuleConditions:

    def test_keys_are_normalised(self):
        conditions = RuleConditions.from_raw({"Priority": "High", "OwningTeamId": "team-1"})
        assert conditions.constraints() == {"priority": "High", "owning_team_id": "team-1"}

    def test_parses_json_string(self):
        assert RuleConditions.from_raw('{"category": "billing"}').category == "billing"

    def test_empty_values_impose_no_constraint(self):
        assert RuleConditions.from_raw({"priority": "", "category": None}).constraints() == {}
        assert RuleConditions.from_raw(None).constraints() == {}

    @pytest.mark.parametrize("raw", ["not json", [1, 2], {"priority": ["high", "low"]}])
    def test_malformed_conditions_raise_value_error(self, raw):
        with pytest.raises(ValueError):
            RuleConditions.from_raw(raw)


def test_breach_behavior_splits_recipient_text():
    behavior = BreachBehavior(additional_recipients="lead@example.com; ops@example.com,")
    assert behavior.additional_recipients == ["lead@example.com", "ops@example.com"]


class TestApproachingBreachPolicy:

    def test_elapsed_percentage(self):
        policy = ApproachingBreachPolicy()
        start = at(FRIDAY, 9)
        due = start + timedelta(minutes=100)
        assert not policy.is_approaching(start, due, start + timedelta(minutes=74))
        assert policy.is_approaching(start, due, start + timedelta(minutes=75))

    def test_lead_minutes(self):
        policy = ApproachingBreachPolicy(lead_minutes=30)
        start = at(FRIDAY, 9)
        due = at(FRIDAY, 12)
        assert not policy.is_approaching(start, due, at(FRIDAY, 11, 29))
        assert policy.is_approaching(start, due, at(FRIDAY, 11, 30))
