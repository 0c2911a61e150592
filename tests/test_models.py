"""Tests for domain models and their record forms."""

from datetime import date, datetime

import pytest

from rotafair.domain.models import (
    BatchResult,
    CorrectiveAction,
    CorrectiveActionType,
    Entity,
    EstimatorState,
    GenerationOptions,
    MembershipInterval,
    PeriodAssignment,
    coerce_assignment,
    coerce_entity,
    parse_date,
)


class TestParseDate:
    """Tests for date coercion."""

    def test_accepts_date_and_iso_string(self):
        assert parse_date(date(2024, 3, 4)) == date(2024, 3, 4)
        assert parse_date("2024-03-04") == date(2024, 3, 4)

    def test_datetime_is_truncated(self):
        assert parse_date(datetime(2024, 3, 4, 15, 30)) == date(2024, 3, 4)

    @pytest.mark.parametrize("value", ["2024-13-45", "yesterday", "", 20240304, None])
    def test_malformed_values_rejected(self, value):
        with pytest.raises(ValueError):
            parse_date(value)


class TestMembershipInterval:
    """Tests for MembershipInterval."""

    def test_contains_is_inclusive(self):
        interval = MembershipInterval(date(2024, 1, 1), date(2024, 1, 31))
        assert interval.contains(date(2024, 1, 1))
        assert interval.contains(date(2024, 1, 31))
        assert not interval.contains(date(2024, 2, 1))

    def test_open_interval_contains_future(self):
        interval = MembershipInterval(date(2024, 1, 1))
        assert interval.is_open
        assert interval.contains(date(2030, 1, 1))

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            MembershipInterval(date(2024, 2, 1), date(2024, 1, 1))


class TestEntity:
    """Tests for Entity."""

    def test_overlapping_intervals_rejected(self):
        with pytest.raises(ValueError):
            Entity(
                id="A",
                membership_intervals=[
                    MembershipInterval(date(2024, 1, 1), date(2024, 3, 1)),
                    MembershipInterval(date(2024, 2, 1)),
                ],
            )

    def test_interval_after_open_interval_rejected(self):
        with pytest.raises(ValueError):
            Entity(
                id="A",
                membership_intervals=[
                    MembershipInterval(date(2024, 1, 1)),
                    MembershipInterval(date(2024, 6, 1)),
                ],
            )

    def test_current_interval(self):
        entity = Entity(
            id="A",
            membership_intervals=[
                MembershipInterval(date(2024, 1, 1), date(2024, 2, 1)),
                MembershipInterval(date(2024, 3, 1)),
            ],
        )
        assert entity.first_joined == date(2024, 1, 1)
        assert entity.current_interval.start == date(2024, 3, 1)

    def test_record_round_trip_keeps_unknown_fields(self):
        record = {
            "id": "p1",
            "name": "Alex",
            "membershipIntervals": [
                {"start": "2024-01-01", "end": "2024-02-01"},
                {"start": "2024-03-01", "end": None},
            ],
            "fairnessDebt": 1.5,
            "email": "alex@example.org",
            "tags": ["night"],
        }
        entity = Entity.from_record(record)
        assert entity.fairness_debt == 1.5
        assert entity.attributes == {"email": "alex@example.org", "tags": ["night"]}
        assert entity.to_record() == record

    def test_malformed_interval_date_rejected(self):
        with pytest.raises(ValueError):
            Entity.from_record(
                {"id": "p1", "membershipIntervals": [{"start": "not-a-date"}]}
            )


class TestPeriodAssignment:
    """Tests for PeriodAssignment."""

    @pytest.fixture
    def assignment(self):
        return PeriodAssignment(
            period_index=3,
            period_start=date(2024, 1, 22),
            primary_ids=["A", "B"],
            substitute_ids=["C", "D"],
        )

    def test_lists_become_tuples(self, assignment):
        assert assignment.primary_ids == ("A", "B")
        assert assignment.assigned_ids == ("A", "B", "C", "D")

    def test_overlap_rejected(self):
        with pytest.raises(ValueError):
            PeriodAssignment(0, date(2024, 1, 1), ["A", "B"], ["B"])

    def test_replace_assignee_keeps_position(self, assignment):
        edited = assignment.replace_assignee("A", "E", annotation="swap")
        assert edited.primary_ids == ("E", "B")
        assert edited.annotation == "swap"
        assert assignment.primary_ids == ("A", "B")

    def test_replace_with_substitute_promotes_it(self, assignment):
        edited = assignment.replace_assignee("B", "C")
        assert edited.primary_ids == ("A", "C")
        assert edited.substitute_ids == ("D",)

    def test_replace_is_sticky(self):
        assignment = PeriodAssignment(
            0, date(2024, 1, 1), ["A", "B"], [], mentor_satisfied=False
        )
        edited = assignment.replace_assignee("A", "Z")
        assert edited.mentor_satisfied is False

    def test_replace_unknown_assignee_rejected(self, assignment):
        with pytest.raises(ValueError):
            assignment.replace_assignee("Z", "E")

    def test_mark_emergency(self, assignment):
        flagged = assignment.mark_emergency("Team short")
        assert flagged.is_emergency
        assert flagged.emergency_reason == "Team short"
        assert not assignment.is_emergency

    def test_record_round_trip(self):
        record = {
            "periodIndex": 5,
            "periodStartDate": "2024-02-05",
            "primaryIds": ["A", "B"],
            "substituteIds": ["C"],
            "mentorSatisfied": False,
            "annotation": "holiday week",
            "isEmergency": True,
            "emergencyReason": "illness",
            "approvedBy": "ops",
        }
        assignment = PeriodAssignment.from_record(record)
        assert assignment.period_start == date(2024, 2, 5)
        assert assignment.attributes == {"approvedBy": "ops"}
        assert assignment.to_record() == record

    def test_minimal_record_round_trip(self):
        record = {
            "periodIndex": 0,
            "periodStartDate": "2024-01-01",
            "primaryIds": ["A"],
            "substituteIds": [],
            "mentorSatisfied": True,
        }
        assert PeriodAssignment.from_record(record).to_record() == record


class TestEstimatorState:
    """Tests for EstimatorState."""

    def test_negative_variance_rejected(self):
        with pytest.raises(ValueError):
            EstimatorState("A", variance=-0.1)

    def test_record_round_trip(self):
        state = EstimatorState("A", 0.3, 0.02, 7, date(2024, 1, 8))
        assert EstimatorState.from_record(state.to_record()) == state

    @pytest.mark.parametrize("mean, expected", [(1.7, 1.0), (-0.2, 0.0), (0.4, 0.4)])
    def test_mean_clamped_to_unit_interval(self, mean, expected):
        state = EstimatorState.from_record({"entityId": "A", "mean": mean})
        assert state.mean == pytest.approx(expected)


class TestGenerationOptions:
    """Tests for GenerationOptions."""

    def test_defaults_are_valid(self):
        options = GenerationOptions()
        assert options.team_size == 2
        assert options.substitute_count == 2
        assert options.random_seed == 42
        assert options.validate() == []

    def test_invalid_values_reported(self):
        options = GenerationOptions(team_size=0, substitute_count=-1, temperature=-0.5)
        assert len(options.validate()) == 3

    def test_adaptive_bounds_checked_only_when_enabled(self):
        assert GenerationOptions(min_temperature=0).validate() == []
        options = GenerationOptions(
            adaptive_temperature=True, min_temperature=2.0, max_temperature=1.0
        )
        assert len(options.validate()) == 1

    def test_invalid_diversity_settings_reported(self):
        options = GenerationOptions(diversity_weight=-1.0, diversity_window=0)
        assert len(options.validate()) == 2


class TestCoercion:
    """Tests for turning records into model objects."""

    def test_objects_pass_through(self):
        entity = Entity(
            id="A", membership_intervals=[MembershipInterval(date(2024, 1, 1))]
        )
        assert coerce_entity(entity) is entity

    def test_entity_record(self):
        entity = coerce_entity(
            {"id": "A", "membershipIntervals": [{"start": "2024-01-01"}]}
        )
        assert entity.id == "A"
        assert entity.membership_intervals[0].start == date(2024, 1, 1)

    def test_assignment_record(self):
        assignment = coerce_assignment(
            {"periodIndex": 0, "periodStartDate": "2024-01-01", "primaryIds": ["A"]}
        )
        assert assignment.primary_ids == ("A",)

    def test_missing_key_raises(self):
        with pytest.raises(KeyError):
            coerce_entity({"name": "nameless"})


class TestCorrectiveAction:
    """Tests for CorrectiveAction."""

    def test_debt_delta_sign(self):
        boost = CorrectiveAction("A", CorrectiveActionType.PRIORITY_BOOST, 1.5, 6)
        penalty = CorrectiveAction("B", CorrectiveActionType.PRIORITY_PENALTY, 1.5, 6)
        assert boost.debt_delta == 1.5
        assert penalty.debt_delta == -1.5


class TestBatchResult:
    """Tests for BatchResult."""

    def test_add_error_marks_failure(self):
        result = BatchResult(success=True)
        result.add_error("broken")
        assert not result.success
        assert result.errors == ["broken"]

    def test_assignment_counts(self):
        result = BatchResult(
            success=True,
            assignments=[
                PeriodAssignment(0, date(2024, 1, 1), ["A", "B"], ["C"]),
                PeriodAssignment(1, date(2024, 1, 8), ["C", "A"], []),
            ],
        )
        assert result.assignment_counts() == {"A": 2, "B": 1, "C": 1}
