"""Tests for AggregatedRecord merge semantics."""

import math

import pytest

from nestwatch.domain.enums import RestrictionState
from nestwatch.domain.record import AggregatedRecord, PilotRecord, PositionFix
from nestwatch.domain.snapshot import Observation

from tests.test_snapshot import T1, T2

_PILOT = PilotRecord(
    pilot_id="P-testpilot1",
    first_name="test",
    last_name="pilot",
    phone_number="+123123",
    email="example@example.com",
)
_OTHER_PILOT = PilotRecord(
    pilot_id="P-testpilot2",
    first_name="testName",
    last_name="testLast",
    phone_number="+456456",
    email="hehe@example.com",
)


def _ts(i: int) -> str:
    return f"2023-01-11T13:58:{i:02d}.000Z"


class TestAggregatedRecord:
    def test_new_record_is_clear(self) -> None:
        rec = AggregatedRecord("SN-nottrespas")
        assert rec.closest_distance == math.inf
        assert rec.restriction is RestrictionState.CLEAR
        assert not rec.restricted_ever
        assert rec.first_restricted_at is None
        assert rec.position_history == []

    def test_outside_then_inside(self) -> None:
        rec = AggregatedRecord("SN-nottrespas")
        rec.absorb(Observation.at("SN-nottrespas", 250000, 149999), T1)
        rec.absorb(Observation.at("SN-nottrespas", 250000, 150000), T2)

        assert rec.closest_distance == 100000
        assert rec.restricted_ever
        assert rec.first_restricted_at == T2
        assert rec.last_seen == T2
        assert rec.position_history == [
            PositionFix(timestamp=T2, x=250000, y=150000),
            PositionFix(timestamp=T1, x=250000, y=149999),
        ]

    def test_closest_distance_never_increases(self) -> None:
        rec = AggregatedRecord("SN-nottrespas")
        previous = math.inf
        for i, y in enumerate([10, 200000, 5000, 499999, 120000, 250000, 0]):
            rec.absorb(Observation.at("SN-nottrespas", 250000, y), _ts(i))
            assert rec.closest_distance <= previous
            previous = rec.closest_distance
        assert rec.closest_distance == 0

    def test_restriction_is_sticky_and_first_time_pinned(self) -> None:
        rec = AggregatedRecord("SN-trespassin")
        rec.absorb(Observation.at("SN-trespassin", 250000, 250000), _ts(1))
        rec.absorb(Observation.at("SN-trespassin", 0, 0), _ts(2))
        rec.absorb(Observation.at("SN-trespassin", 250000, 240000), _ts(3))

        assert rec.restricted_ever
        assert rec.first_restricted_at == _ts(1)
        assert rec.last_seen == _ts(3)

    def test_mark_restricted_reports_transition_only_once(self) -> None:
        rec = AggregatedRecord("SN-trespassin")
        assert rec.mark_restricted(_ts(1)) is True
        assert rec.mark_restricted(_ts(2)) is False
        assert rec.first_restricted_at == _ts(1)

    def test_history_has_one_entry_per_merge_newest_first(self) -> None:
        rec = AggregatedRecord("SN-nottrespas")
        for i in range(5):
            rec.absorb(Observation.at("SN-nottrespas", i * 1000, 10), _ts(i))

        history = rec.position_history
        assert len(history) == 5
        assert [fix.timestamp for fix in history] == [_ts(i) for i in reversed(range(5))]
        assert [fix.x for fix in history] == [i * 1000 for i in reversed(range(5))]

    def test_pilot_ignored_when_not_restricted(self) -> None:
        rec = AggregatedRecord("SN-nottrespas")
        rec.absorb(Observation.at("SN-nottrespas", 0, 0), T1, _PILOT)
        assert rec.pilot is None

    def test_pilot_attached_and_replaced(self) -> None:
        rec = AggregatedRecord("SN-trespassin")
        rec.absorb(Observation.at("SN-trespassin", 250000, 250000), T1, _PILOT)
        assert rec.pilot == _PILOT

        rec.absorb(Observation.at("SN-trespassin", 250000, 250000), T2)
        assert rec.pilot == _PILOT

        rec.absorb(Observation.at("SN-trespassin", 250000, 250000), T2, _OTHER_PILOT)
        assert rec.pilot == _OTHER_PILOT

    def test_wrong_entity_rejected(self) -> None:
        rec = AggregatedRecord("SN-trespassin")
        with pytest.raises(ValueError):
            rec.absorb(Observation.at("SN-nottrespas", 0, 0), T1)

    def test_clone_is_independent(self) -> None:
        rec = AggregatedRecord("SN-trespassin")
        rec.absorb(Observation.at("SN-trespassin", 0, 0), T1)
        copy = rec.clone()
        copy.absorb(Observation.at("SN-trespassin", 250000, 250000), T2)

        assert len(rec.position_history) == 1
        assert not rec.restricted_ever
        assert copy.restricted_ever

    def test_view_shape(self) -> None:
        rec = AggregatedRecord("SN-trespassin")
        rec.absorb(Observation.at("SN-trespassin", 250000, 250000), T1, _PILOT)
        assert rec.to_view() == {
            "id": "SN-trespassin",
            "closestDistance": 0,
            "lastSeen": T1,
            "restrictedEver": True,
            "firstRestrictedAt": T1,
            "positionHistory": [{"timestamp": T1, "positionX": 250000, "positionY": 250000}],
            "pilot": {
                "pilotId": "P-testpilot1",
                "firstName": "test",
                "lastName": "pilot",
                "phoneNumber": "+123123",
                "email": "example@example.com",
            },
        }

    def test_view_omits_absent_optionals(self) -> None:
        rec = AggregatedRecord("SN-nottrespas")
        rec.absorb(Observation.at("SN-nottrespas", 0, 0), T1)
        view = rec.to_view()
        assert "pilot" not in view
        assert "firstRestrictedAt" not in view
        assert view["restrictedEver"] is False
