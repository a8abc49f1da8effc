"""Tests for the redemption window rule and change event shape."""

from uuid import UUID

import pytest

from points_kernel.domain.events import ChangeEvent, ChangeType
from points_kernel.domain.redemption import RedemptionPeriod
from points_kernel.exceptions import ValidationError


class TestRedemptionPeriod:
    def test_inclusive_bounds(self):
        period = RedemptionPeriod(start_day=5, end_day=10)
        assert not period.is_open_on(4)
        assert period.is_open_on(5)
        assert period.is_open_on(10)
        assert not period.is_open_on(11)

    def test_single_day_window(self):
        period = RedemptionPeriod(start_day=15, end_day=15)
        assert period.is_open_on(15)
        assert not period.is_open_on(16)

    @pytest.mark.parametrize("start,end", [(0, 10), (1, 32), (10, 5), (True, 5)])
    def test_invalid_windows(self, start, end):
        with pytest.raises(ValidationError):
            RedemptionPeriod(start_day=start, end_day=end)

    def test_days_until_open_before_window(self):
        assert RedemptionPeriod(10, 20).days_until_open(3, 30) == 7

    def test_days_until_open_after_window_wraps_month(self):
        assert RedemptionPeriod(10, 20).days_until_open(25, 30) == 15

    def test_days_until_open_inside_window(self):
        assert RedemptionPeriod(10, 20).days_until_open(12, 30) == 0


def test_change_event_as_dict():
    event = ChangeEvent(
        type=ChangeType.ASSIGNMENT_APPROVED,
        user_id=UUID(int=9),
        payload={"points": 100},
    )
    assert event.as_dict() == {
        "type": "assignment.approved",
        "userId": str(UUID(int=9)),
        "payload": {"points": 100},
    }
