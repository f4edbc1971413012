"""Order state machine."""

import pytest

from marketplace.models import OrderStatus, ORDER_TRANSITIONS, can_transition


class TestTransitions:
    def test_every_status_has_an_entry(self):
        assert set(ORDER_TRANSITIONS) == set(OrderStatus)

    @pytest.mark.parametrize(
        "target",
        [OrderStatus.PAID, OrderStatus.PAYMENT_FAILED, OrderStatus.REFUNDED],
    )
    def test_pending_can_move_to_any_outcome(self, target):
        assert can_transition(OrderStatus.PENDING, target)

    def test_paid_can_only_be_refunded(self):
        assert can_transition(OrderStatus.PAID, OrderStatus.REFUNDED)
        assert not can_transition(OrderStatus.PAID, OrderStatus.PAYMENT_FAILED)
        assert not can_transition(OrderStatus.PAID, OrderStatus.PENDING)

    def test_failed_payment_can_be_retried(self):
        assert can_transition(OrderStatus.PAYMENT_FAILED, OrderStatus.PAID)
        assert not can_transition(OrderStatus.PAYMENT_FAILED, OrderStatus.REFUNDED)

    def test_refunded_is_terminal(self):
        for target in OrderStatus:
            if target != OrderStatus.REFUNDED:
                assert not can_transition(OrderStatus.REFUNDED, target)

    def test_same_status_is_allowed(self):
        for status in OrderStatus:
            assert can_transition(status, status)
