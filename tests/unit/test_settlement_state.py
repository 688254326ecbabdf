"""Unit tests for the settlement state machine."""

from uuid import uuid4

import pytest

from motohire.models.errors import IllegalSettlementTransition
from motohire.models.payment import PaymentAttempt, PaymentAttemptStatus
from motohire.models.settlement import (
    AwaitingPayment,
    CollectingDetails,
    Failed,
    Settled,
    SettlementFlow,
)


def _attempt(reference):
    return PaymentAttempt(reference=reference, amount=3600, payer_phone="254712345678")


def _awaiting_flow():
    flow = SettlementFlow(owner_id=uuid4())
    reservation_id = uuid4()
    flow.submit(reservation_id, _attempt(reservation_id))
    return flow, reservation_id


def test_new_flow_collects_details():
    flow = SettlementFlow(owner_id=uuid4())

    assert isinstance(flow.state, CollectingDetails)
    assert flow.reservation_id is None


def test_submit_enters_awaiting_payment():
    flow, reservation_id = _awaiting_flow()

    assert isinstance(flow.state, AwaitingPayment)
    assert flow.reservation_id == reservation_id
    assert flow.state.attempt.reference == reservation_id


def test_submit_requires_matching_payment_reference():
    """The payment reference must be the reservation it pays for."""
    flow = SettlementFlow(owner_id=uuid4())

    with pytest.raises(IllegalSettlementTransition):
        flow.submit(uuid4(), _attempt(uuid4()))


def test_settle_from_awaiting_payment():
    flow, reservation_id = _awaiting_flow()

    flow.update_attempt(PaymentAttemptStatus.AWAITING_CONFIRMATION, checkout_request_id="ws_CO_1")
    flow.settle("QKX123")

    assert flow.state == Settled(reservation_id=reservation_id, receipt="QKX123")
    assert flow.history == ["collecting_details", "awaiting_payment", "awaiting_payment", "settled"]


def test_update_attempt_keeps_reference():
    flow, reservation_id = _awaiting_flow()

    state = flow.update_attempt(PaymentAttemptStatus.UNKNOWN)

    assert state.attempt.status == PaymentAttemptStatus.UNKNOWN
    assert state.attempt.reference == reservation_id


def test_fail_then_retry():
    flow, reservation_id = _awaiting_flow()

    flow.fail("Insufficient funds")
    assert flow.state == Failed(reservation_id=reservation_id, reason="Insufficient funds")

    flow.retry()
    assert flow.state == CollectingDetails(last_error="Insufficient funds")


def test_cancel_returns_to_form():
    flow, _ = _awaiting_flow()

    flow.cancel("Cancelled by rider")

    assert flow.state == CollectingDetails(last_error="Cancelled by rider")


def test_cannot_settle_without_reservation():
    """Confirming a reservation that was never created is illegal."""
    flow = SettlementFlow(owner_id=uuid4())

    with pytest.raises(IllegalSettlementTransition) as exc_info:
        flow.settle()

    assert exc_info.value.state == "collecting_details"
    assert exc_info.value.event == "settle"


def test_settled_flow_is_terminal():
    flow, _ = _awaiting_flow()
    flow.settle()

    for event in (flow.settle, flow.retry, lambda: flow.fail("late"), flow.cancel):
        with pytest.raises(IllegalSettlementTransition):
            event()


def test_cannot_submit_twice():
    flow, reservation_id = _awaiting_flow()

    with pytest.raises(IllegalSettlementTransition):
        flow.submit(reservation_id, _attempt(reservation_id))
