#!/usr/bin/env python3
"""
Tests for the order status state machine.

Verifies that:
- Every listed edge is accepted and every other pair is rejected
- Terminal statuses reject every target, including themselves
- The rejection message names both statuses and the allowed targets
- Statuses can be given as enum members or plain strings
- A transition that keeps losing its compare-and-set write gives up with
  a pipeline error
"""

import asyncio
import sys

from llmstxt_pipeline.errors import FatalJobError, InvalidStatusTransitionError, PipelineError, StatusContentionError
from llmstxt_pipeline.status import (
    OrderStatus,
    TRANSITIONS,
    allowed_transitions,
    can_transition,
    is_terminal,
    validate_transition,
)
from llmstxt_pipeline.storage.subjects import MAX_TRANSITION_RETRIES, transition

EDGES = {
    (OrderStatus.CREATED, OrderStatus.PENDING_PAYMENT),
    (OrderStatus.CREATED, OrderStatus.QUEUED),
    (OrderStatus.PENDING_PAYMENT, OrderStatus.PAID),
    (OrderStatus.PENDING_PAYMENT, OrderStatus.PAYMENT_FAILED),
    (OrderStatus.PENDING_PAYMENT, OrderStatus.CANCELLED),
    (OrderStatus.PAID, OrderStatus.QUEUED),
    (OrderStatus.QUEUED, OrderStatus.PROCESSING),
    (OrderStatus.QUEUED, OrderStatus.CANCELLED),
    (OrderStatus.PROCESSING, OrderStatus.COMPLETED),
    (OrderStatus.PROCESSING, OrderStatus.FAILED),
    (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
    (OrderStatus.FAILED, OrderStatus.REFUNDED),
}


def test_transition_table_matches_edges():
    """Every (from, to) pair is legal exactly when it is a listed edge."""
    for source in OrderStatus:
        for target in OrderStatus:
            expected = (source, target) in EDGES
            assert can_transition(source, target) is expected, f"{source.value} → {target.value}"
            if expected:
                validate_transition(source, target)
            else:
                try:
                    validate_transition(source, target)
                except InvalidStatusTransitionError:
                    pass
                else:
                    raise AssertionError(f"{source.value} → {target.value} should be rejected")

    assert set(TRANSITIONS) == set(OrderStatus)
    print("  Transition table test passed!")


def test_terminal_statuses_reject_everything():
    """Completed, cancelled, refunded and payment_failed have no outgoing edges."""
    terminal = {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.REFUNDED, OrderStatus.PAYMENT_FAILED}
    assert {s for s in OrderStatus if is_terminal(s)} == terminal
    for status in terminal:
        assert allowed_transitions(status) == ()
        assert not can_transition(status, status)

    # FAILED is not terminal: it can still be refunded
    assert not is_terminal(OrderStatus.FAILED)
    print("  Terminal statuses test passed!")


def test_rejection_message():
    """The error names the attempted edge and what would have been allowed."""
    try:
        validate_transition(OrderStatus.QUEUED, OrderStatus.COMPLETED)
    except InvalidStatusTransitionError as e:
        assert str(e) == (
            "Invalid status transition: queued → completed. Allowed transitions from queued: processing, cancelled"
        )
        assert e.from_status == "queued"
        assert e.to_status == "completed"
        assert isinstance(e, FatalJobError)
    else:
        raise AssertionError("queued → completed should be rejected")

    try:
        validate_transition(OrderStatus.CANCELLED, OrderStatus.PROCESSING)
    except InvalidStatusTransitionError as e:
        assert str(e).endswith("Allowed transitions from cancelled: none (terminal status)")
    else:
        raise AssertionError("cancelled → processing should be rejected")
    print("  Rejection message test passed!")


def test_accepts_plain_strings():
    assert can_transition("queued", "processing")
    assert not can_transition("completed", "processing")
    assert allowed_transitions("failed") == (OrderStatus.REFUNDED,)
    print("  String statuses test passed!")


class ContendedRepository:
    """Reports QUEUED but loses every compare-and-set write."""

    def __init__(self):
        self.writes = 0

    async def get_status(self, subject_id):
        return OrderStatus.QUEUED

    async def update_status(self, subject_id, status, expected=None, **fields):
        self.writes += 1
        return False


def test_transition_gives_up_under_contention():
    repo = ContendedRepository()
    try:
        asyncio.run(transition(repo, 7, OrderStatus.PROCESSING))
    except StatusContentionError as e:
        assert isinstance(e, PipelineError)
        assert (e.subject_id, e.to_status) == (7, "processing")
        assert str(e) == "Subject 7 status kept changing during transition to processing"
    else:
        raise AssertionError("Expected StatusContentionError")
    assert repo.writes == MAX_TRANSITION_RETRIES
    print("  Transition contention test passed!")


def run_tests():
    print("\nStatus machine tests:")
    test_transition_table_matches_edges()
    test_terminal_statuses_reject_everything()
    test_rejection_message()
    test_accepts_plain_strings()
    test_transition_gives_up_under_contention()
    return True


def main():
    """Main test function."""
    success = run_tests()
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
