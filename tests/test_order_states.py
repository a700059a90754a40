import pytest

from store.models.order import OrderStatus
from store.services.order_states import (
    CANCELLABLE_FROM,
    DELETABLE,
    REFUNDABLE_FROM,
    TRANSITIONS,
    can_transition,
    is_terminal,
    parse_status,
)

S = OrderStatus


@pytest.mark.parametrize(
    "current, target",
    [
        (S.PENDING, S.PROCESSING),
        (S.PENDING, S.CANCELLED),
        (S.PENDING, S.FAILED),
        (S.PROCESSING, S.COMPLETED),
        (S.PROCESSING, S.REFUNDED),
        (S.PROCESSING, S.FAILED),
        (S.COMPLETED, S.REFUNDED),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        (S.PENDING, S.COMPLETED),
        (S.PENDING, S.REFUNDED),
        (S.PROCESSING, S.CANCELLED),
        (S.COMPLETED, S.CANCELLED),
        (S.CANCELLED, S.PENDING),
        (S.REFUNDED, S.COMPLETED),
        (S.FAILED, S.PROCESSING),
    ],
)
def test_rejected_transitions(current, target):
    assert not can_transition(current, target)


def test_terminal_states_have_no_exits():
    assert {s for s in S if is_terminal(s)} == {S.CANCELLED, S.REFUNDED, S.FAILED}
    assert set(TRANSITIONS) == set(S)


def test_action_sets():
    assert CANCELLABLE_FROM == {S.PENDING}
    assert REFUNDABLE_FROM == {S.PROCESSING, S.COMPLETED}
    assert DELETABLE == {S.CANCELLED, S.FAILED}


def test_parse_status_is_case_insensitive():
    assert parse_status("completed") is S.COMPLETED
    assert can_transition("PENDING", "PROCESSING")

    with pytest.raises(ValueError):
        parse_status("shipped")
