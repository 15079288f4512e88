from __future__ import annotations

import pytest

from loraprov_core.provisioning.selection import (
    select_failed,
    select_none,
    select_unregistered,
    toggle,
)
from loraprov_core.provisioning.types import (
    OUTCOME_ALREADY_EXISTS,
    OUTCOME_CREATED,
    OUTCOME_FAILED,
    STATUS_ERROR,
    STATUS_NOT_REGISTERED,
    STATUS_REGISTERED,
    ProvisioningSummary,
    RegistrationOutcome,
)


@pytest.mark.core
def test_toggle_adds_and_removes():
    known = ("a", "b")
    selected = toggle(frozenset(), "a", known)
    assert selected == frozenset({"a"})
    assert toggle(selected, "a", known) == frozenset()


@pytest.mark.core
def test_toggle_unknown_id_raises():
    with pytest.raises(KeyError):
        toggle(frozenset(), "zzz", ("a",))


@pytest.mark.core
def test_select_unregistered_only_picks_not_registered():
    statuses = {
        "a": STATUS_REGISTERED,
        "b": STATUS_NOT_REGISTERED,
        "c": STATUS_ERROR,
        "d": STATUS_NOT_REGISTERED,
    }
    assert select_unregistered(statuses) == frozenset({"b", "d"})
    assert select_none() == frozenset()


@pytest.mark.core
def test_select_failed_can_limit_to_retryable():
    summary = ProvisioningSummary(
        results=(
            RegistrationOutcome(local_id="a", status=OUTCOME_CREATED),
            RegistrationOutcome(local_id="b", status=OUTCOME_ALREADY_EXISTS),
            RegistrationOutcome(local_id="c", status=OUTCOME_FAILED, retryable=True),
            RegistrationOutcome(local_id="d", status=OUTCOME_FAILED, retryable=False),
        )
    )
    assert select_failed(summary) == frozenset({"c", "d"})
    assert select_failed(summary, retryable_only=True) == frozenset({"c"})
