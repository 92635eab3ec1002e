from __future__ import annotations

from datetime import timedelta

import pytest

from campaignflow.specs.common.enums import WorkflowOutcome
from campaignflow.workflow.policies import (
    POST_CONTENT_POLICY,
    SAVE_POLICY,
    RetryPolicy,
    fanout_concurrency,
    resolve_approval,
)


def test_delays_grow_geometrically_and_are_capped():
    policy = RetryPolicy(max_attempts=6, first_interval=timedelta(seconds=2), backoff_coefficient=3.0,
                         max_interval=timedelta(seconds=30))

    assert [policy.delay_for(n).total_seconds() for n in range(1, 5)] == [2.0, 6.0, 18.0, 30.0]


def test_builtin_policies():
    assert SAVE_POLICY.delay_for(2) == timedelta(seconds=2)
    assert POST_CONTENT_POLICY.delay_for(2) == timedelta(seconds=1.5)
    assert POST_CONTENT_POLICY.delay_for(20) == timedelta(seconds=10)


@pytest.mark.parametrize(
    "decision,expected",
    [
        ("approved", WorkflowOutcome.APPROVED),
        (" Rejected ", WorkflowOutcome.REJECTED),
        ("cancelled", WorkflowOutcome.NEEDS_REVISION),
        ("approve", WorkflowOutcome.NEEDS_REVISION),
        ("", WorkflowOutcome.NEEDS_REVISION),
        (None, WorkflowOutcome.NEEDS_REVISION),
    ],
)
def test_resolve_approval(decision, expected):
    assert resolve_approval(decision) == expected


def test_fanout_concurrency_from_environment(monkeypatch):
    monkeypatch.delenv("CONTENT_FANOUT_MAX_CONCURRENCY", raising=False)
    assert fanout_concurrency() == 1

    monkeypatch.setenv("CONTENT_FANOUT_MAX_CONCURRENCY", "4")
    assert fanout_concurrency() == 4

    monkeypatch.setenv("CONTENT_FANOUT_MAX_CONCURRENCY", "lots")
    assert fanout_concurrency() == 1

    monkeypatch.setenv("CONTENT_FANOUT_MAX_CONCURRENCY", "0")
    assert fanout_concurrency() == 1
