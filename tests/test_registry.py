"""
Unit tests for the ActionRegistry

Covers identity, notification order and isolation, the state machine,
not-found and rejected updates, snapshots and log retention.
"""

import os
import sys
from unittest.mock import Mock

import pytest

# Add project root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from llmos.actions import (
    ActionDraft,
    ActionKind,
    ActionRegistry,
    ActionRegistryError,
    ActionSource,
    ActionStatus,
    UpdateStatus,
)
from llmos.actions.models import FilePayload


def make_draft(kind=ActionKind.COMMAND, requires_approval=False, payload=None, title="test action"):
    return ActionDraft(
        kind=kind,
        title=title,
        description="test",
        source=ActionSource.SYSTEM,
        payload=payload,
        requires_approval=requires_approval,
    )


def file_draft(requires_approval=True):
    return make_draft(
        ActionKind.FILE,
        requires_approval=requires_approval,
        payload={"operation": "create", "filepath": "/tmp/notes.txt"},
    )


@pytest.fixture
def registry():
    return ActionRegistry()


@pytest.mark.unit
def test_emit_assigns_unique_ids(registry):
    """Every emitted record gets a distinct id even within one clock tick."""
    records = [registry.emit(make_draft()) for _ in range(500)]

    ids = [r.id for r in records]
    assert len(set(ids)) == len(ids)
    assert all(r.created_at.tzinfo is not None for r in records)


@pytest.mark.unit
def test_emit_sets_initial_status_from_gating(registry):
    gated = registry.emit(make_draft(requires_approval=True))
    free = registry.emit(make_draft(requires_approval=False))

    assert gated.status == ActionStatus.AWAITING_APPROVAL
    assert free.status == ActionStatus.EXECUTING


@pytest.mark.unit
def test_listeners_notified_in_registration_order(registry):
    calls = []
    for name in ("first", "second", "third"):
        registry.subscribe(lambda record, name=name: calls.append((name, record.id)))

    record = registry.emit(make_draft())

    assert calls == [("first", record.id), ("second", record.id), ("third", record.id)]


@pytest.mark.unit
def test_events_delivered_in_call_order(registry):
    seen = []
    registry.subscribe(lambda record: seen.append((record.id, record.status)))

    record = registry.emit(make_draft(requires_approval=True))
    registry.approve_action(record.id)
    registry.complete_action(record.id)

    assert seen == [
        (record.id, ActionStatus.AWAITING_APPROVAL),
        (record.id, ActionStatus.EXECUTING),
        (record.id, ActionStatus.COMPLETED),
    ]


@pytest.mark.unit
def test_unsubscribe_removes_only_that_listener(registry):
    first, second = Mock(), Mock()
    unsubscribe = registry.subscribe(first)
    registry.subscribe(second)

    unsubscribe()
    unsubscribe()  # second call is a no-op
    registry.emit(make_draft())

    first.assert_not_called()
    second.assert_called_once()


@pytest.mark.unit
def test_unsubscribe_during_notification(registry):
    """A listener removing itself mid-pass does not disturb the others."""
    calls = []
    handles = {}

    def self_removing(record):
        calls.append("self_removing")
        handles["self_removing"]()

    registry.subscribe(lambda record: calls.append("before"))
    handles["self_removing"] = registry.subscribe(self_removing)
    registry.subscribe(lambda record: calls.append("after"))

    registry.emit(make_draft())
    registry.emit(make_draft())

    assert calls == ["before", "self_removing", "after", "before", "after"]


@pytest.mark.unit
def test_failing_listener_is_isolated(registry):
    after = Mock()
    registry.subscribe(Mock(side_effect=RuntimeError("boom")))
    registry.subscribe(after)

    record = registry.emit(make_draft())

    after.assert_called_once_with(record)
    assert registry.get_actions() == [record]
    assert registry.get_stats()["listener_errors"] == 1


@pytest.mark.unit
def test_emit_with_no_listeners(registry):
    record = registry.emit(make_draft())
    assert registry.get_action(record.id) == record


@pytest.mark.unit
def test_reentrant_approval_from_listener(registry):
    """A listener may call back into the registry while being notified."""
    def auto_approve(record):
        if record.status == ActionStatus.AWAITING_APPROVAL:
            registry.approve_action(record.id)

    registry.subscribe(auto_approve)
    record = registry.emit(make_draft(requires_approval=True))

    assert registry.get_action(record.id).status == ActionStatus.EXECUTING


@pytest.mark.unit
def test_update_unknown_id_is_not_found(registry):
    listener = Mock()
    registry.emit(make_draft())
    registry.subscribe(listener)

    result = registry.update("missing", status=ActionStatus.COMPLETED)

    assert result.outcome == UpdateStatus.NOT_FOUND
    assert result.not_found
    assert not result
    assert result.record is None
    assert len(registry.get_actions()) == 1
    listener.assert_not_called()


@pytest.mark.unit
def test_file_action_approval_scenario(registry):
    record = registry.emit(file_draft())
    assert record.status == ActionStatus.AWAITING_APPROVAL

    approved = registry.approve_action(record.id)
    assert approved.updated
    assert approved.record.status == ActionStatus.EXECUTING

    completed = registry.complete_action(record.id, {"ok": True})
    assert completed.record.status == ActionStatus.COMPLETED
    assert completed.record.payload.result == {"ok": True}
    assert completed.record.payload.operation == "create"
    assert completed.record.payload.filepath == "/tmp/notes.txt"


@pytest.mark.unit
def test_reject_attaches_reason(registry):
    record = registry.emit(make_draft(
        ActionKind.NETWORK,
        requires_approval=True,
        payload={"url": "https://example.com", "method": "POST"},
    ))

    result = registry.reject_action(record.id, "blocked")

    assert result.record.status == ActionStatus.FAILED
    assert result.record.payload.rejection_reason == "blocked"
    assert result.record.payload.url == "https://example.com"


@pytest.mark.unit
def test_fail_attaches_error(registry):
    record = registry.emit(make_draft())
    result = registry.fail_action(record.id, "disk full")

    assert result.record.status == ActionStatus.FAILED
    assert result.record.payload.error == "disk full"


@pytest.mark.unit
def test_terminal_records_reject_updates(registry):
    listener = Mock()
    record = registry.emit(make_draft())
    registry.complete_action(record.id, "done")
    registry.subscribe(listener)

    for result in (
        registry.fail_action(record.id, "late"),
        registry.update(record.id, status=ActionStatus.EXECUTING),
        registry.update(record.id, payload={"result": "changed"}),
    ):
        assert result.outcome == UpdateStatus.REJECTED
        assert result.record.status == ActionStatus.COMPLETED

    assert registry.get_action(record.id).payload.result == "done"
    listener.assert_not_called()


@pytest.mark.unit
def test_no_backward_transitions(registry):
    record = registry.emit(make_draft(requires_approval=True))
    registry.approve_action(record.id)

    result = registry.update(record.id, status=ActionStatus.AWAITING_APPROVAL)
    assert result.outcome == UpdateStatus.REJECTED

    result = registry.update(record.id, status=ActionStatus.PENDING)
    assert result.outcome == UpdateStatus.REJECTED
    assert registry.get_action(record.id).status == ActionStatus.EXECUTING


@pytest.mark.unit
def test_gated_action_cannot_complete_before_approval(registry):
    record = registry.emit(make_draft(requires_approval=True))

    result = registry.complete_action(record.id)

    assert result.outcome == UpdateStatus.REJECTED
    assert registry.get_action(record.id).status == ActionStatus.AWAITING_APPROVAL


@pytest.mark.unit
def test_approve_requires_awaiting_approval(registry):
    record = registry.emit(make_draft())

    assert registry.approve_action(record.id).outcome == UpdateStatus.REJECTED
    assert registry.reject_action(record.id, "no").outcome == UpdateStatus.REJECTED
    assert registry.approve_action("missing").outcome == UpdateStatus.NOT_FOUND


@pytest.mark.unit
def test_update_payload_merge_and_replace(registry):
    record = registry.emit(file_draft(requires_approval=False))

    merged = registry.update(record.id, payload={"filepath": "/tmp/other.txt"})
    assert merged.record.payload.filepath == "/tmp/other.txt"
    assert merged.record.payload.operation == "create"
    assert merged.record.status == ActionStatus.EXECUTING

    replaced = registry.update(record.id, payload=FilePayload(operation="delete", filepath="/tmp/x"))
    assert replaced.record.payload.operation == "delete"


@pytest.mark.unit
def test_update_rejects_invalid_payload(registry):
    record = registry.emit(file_draft(requires_approval=False))

    unknown_key = registry.update(record.id, payload={"url": "https://example.com"})
    assert unknown_key.outcome == UpdateStatus.REJECTED

    from llmos.actions.models import NetworkPayload
    wrong_kind = registry.update(record.id, payload=NetworkPayload(url="https://example.com"))
    assert wrong_kind.outcome == UpdateStatus.REJECTED
    assert registry.get_action(record.id).payload.filepath == "/tmp/notes.txt"


@pytest.mark.unit
def test_get_actions_returns_snapshot(registry):
    registry.emit(make_draft())
    snapshot = registry.get_actions()
    snapshot.clear()

    assert len(registry.get_actions()) == 1


@pytest.mark.unit
def test_get_actions_by_status(registry):
    records = [registry.emit(make_draft(requires_approval=i % 2 == 0, title=f"a{i}")) for i in range(6)]
    registry.approve_action(records[2].id)

    awaiting = registry.get_actions_by_status(ActionStatus.AWAITING_APPROVAL)
    expected = [r for r in registry.get_actions() if r.status == ActionStatus.AWAITING_APPROVAL]

    assert awaiting == expected
    assert [r.title for r in awaiting] == ["a0", "a4"]
    assert [r.title for r in registry.get_actions_by_status("executing")] == ["a1", "a2", "a3", "a5"]


@pytest.mark.unit
def test_cleanup_keeps_most_recent(registry):
    listener = Mock()
    records = [registry.emit(make_draft(title=f"a{i}")) for i in range(10)]
    registry.subscribe(listener)

    dropped = registry.cleanup(4)

    assert dropped == 6
    assert registry.get_actions() == records[-4:]
    listener.assert_not_called()

    assert registry.cleanup(4) == 0
    assert registry.cleanup(100) == 0
    assert registry.get_actions() == records[-4:]


@pytest.mark.unit
def test_cleanup_defaults_to_retention():
    registry = ActionRegistry(retention=3)
    for _ in range(5):
        registry.emit(make_draft())

    registry.cleanup()

    assert len(registry.get_actions()) == 3


@pytest.mark.unit
def test_cleanup_then_late_update_is_not_found(registry):
    old = registry.emit(make_draft())
    registry.emit(make_draft())
    registry.cleanup(1)

    assert registry.complete_action(old.id).not_found


@pytest.mark.unit
def test_cleanup_rejects_negative(registry):
    with pytest.raises(ActionRegistryError):
        registry.cleanup(-1)


@pytest.mark.unit
def test_records_are_immutable(registry):
    record = registry.emit(make_draft())

    with pytest.raises(Exception):
        record.status = ActionStatus.COMPLETED

    assert registry.get_action(record.id).status == ActionStatus.EXECUTING


@pytest.mark.unit
def test_get_stats(registry):
    registry.subscribe(Mock())
    registry.emit(make_draft(requires_approval=True))
    registry.emit(make_draft())

    stats = registry.get_stats()

    assert stats["action_count"] == 2
    assert stats["emitted_count"] == 2
    assert stats["listener_count"] == 1
    assert stats["status_counts"]["awaiting_approval"] == 1
    assert stats["status_counts"]["executing"] == 1


def pending_draft(requires_approval):
    return ActionDraft(
        kind=ActionKind.COMMAND,
        title="queued",
        description="test",
        source=ActionSource.SYSTEM,
        status=ActionStatus.PENDING,
        requires_approval=requires_approval,
    )


@pytest.mark.unit
def test_gated_pending_record_must_await_approval(registry):
    """A gated record cannot skip awaiting_approval on its way to executing."""
    record = registry.emit(pending_draft(requires_approval=True))

    assert registry.update(record.id, status=ActionStatus.EXECUTING).outcome == UpdateStatus.REJECTED
    assert registry.approve_action(record.id).outcome == UpdateStatus.REJECTED
    assert registry.get_action(record.id).status == ActionStatus.PENDING

    assert registry.update(record.id, status=ActionStatus.AWAITING_APPROVAL).updated
    assert registry.approve_action(record.id).record.status == ActionStatus.EXECUTING


@pytest.mark.unit
def test_ungated_pending_record_never_awaits_approval(registry):
    record = registry.emit(pending_draft(requires_approval=False))

    result = registry.update(record.id, status=ActionStatus.AWAITING_APPROVAL)

    assert result.outcome == UpdateStatus.REJECTED
    assert registry.get_action(record.id).status == ActionStatus.PENDING
    assert registry.update(record.id, status=ActionStatus.EXECUTING).updated


@pytest.mark.unit
def test_pending_record_can_fail(registry):
    record = registry.emit(pending_draft(requires_approval=True))

    result = registry.fail_action(record.id, "cancelled")

    assert result.record.status == ActionStatus.FAILED
    assert result.record.is_terminal


@pytest.mark.unit
def test_terminal_rejection_reason(registry):
    record = registry.emit(make_draft())
    assert not record.is_terminal
    registry.fail_action(record.id, "boom")

    result = registry.update(record.id, payload={"error": "again"})

    assert result.outcome == UpdateStatus.REJECTED
    assert "cannot change" in result.reason
