"""
Action Registry and event bus.

Owns the ordered log of action records, mediates their state transitions and
fans every creation/update out to subscribed listeners synchronously.
"""
import logging
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from itertools import count
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import uuid4

from pydantic import ValidationError

from .models import (
    ActionDraft,
    ActionPayload,
    ActionRecord,
    ActionStatus,
    UpdateResult,
    UpdateStatus,
    can_transition,
    merge_payload,
)

logger = logging.getLogger(__name__)

ActionListener = Callable[[ActionRecord], None]


class ActionRegistryError(Exception):
    """Action registry usage error."""
    pass


class ActionRegistry:
    """
    Process-wide action log with synchronous publish/subscribe.

    One instance is created at the application composition root and shared by
    producers, the monitor and the HTTP API. Tests construct their own.

    All state is guarded by a single re-entrant lock held across both the
    mutation and the listener dispatch, so delivery order is registration
    order even with several producer threads, and a listener may call back
    into the registry (e.g. approve from a notification) without deadlocking.
    """

    def __init__(self, retention: int = 50):
        if retention < 0:
            raise ActionRegistryError(f"retention must be >= 0, got {retention}")
        self.retention = retention
        self._actions: "OrderedDict[str, ActionRecord]" = OrderedDict()
        self._listeners: List["_Subscription"] = []
        self._lock = threading.RLock()
        self._sequence = count(1)
        self.emitted_count = 0
        self.listener_errors = 0

        logger.info(f"ActionRegistry initialized with retention={retention}")

    def subscribe(self, listener: ActionListener) -> Callable[[], None]:
        """
        Register a listener for every subsequent emit/update.

        Args:
            listener: Called once per notification with the resulting record

        Returns:
            Callable that removes exactly this registration; calling it again is a no-op
        """
        token = _Subscription(listener)
        with self._lock:
            self._listeners.append(token)
        logger.debug(f"Subscribed action listener {listener!r}")

        def unsubscribe() -> None:
            with self._lock:
                if token.active:
                    token.active = False
                    self._listeners.remove(token)
                    logger.debug(f"Unsubscribed action listener {listener!r}")

        return unsubscribe

    def emit(self, draft: ActionDraft) -> ActionRecord:
        """
        Record a new action and notify listeners.

        Args:
            draft: Fully resolved action, including its approval requirement

        Returns:
            ActionRecord: The stored record with its id and creation time
        """
        with self._lock:
            action_id = f"action_{next(self._sequence)}_{uuid4().hex[:10]}"
            record = ActionRecord.from_draft(draft, action_id, datetime.now(timezone.utc))
            self._actions[action_id] = record
            self.emitted_count += 1

            logger.debug(f"Emitted {record.kind.value} action {action_id} ({record.status.value}) from {record.source.value}")
            self._notify(record)
            return record

    def update(self, action_id: str, status: Optional[ActionStatus] = None,
               payload: Union[ActionPayload, Dict[str, Any], None] = None) -> UpdateResult:
        """
        Merge changes into an existing record and notify listeners.

        Args:
            action_id: Record to change
            status: New status; must be a valid transition from the current one
            payload: Dict merged into the current payload, or a payload model of
                the same kind that replaces it

        Returns:
            UpdateResult: ``updated`` with the new record, ``not_found`` for an
            unknown id, or ``rejected`` for an invalid transition. Only
            ``updated`` notifies listeners.
        """
        with self._lock:
            current = self._actions.get(action_id)
            if current is None:
                logger.debug(f"Ignoring update for unknown action {action_id}")
                return UpdateResult(outcome=UpdateStatus.NOT_FOUND)

            new_status = ActionStatus(status) if status is not None else current.status
            if current.is_terminal:
                return self._reject(current, f"action is {current.status.value} and cannot change")
            if not can_transition(current, new_status):
                return self._reject(current, f"invalid transition {current.status.value} -> {new_status.value}")

            changes: Dict[str, Any] = {"status": new_status}
            if isinstance(payload, dict):
                try:
                    changes["payload"] = merge_payload(current.payload, payload)
                except ValidationError as e:
                    return self._reject(current, f"invalid payload: {e.error_count()} validation error(s)")
            elif payload is not None:
                if getattr(payload, "kind", None) != current.kind:
                    return self._reject(current, f"payload kind does not match {current.kind.value}")
                changes["payload"] = payload

            record = current.model_copy(update=changes)
            self._actions[action_id] = record

            logger.debug(f"Updated action {action_id}: {current.status.value} -> {record.status.value}")
            self._notify(record)
            return UpdateResult(outcome=UpdateStatus.UPDATED, record=record)

    def get_action(self, action_id: str) -> Optional[ActionRecord]:
        """Get a single record by id."""
        with self._lock:
            return self._actions.get(action_id)

    def get_actions(self) -> List[ActionRecord]:
        """Get a snapshot of all records in emission order."""
        with self._lock:
            return list(self._actions.values())

    def get_actions_by_status(self, status: ActionStatus) -> List[ActionRecord]:
        """Get a snapshot of the records with ``status``, in emission order."""
        status = ActionStatus(status)
        with self._lock:
            return [record for record in self._actions.values() if record.status == status]

    def cleanup(self, keep_last: Optional[int] = None) -> int:
        """
        Drop the oldest records beyond ``keep_last`` without notifying.

        Args:
            keep_last: Records to keep; defaults to the configured retention

        Returns:
            int: Number of records dropped
        """
        keep_last = self.retention if keep_last is None else keep_last
        if keep_last < 0:
            raise ActionRegistryError(f"keep_last must be >= 0, got {keep_last}")

        with self._lock:
            dropped = max(0, len(self._actions) - keep_last)
            for _ in range(dropped):
                self._actions.popitem(last=False)

        if dropped:
            logger.info(f"Action log trimmed: dropped {dropped}, kept {keep_last}")
        return dropped

    # Decision helpers

    def approve_action(self, action_id: str) -> UpdateResult:
        """Approve an action awaiting approval; it moves to ``executing``."""
        return self._decide(action_id, ActionStatus.EXECUTING)

    def reject_action(self, action_id: str, reason: str) -> UpdateResult:
        """Reject an action awaiting approval; it fails with ``rejection_reason``."""
        return self._decide(action_id, ActionStatus.FAILED, {"rejection_reason": reason})

    def complete_action(self, action_id: str, result: Any = None) -> UpdateResult:
        """Mark an executing action completed, attaching ``result``."""
        return self.update(action_id, status=ActionStatus.COMPLETED, payload={"result": result})

    def fail_action(self, action_id: str, error: str) -> UpdateResult:
        """Mark an action failed, attaching ``error``."""
        return self.update(action_id, status=ActionStatus.FAILED, payload={"error": error})

    def get_stats(self) -> Dict[str, Any]:
        """Get registry statistics."""
        with self._lock:
            by_status = {status.value: 0 for status in ActionStatus}
            for record in self._actions.values():
                by_status[record.status.value] += 1
            return {
                "action_count": len(self._actions),
                "emitted_count": self.emitted_count,
                "listener_count": len(self._listeners),
                "listener_errors": self.listener_errors,
                "retention": self.retention,
                "status_counts": by_status,
            }

    def _decide(self, action_id: str, status: ActionStatus,
                payload: Optional[Dict[str, Any]] = None) -> UpdateResult:
        with self._lock:
            current = self._actions.get(action_id)
            if current is not None and current.status != ActionStatus.AWAITING_APPROVAL:
                return self._reject(current, f"action is {current.status.value}, not awaiting approval")
            return self.update(action_id, status=status, payload=payload)

    def _reject(self, current: ActionRecord, reason: str) -> UpdateResult:
        logger.warning(f"Rejected update for action {current.id}: {reason}")
        return UpdateResult(outcome=UpdateStatus.REJECTED, record=current, reason=reason)

    def _notify(self, record: ActionRecord):
        """Deliver a record to a snapshot of the listeners, isolating failures."""
        for token in list(self._listeners):
            try:
                token.listener(record)
            except Exception as e:
                self.listener_errors += 1
                logger.error(f"Action listener error for {record.id}: {e}", exc_info=True)
                # Don't re-raise to prevent disrupting other listeners


class _Subscription:
    """One listener registration; the same callable may be registered twice."""
    __slots__ = ("listener", "active")

    def __init__(self, listener: ActionListener):
        self.listener = listener
        self.active = True
