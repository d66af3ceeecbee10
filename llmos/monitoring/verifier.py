"""
Action monitor.

Live view of the action log for approval UIs: keeps the most recent actions
newest-first plus the set still awaiting a decision, and forwards approve and
reject decisions back to the registry.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from llmos.actions.models import ActionRecord, ActionStatus, UpdateResult
from llmos.actions.preview import action_impact, action_preview
from llmos.actions.registry import ActionRegistry

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Rejected by user"


class ActionMonitor:
    """Observer that tracks recent and pending-approval actions."""

    def __init__(self, registry: ActionRegistry, recent_limit: int = 20):
        self.registry = registry
        self.recent_limit = recent_limit
        self.recent: List[ActionRecord] = []
        self.pending: List[ActionRecord] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def running(self) -> bool:
        return self._unsubscribe is not None

    def start(self):
        """Subscribe to the registry and load the existing log."""
        if self.running:
            return

        self._unsubscribe = self.registry.subscribe(self.on_action)

        existing = self.registry.get_actions()[-self.recent_limit:] if self.recent_limit else []
        self.recent = list(reversed(existing))
        self.pending = list(reversed(self.registry.get_actions_by_status(ActionStatus.AWAITING_APPROVAL)))

        logger.info(f"ActionMonitor started: {len(self.recent)} recent, {len(self.pending)} pending approval")

    def stop(self):
        """Stop receiving updates."""
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
            logger.info("ActionMonitor stopped")

    def on_action(self, record: ActionRecord):
        """Registry listener."""
        # Nested updates (a listener approving from its callback) arrive
        # before the record that triggered them; always keep the latest state.
        latest = self.registry.get_action(record.id)
        if latest is not None:
            record = latest

        self.recent = [record] + [r for r in self.recent if r.id != record.id]
        del self.recent[self.recent_limit:]

        others = [r for r in self.pending if r.id != record.id]
        if record.requires_approval and record.status == ActionStatus.AWAITING_APPROVAL:
            self.pending = [record] + others
        else:
            self.pending = others

    def approve(self, action_id: str) -> UpdateResult:
        """Approve a pending action."""
        result = self.registry.approve_action(action_id)
        if not result:
            logger.warning(f"Approval of {action_id} not applied: {result.outcome.value}")
        return result

    def reject(self, action_id: str, reason: str = DEFAULT_REJECTION_REASON) -> UpdateResult:
        """Reject a pending action."""
        result = self.registry.reject_action(action_id, reason)
        if not result:
            logger.warning(f"Rejection of {action_id} not applied: {result.outcome.value}")
        return result

    def pending_summary(self) -> List[Dict[str, Any]]:
        """Describe each pending action for an approval prompt."""
        return [
            {
                "id": record.id,
                "title": record.title,
                "impact": action_impact(record.kind),
                "preview": action_preview(record),
                "autonomy_level": int(record.autonomy_level) if record.autonomy_level else None,
            }
            for record in self.pending
        ]
