"""
Action event system.

Records proposed system actions, gates them behind human approval according
to the autonomy level and notifies observers of every state change.
"""

from .models import (
    ActionDraft,
    ActionKind,
    ActionRecord,
    ActionSource,
    ActionStatus,
    AutonomyLevel,
    UpdateResult,
    UpdateStatus,
)
from .policy import requires_approval
from .preview import action_impact, action_preview
from .producers import ActionProducer
from .registry import ActionRegistry, ActionRegistryError

__all__ = [
    'ActionDraft',
    'ActionKind',
    'ActionRecord',
    'ActionSource',
    'ActionStatus',
    'AutonomyLevel',
    'UpdateResult',
    'UpdateStatus',
    'requires_approval',
    'action_impact',
    'action_preview',
    'ActionProducer',
    'ActionRegistry',
    'ActionRegistryError',
]
