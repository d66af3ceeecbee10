"""
Approval gating policy.

Maps (kind, source, autonomy level) to whether a human must approve an action
before it executes. Lower autonomy levels keep a human in the loop more often.
"""
from typing import Optional

from .models import ActionKind, ActionSource

# Side-effecting kinds gated whenever autonomy is at or below this level
SIDE_EFFECT_GATE_LEVEL = 2
# Terminal commands/app launches are gated only at exactly this level
TERMINAL_GATE_LEVEL = 2

SIDE_EFFECT_KINDS = frozenset({ActionKind.FILE, ActionKind.NETWORK})
TERMINAL_GATED_KINDS = frozenset({ActionKind.COMMAND, ActionKind.APP})


def requires_approval(kind: ActionKind, source: ActionSource, autonomy_level: Optional[int]) -> bool:
    """
    Decide whether an action needs human approval.

    Args:
        kind: Declared action kind
        source: Where the action came from
        autonomy_level: Governing autonomy level (1-4), or None when unknown

    Returns:
        bool: True if the action must wait in ``awaiting_approval``
    """
    kind = ActionKind(kind)
    if kind == ActionKind.AI or autonomy_level is None:
        return False

    if kind in SIDE_EFFECT_KINDS:
        return autonomy_level <= SIDE_EFFECT_GATE_LEVEL

    if ActionSource(source) == ActionSource.TERMINAL and kind in TERMINAL_GATED_KINDS:
        return autonomy_level == TERMINAL_GATE_LEVEL

    return False
