"""Human-readable previews of actions for approval prompts."""
from .models import ActionKind, ActionRecord

IMPACT_BY_KIND = {
    ActionKind.FILE: "high",
    ActionKind.APP: "medium",
    ActionKind.NETWORK: "medium",
}


def action_impact(kind: ActionKind) -> str:
    """Rate an action kind as low, medium or high impact."""
    return IMPACT_BY_KIND.get(ActionKind(kind), "low")


def action_preview(record: ActionRecord) -> str:
    """Describe what approving ``record`` will do."""
    payload = record.payload

    if record.kind == ActionKind.FILE:
        return f"Will {payload.operation}: {payload.filepath}"
    if record.kind == ActionKind.APP:
        return f"Will launch: {payload.app_name or payload.app_id or 'application'}"
    if record.kind == ActionKind.NETWORK:
        return f"Will {payload.method} {payload.url}"
    return record.description
