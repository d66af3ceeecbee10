"""
Action record models for the LLM-OS action event system.

An ActionRecord is the single entity tracked by the ActionRegistry. Its payload
is a tagged union keyed by ``kind``: each kind carries its own payload shape,
and every shape shares the ``result`` / ``error`` / ``rejection_reason``
extension fields that are filled in as the action reaches a terminal state.
"""
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from typing_extensions import Annotated


class ActionKind(str, Enum):
    """What kind of system operation an action represents."""
    COMMAND = "command"
    FILE = "file"
    APP = "app"
    NETWORK = "network"
    AI = "ai"
    APPROVAL_REQUIRED = "approval_required"


class ActionStatus(str, Enum):
    """Lifecycle states of an action."""
    PENDING = "pending"                        # Reserved, never emitted by the producers
    AWAITING_APPROVAL = "awaiting_approval"    # Gated, waiting for a human decision
    EXECUTING = "executing"                    # Approved or ungated, handed to an executor
    COMPLETED = "completed"                    # Terminal
    FAILED = "failed"                          # Terminal (error or rejection)


class ActionSource(str, Enum):
    """Where an action originated."""
    TERMINAL = "terminal"
    APP = "app"
    SYSTEM = "system"


class AutonomyLevel(IntEnum):
    """How much the agent may do without a human in the loop."""
    SUGGEST_ONLY = 1
    EXECUTE_WITH_APPROVAL = 2
    AUTONOMOUS_WITH_OVERSIGHT = 3
    FULL_AUTONOMOUS = 4

    @property
    def label(self) -> str:
        return AUTONOMY_LABELS[self]


AUTONOMY_LABELS = {
    AutonomyLevel.SUGGEST_ONLY: "Suggest Only",
    AutonomyLevel.EXECUTE_WITH_APPROVAL: "Approval Required",
    AutonomyLevel.AUTONOMOUS_WITH_OVERSIGHT: "Autonomous with Oversight",
    AutonomyLevel.FULL_AUTONOMOUS: "Full Autonomous",
}

TERMINAL_STATUSES = frozenset({ActionStatus.COMPLETED, ActionStatus.FAILED})

# Forward-only edges; completed and failed have none.
ALLOWED_TRANSITIONS = {
    ActionStatus.PENDING: frozenset({
        ActionStatus.AWAITING_APPROVAL,
        ActionStatus.EXECUTING,
        ActionStatus.FAILED,
    }),
    ActionStatus.AWAITING_APPROVAL: frozenset({ActionStatus.EXECUTING, ActionStatus.FAILED}),
    ActionStatus.EXECUTING: frozenset({ActionStatus.COMPLETED, ActionStatus.FAILED}),
    ActionStatus.COMPLETED: frozenset(),
    ActionStatus.FAILED: frozenset(),
}


def can_transition(record: "ActionRecord", new: ActionStatus) -> bool:
    """
    Check whether ``record`` may move to status ``new``.

    A gated record only reaches ``executing`` through ``awaiting_approval``,
    and an ungated record never enters ``awaiting_approval``.
    """
    if record.is_terminal:
        return False
    if new == record.status:
        return True
    if new not in ALLOWED_TRANSITIONS[record.status]:
        return False
    if new == ActionStatus.AWAITING_APPROVAL:
        return record.requires_approval
    if new == ActionStatus.EXECUTING and record.status == ActionStatus.PENDING:
        return not record.requires_approval
    return True


class ActionPayload(BaseModel):
    """Fields shared by every payload variant."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    result: Optional[Any] = None
    error: Optional[str] = None
    rejection_reason: Optional[str] = None


class CommandPayload(ActionPayload):
    kind: Literal[ActionKind.COMMAND] = ActionKind.COMMAND
    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)


class AIPayload(ActionPayload):
    kind: Literal[ActionKind.AI] = ActionKind.AI
    prompt: Optional[str] = None
    model: Optional[str] = None


class AppPayload(ActionPayload):
    kind: Literal[ActionKind.APP] = ActionKind.APP
    app_id: Optional[str] = None
    app_name: Optional[str] = None
    action: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)


class FilePayload(ActionPayload):
    kind: Literal[ActionKind.FILE] = ActionKind.FILE
    operation: str
    filepath: str


class NetworkPayload(ActionPayload):
    kind: Literal[ActionKind.NETWORK] = ActionKind.NETWORK
    url: str
    method: str = "GET"


class ApprovalPayload(ActionPayload):
    kind: Literal[ActionKind.APPROVAL_REQUIRED] = ActionKind.APPROVAL_REQUIRED
    details: Dict[str, Any] = Field(default_factory=dict)


Payload = Annotated[
    Union[CommandPayload, AIPayload, AppPayload, FilePayload, NetworkPayload, ApprovalPayload],
    Field(discriminator="kind"),
]

_payload_adapter = TypeAdapter(Payload)


def build_payload(kind: ActionKind, data: Optional[Dict[str, Any]] = None) -> Payload:
    """Build the payload variant for ``kind`` from plain data."""
    values = dict(data or {})
    values["kind"] = ActionKind(kind)
    return _payload_adapter.validate_python(values)


def merge_payload(payload: Payload, changes: Dict[str, Any]) -> Payload:
    """Return a copy of ``payload`` with ``changes`` merged over its fields.

    The merged result is re-validated, so unknown keys or a different kind
    are rejected rather than silently stored.
    """
    values = payload.model_dump()
    values.update(changes)
    values["kind"] = payload.kind
    return _payload_adapter.validate_python(values)


class ActionDraft(BaseModel):
    """
    A proposed action before the registry assigns identity.

    ``status`` may be omitted; it is then derived from ``requires_approval``.
    """
    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    title: str
    description: str
    source: ActionSource
    payload: Payload
    status: ActionStatus
    requires_approval: bool = False
    autonomy_level: Optional[AutonomyLevel] = None

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        payload = data.get("payload")
        if data.get("kind") is not None and (payload is None or isinstance(payload, dict)):
            data["payload"] = build_payload(data["kind"], payload)
        if data.get("status") is None:
            gated = data.get("requires_approval", False)
            data["status"] = ActionStatus.AWAITING_APPROVAL if gated else ActionStatus.EXECUTING
        return data

    @model_validator(mode="after")
    def _check_gating(self) -> "ActionDraft":
        if self.payload.kind != self.kind:
            raise ValueError(f"payload kind {self.payload.kind.value} does not match action kind {self.kind.value}")

        if self.requires_approval and self.status not in (ActionStatus.AWAITING_APPROVAL, ActionStatus.PENDING):
            raise ValueError(f"an action requiring approval cannot start as {self.status.value}")
        elif not self.requires_approval and self.status == ActionStatus.AWAITING_APPROVAL:
            raise ValueError("an action that does not require approval cannot await approval")
        return self


class ActionRecord(BaseModel):
    """
    A recorded action as held by the registry.

    Records are immutable snapshots; the registry replaces a record with an
    updated copy on every transition.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    kind: ActionKind
    title: str
    description: str
    status: ActionStatus
    created_at: datetime
    payload: Payload
    requires_approval: bool = False
    autonomy_level: Optional[AutonomyLevel] = None
    source: ActionSource

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_draft(cls, draft: ActionDraft, action_id: str, created_at: datetime) -> "ActionRecord":
        return cls(id=action_id, created_at=created_at, **draft.model_dump(exclude={"payload"}), payload=draft.payload)


class UpdateStatus(str, Enum):
    """Outcome of a registry mutation."""
    UPDATED = "updated"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"


class UpdateResult(BaseModel):
    """Result of ActionRegistry.update() and the decision helpers."""
    model_config = ConfigDict(frozen=True)

    outcome: UpdateStatus
    record: Optional[ActionRecord] = None
    reason: Optional[str] = None

    @property
    def updated(self) -> bool:
        return self.outcome == UpdateStatus.UPDATED

    @property
    def not_found(self) -> bool:
        return self.outcome == UpdateStatus.NOT_FOUND

    def __bool__(self) -> bool:
        return self.updated
