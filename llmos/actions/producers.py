"""
Producer-side helpers for recording actions.

ActionProducer fills in the title/description/payload conventions for each
action kind, resolves the autonomy level and applies the gating policy before
handing a draft to the registry.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from .models import ActionDraft, ActionKind, ActionRecord, ActionSource, AutonomyLevel
from .policy import requires_approval
from .registry import ActionRegistry

logger = logging.getLogger(__name__)

TERMINAL_KINDS = frozenset({ActionKind.COMMAND, ActionKind.AI, ActionKind.APP})

SEARCH_URL = "https://api.search.example.com"
DEFAULT_NEW_FILE = "new-file.txt"

LAUNCH_PATTERN = re.compile(r"(?:launch|open)\s+(\w+)", re.IGNORECASE)
SEARCH_PATTERN = re.compile(r"(?:search|find)\s+(.+)", re.IGNORECASE)
CREATE_PATTERN = re.compile(r"(?:create|write)\s+(?:file\s+)?(.+)", re.IGNORECASE)


class ActionProducer:
    """Convenience constructors for each action kind, bound to one registry."""

    def __init__(self, registry: ActionRegistry, default_autonomy_level: int = AutonomyLevel.EXECUTE_WITH_APPROVAL):
        self.registry = registry
        self.default_autonomy_level = AutonomyLevel(default_autonomy_level)

    def _level(self, autonomy_level: Optional[int]) -> AutonomyLevel:
        if autonomy_level is None:
            return self.default_autonomy_level
        return AutonomyLevel(autonomy_level)

    def create_action(self, kind: ActionKind, title: str, description: str, source: ActionSource,
                      payload: Optional[Dict[str, Any]] = None,
                      autonomy_level: Optional[int] = None) -> ActionRecord:
        """Gate and emit an action of any kind."""
        level = self._level(autonomy_level)
        gated = requires_approval(kind, source, level)
        draft = ActionDraft(
            kind=kind,
            title=title,
            description=description,
            source=source,
            payload=payload,
            requires_approval=gated,
            autonomy_level=level,
        )
        return self.registry.emit(draft)

    def create_terminal_action(self, kind: ActionKind, title: str, description: str,
                               payload: Optional[Dict[str, Any]] = None,
                               autonomy_level: Optional[int] = None) -> ActionRecord:
        """Record a command, AI or app action issued from the terminal."""
        kind = ActionKind(kind)
        if kind not in TERMINAL_KINDS:
            raise ValueError(f"Terminal actions must be command, ai or app, got {kind.value}")
        return self.create_action(kind, title, description, ActionSource.TERMINAL, payload, autonomy_level)

    def create_app_action(self, app_id: str, action: str, description: str,
                          params: Optional[Dict[str, Any]] = None,
                          app_name: Optional[str] = None) -> ActionRecord:
        """Record an action performed by an application; never gated."""
        draft = ActionDraft(
            kind=ActionKind.APP,
            title=f"{app_id}: {action}",
            description=description,
            source=ActionSource.APP,
            payload={"app_id": app_id, "action": action, "app_name": app_name, "params": params or {}},
        )
        return self.registry.emit(draft)

    def create_file_action(self, operation: str, filepath: str, description: str,
                           autonomy_level: Optional[int] = None) -> ActionRecord:
        """Record a file operation."""
        return self.create_action(
            ActionKind.FILE,
            f"File {operation}",
            description,
            ActionSource.SYSTEM,
            {"operation": operation, "filepath": filepath},
            autonomy_level,
        )

    def create_network_action(self, url: str, method: str, description: str,
                              autonomy_level: Optional[int] = None) -> ActionRecord:
        """Record a network call."""
        return self.create_action(
            ActionKind.NETWORK,
            f"Network {method}",
            description,
            ActionSource.SYSTEM,
            {"url": url, "method": method},
            autonomy_level,
        )

    def plan_actions(self, user_input: str, autonomy_level: Optional[int] = None) -> List[ActionRecord]:
        """
        Record the actions implied by a line of terminal input.

        Recognizes app launches ("open notes"), web searches ("search llm papers")
        and file creation ("create file todo.md"). Each match is emitted in that
        order; input with no match produces nothing.
        """
        records = []

        match = LAUNCH_PATTERN.search(user_input)
        if match:
            app_name = match.group(1)
            records.append(self.create_terminal_action(
                ActionKind.APP,
                f"Launch {app_name}",
                f"Opening application: {app_name}",
                {"app_name": app_name, "action": "launch"},
                autonomy_level,
            ))

        match = SEARCH_PATTERN.search(user_input)
        if match:
            records.append(self.create_network_action(
                SEARCH_URL,
                "GET",
                f"Performing web search for: {match.group(1).strip()}",
                autonomy_level,
            ))

        match = CREATE_PATTERN.search(user_input)
        if match:
            records.append(self.create_file_action(
                "create",
                match.group(1).strip() or DEFAULT_NEW_FILE,
                "Creating file based on user request",
                autonomy_level,
            ))

        if records:
            logger.info(f"Planned {len(records)} action(s) from terminal input")
        return records

