"""
interceptor/hook.py

HookHandler — Claude Code PreToolUse hook boundary.
───────────────────────────────────────────────────
Claude Code runs the hook before every tool call and writes a JSON envelope
to its stdin:

    {"hook_event_name": "PreToolUse",
     "tool_name": "Bash",
     "tool_input": {"command": "npm install lodash@4.17.20"}}

The handler answers with a single line on stdout:

    {"hookSpecificOutput": {"hookEventName": "PreToolUse",
                            "permissionDecision": "deny",
                            "permissionDecisionReason": "..."}}

and an exit code: 0 for allow/ask, 2 for deny.

Failure policy: anything that prevents a proper analysis (empty stdin,
invalid JSON, an unexpected exception) produces a *deny* envelope.  Only a
command that is positively not a package installation is allowed without a
lookup.  A ``tool_input`` that is not an object, or a ``command`` that is not
a string, carries no shell command and is treated as absent.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, TextIO

from pydantic import BaseModel, ValidationError, field_validator

from security_engine.checker import SecurityChecker
from security_engine.decision import Decision, DecisionResult, make_decision

from .command_detector import CommandDetector
from .models import Packages

logger = logging.getLogger(__name__)

DEFAULT_EVENT = "PreToolUse"
DEFAULT_SHELL_TOOLS = frozenset({"Bash"})

EXIT_OK = 0
EXIT_DENY = 2


class ToolInput(BaseModel):
    command: Optional[str] = None

    @field_validator("command", mode="before")
    @classmethod
    def _non_string_command_is_absent(cls, value: Any) -> Any:
        return value if isinstance(value, str) else None


class HookInput(BaseModel):
    hook_event_name: Optional[str] = None
    tool_name: Optional[str] = None
    tool_input: Optional[ToolInput] = None

    @field_validator("tool_input", mode="before")
    @classmethod
    def _non_object_input_is_absent(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None


@dataclass
class HookResponse:
    """Decision plus the event name it answers."""
    event: str
    result: DecisionResult

    @property
    def exit_code(self) -> int:
        return EXIT_DENY if self.result.decision is Decision.DENY else EXIT_OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hookSpecificOutput": {
                "hookEventName": self.event,
                "permissionDecision": self.result.decision.value,
                "permissionDecisionReason": self.result.reason,
            }
        }


def deny_response(reason: str, event: str = DEFAULT_EVENT) -> HookResponse:
    return HookResponse(event, DecisionResult(Decision.DENY, reason))


def allow_response(reason: str, event: str = DEFAULT_EVENT) -> HookResponse:
    return HookResponse(event, DecisionResult(Decision.ALLOW, reason))


class HookHandler:
    """
    Drives detector → checker → decision for one hook invocation.

    Args:
        command_detector    : Classifier for the command line.
        security_checker    : Vulnerability lookup orchestrator.
        shell_tools         : Tool names whose ``command`` is a shell command.
        unchecked_policy    : "allow" / "ask" for packages without a database.
        unanalyzable_policy : Verdict ("allow" / "ask" / "deny") when nested
                              shells went deeper than the detector follows.
    """

    def __init__(
        self,
        command_detector: Optional[CommandDetector] = None,
        security_checker: Optional[SecurityChecker] = None,
        shell_tools: Iterable[str] = DEFAULT_SHELL_TOOLS,
        unchecked_policy: str = "allow",
        unanalyzable_policy: str = "ask",
    ) -> None:
        self._detector = command_detector or CommandDetector()
        self._checker = security_checker or SecurityChecker()
        self._shell_tools = frozenset(shell_tools)
        self._unchecked_policy = unchecked_policy
        self._unanalyzable = Decision(unanalyzable_policy)

    def handle(self, raw: str) -> HookResponse:
        """Process one raw stdin payload. Never raises."""
        try:
            return self._handle(raw)
        except Exception as exc:
            logger.exception("Unhandled error running hook: %s", exc)
            return deny_response("Unhandled error running hook")

    def run(self, stdin: TextIO, stdout: TextIO) -> int:
        """Read the envelope, write the decision, return the exit code."""
        try:
            raw = stdin.read()
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("Could not read stdin: %s", exc)
            response = deny_response("No input provided on stdin")
        else:
            response = self.handle(raw)

        stdout.write(json.dumps(response.to_dict()) + "\n")
        stdout.flush()
        logger.info("Decision: %s (%s)", response.result.decision.value, response.result.reason)
        return response.exit_code

    # ── Private helpers ───────────────────────────────────────────────────────

    def _handle(self, raw: str) -> HookResponse:
        raw = (raw or "").strip()
        if not raw:
            return deny_response("No input provided on stdin")

        try:
            payload = HookInput.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Rejecting hook input: %s", exc)
            return deny_response("Invalid JSON input")

        event = payload.hook_event_name or DEFAULT_EVENT
        command = payload.tool_input.command if payload.tool_input else None

        if payload.tool_name not in self._shell_tools or not command:
            return allow_response("Not a shell command", event)

        classification = self._detector.classify(command)
        if not isinstance(classification, Packages):
            if classification.depth_exhausted and self._unanalyzable is not Decision.ALLOW:
                return HookResponse(event, DecisionResult(
                    self._unanalyzable,
                    "Command nests shells too deeply to analyse for package installs.",
                ))
            return allow_response("Not a package installation command", event)

        packages = classification.packages
        logger.info("Checking %d package(s): %s", len(packages),
                    ", ".join(p.spec() for p in packages))

        results = self._checker.check_all(packages)
        result = make_decision(results, unchecked_policy=self._unchecked_policy)

        if (classification.depth_exhausted and result.decision is Decision.ALLOW
                and self._unanalyzable is not Decision.ALLOW):
            result = DecisionResult(
                self._unanalyzable,
                result.reason + " Part of the command nests shells too deeply to analyse.",
            )
        return HookResponse(event, result)
