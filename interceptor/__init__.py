"""
interceptor — PatchPilot's command classification and hook boundary.

Public API:
    CommandDetector  : Shell command line → packages it installs or runs.
    classify         : Module-level shortcut for CommandDetector().classify.
    ParsedPackage    : One package recovered from a command.
    Ecosystem        : Package registry enum (npm, pypi, homebrew).
    Packages         : Classification result naming at least one package.
    NotRecognized    : Classification result for non-install commands.

The Claude Code hook driver lives in interceptor.hook (HookHandler); it is
not re-exported here because it depends on security_engine.
"""

from .command_detector import CommandDetector, classify
from .models import NOT_RECOGNIZED, Ecosystem, NotRecognized, Packages, ParsedPackage

__all__ = [
    "CommandDetector",
    "classify",
    "Ecosystem",
    "NOT_RECOGNIZED",
    "NotRecognized",
    "Packages",
    "ParsedPackage",
]
