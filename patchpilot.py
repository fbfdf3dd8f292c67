#!/usr/bin/env python3
"""
patchpilot.py — PatchPilot entry point.
───────────────────────────────────────
Claude Code PreToolUse hook that checks packages for known vulnerabilities
before they are installed.  Register it in ~/.claude/settings.json:

    {
      "hooks": {
        "PreToolUse": [{
          "matcher": "Bash",
          "hooks": [{"type": "command", "command": "patchpilot", "timeout": 10}]
        }]
      }
    }

PatchPilot will:
  1. Read the hook envelope from stdin.
  2. Classify the Bash command (npm / pip / brew installs, npx, wrappers,
     nested shells …).
  3. Look every detected package up in the OSV database.
  4. Write an allow / deny / ask decision envelope to stdout.

CLI Options
───────────
  --osv-url URL            OSV query endpoint. Env: PATCHPILOT_OSV_URL.
  --timeout SECONDS        Per-lookup timeout. Env: PATCHPILOT_TIMEOUT.
  --unchecked-policy P     allow | ask for packages without a vulnerability
                           database (Homebrew). Env: PATCHPILOT_UNCHECKED_POLICY.
  --unanalyzable-policy P  allow | ask | deny for commands nesting shells
                           deeper than PatchPilot follows.
                           Env: PATCHPILOT_UNANALYZABLE_POLICY.
  --tool NAME              Tool name carrying shell commands (repeatable).
                           Default: Bash.
  --classify COMMAND       Print the classification of COMMAND as JSON and
                           exit. No network access.
  --log-level LEVEL        Python logging level. Env: PATCHPILOT_LOG_LEVEL.
                           Defaults to WARNING.
  --version                Print PatchPilot version and exit.

Exit Codes
──────────
  0     allow or ask.
  2     deny (including malformed input and internal errors).
"""

import argparse
import json
import logging
import os
import sys

from dotenv import load_dotenv

# Project root directory (where this script lives)
_PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))

from interceptor.command_detector import CommandDetector
from interceptor.hook import DEFAULT_SHELL_TOOLS, HookHandler, deny_response
from interceptor.models import Packages
from security_engine.checker import SecurityChecker
from security_engine.osv_verifier import OSV_QUERY_URL, REQUEST_TIMEOUT, OSVVerifier

__version__ = "0.2.0"


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logging.getLogger(__name__).warning(
            "Ignoring non-numeric %s=%r, using %s", name, value, default)
        return default


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="patchpilot",
        description=(
            "PatchPilot — Claude Code hook that checks packages for known "
            "vulnerabilities before they are installed."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--osv-url",
        default=os.getenv("PATCHPILOT_OSV_URL", OSV_QUERY_URL),
        metavar="URL",
        help=f"OSV query endpoint. Default: {OSV_QUERY_URL}",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=_env_float("PATCHPILOT_TIMEOUT", REQUEST_TIMEOUT),
        metavar="SECONDS",
        help=f"Per-package lookup timeout in seconds. Default: {REQUEST_TIMEOUT:g}.",
    )
    parser.add_argument(
        "--unchecked-policy",
        default=os.getenv("PATCHPILOT_UNCHECKED_POLICY", "allow"),
        choices=["allow", "ask"],
        help="Verdict for packages with no vulnerability database. Default: allow.",
    )
    parser.add_argument(
        "--unanalyzable-policy",
        default=os.getenv("PATCHPILOT_UNANALYZABLE_POLICY", "ask"),
        choices=["allow", "ask", "deny"],
        help="Verdict for commands nesting shells too deeply to analyse. Default: ask.",
    )
    parser.add_argument(
        "--tool",
        action="append",
        dest="tools",
        metavar="NAME",
        help="Tool name whose input is a shell command (repeatable). Default: Bash.",
    )
    parser.add_argument(
        "--classify",
        metavar="COMMAND",
        help="Print the classification of COMMAND as JSON and exit.",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("PATCHPILOT_LOG_LEVEL", "WARNING"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the Python logging level. Default: WARNING.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"PatchPilot {__version__}",
    )
    return parser


def configure_logging(level_str: str) -> None:
    """Log to stderr; stdout is reserved for the decision envelope."""
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level_str.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def build_hook_handler(args: argparse.Namespace) -> HookHandler:
    """Wire detector → checker → decision from CLI arguments."""
    checker = SecurityChecker(
        verifier=OSVVerifier(api_url=args.osv_url, timeout=args.timeout),
    )
    return HookHandler(
        command_detector=CommandDetector(),
        security_checker=checker,
        shell_tools=args.tools or DEFAULT_SHELL_TOOLS,
        unchecked_policy=args.unchecked_policy,
        unanalyzable_policy=args.unanalyzable_policy,
    )


def print_classification(command: str) -> int:
    result = CommandDetector().classify(command)
    if isinstance(result, Packages):
        payload = {
            "recognized": True,
            "packages": [package.to_dict() for package in result.packages],
            "depth_exhausted": result.depth_exhausted,
        }
    else:
        payload = {"recognized": False, "depth_exhausted": result.depth_exhausted}
    print(json.dumps(payload, indent=2))
    return 0


def main(argv=None) -> int:
    """
    PatchPilot entry point.

    Returns the exit code to pass to the OS.
    """
    load_dotenv(os.path.join(_PROJECT_ROOT, ".env"))

    parser = build_arg_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    logger = logging.getLogger(__name__)

    if args.classify is not None:
        return print_classification(args.classify)

    logger.info("PatchPilot %s starting", __version__)
    logger.info("Config: osv_url=%s timeout=%.1fs unchecked=%s unanalyzable=%s",
                args.osv_url, args.timeout, args.unchecked_policy, args.unanalyzable_policy)

    try:
        handler = build_hook_handler(args)
        exit_code = handler.run(sys.stdin, sys.stdout)
    except Exception as exc:
        # Claude Code always gets an envelope, even on internal errors.
        logger.exception("Unhandled exception in PatchPilot: %s", exc)
        response = deny_response("Unhandled error running hook")
        sys.stdout.write(json.dumps(response.to_dict()) + "\n")
        exit_code = response.exit_code

    logger.info("PatchPilot exiting with code %d", exit_code)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
