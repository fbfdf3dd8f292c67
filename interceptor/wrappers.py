"""
interceptor/wrappers.py

Wrapper unwrapping.
───────────────────
Commands such as ``sudo``, ``nohup`` or ``timeout 30`` run another command
under modified conditions.  Before a segment can be matched against the
package-manager table the wrappers have to be peeled off the front of it:

    sudo -u root nice -n 10 npm install x   →   npm install x

Each wrapper is described by a WrapperRule in WRAPPER_RULES.  Supporting a
new wrapper means adding a row to the table; unwrap() itself does not need
to change.

``eval`` is special: its arguments are joined back into a string and
re-tokenized, so ``eval "sudo npm install x"`` resolves just like the
unquoted command would.
"""

import logging
import posixpath
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import FrozenSet, List, Mapping, NamedTuple, Optional

from .tokenizer import Segment, is_env_assignment, split_segments, strip_env_prefix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WrapperRule:
    """
    How a wrapper consumes the tokens that follow it.

    Attributes:
        value_flags : Flags whose value is the *next* token (``-u root``).
                      Inline forms (``--user=root``) never need listing.
        duration    : Regex for an optional positional duration/interval
                      consumed after the flags (``timeout 30s``).
        positional  : Number of mandatory positionals consumed after the
                      flags (``taskset 0x3``).
        assignments : Interleaved ``NAME=value`` tokens are consumed too
                      (``env A=1 B=2 npm ...``).
    """
    value_flags: FrozenSet[str] = field(default_factory=frozenset)
    duration: Optional[re.Pattern] = None
    positional: int = 0
    assignments: bool = False


_NUMBER = re.compile(r"^\d+(?:\.\d+)?$")
_DURATION = re.compile(r"^\d+(?:\.\d+)?[smhd]?$")

_PLAIN = WrapperRule()


# ─────────────────────────────────────────────────────────────────────────────
# Wrapper table
# Keys are command basenames.  Only flags that take a *separate* value need
# to be listed; every other dash-prefixed token is dropped on its own.
# ─────────────────────────────────────────────────────────────────────────────
WRAPPER_RULES: Mapping[str, WrapperRule] = MappingProxyType({
    # Privilege / identity
    "sudo": WrapperRule(value_flags=frozenset({
        "-u", "--user", "-g", "--group", "-U", "--other-user",
        "-C", "--close-from", "-D", "--chdir", "-R", "--chroot",
        "-h", "--host", "-p", "--prompt", "-r", "--role",
        "-t", "--type", "-T", "--command-timeout",
    })),
    "doas": WrapperRule(value_flags=frozenset({"-u", "-C"})),

    # Shell builtins that run their argument
    "exec": WrapperRule(value_flags=frozenset({"-a"})),
    "eval": _PLAIN,
    "command": _PLAIN,
    "builtin": _PLAIN,

    # Environment
    "env": WrapperRule(
        value_flags=frozenset({"-u", "--unset", "-C", "--chdir"}),
        assignments=True,
    ),

    # Scheduling / process control
    "nice": WrapperRule(value_flags=frozenset({"-n", "--adjustment"})),
    "ionice": WrapperRule(value_flags=frozenset({
        "-c", "--class", "-n", "--classdata", "-p", "--pid",
        "-P", "--pgid", "-u", "--uid",
    })),
    "nohup": _PLAIN,
    "timeout": WrapperRule(
        value_flags=frozenset({"-s", "--signal", "-k", "--kill-after"}),
        duration=_DURATION,
    ),
    "time": WrapperRule(value_flags=frozenset({"-f", "--format", "-o", "--output"})),
    "watch": WrapperRule(
        value_flags=frozenset({"-n", "--interval"}),
        duration=_NUMBER,
    ),
    "caffeinate": WrapperRule(value_flags=frozenset({"-t", "-w"})),
    "setsid": _PLAIN,
    "at": WrapperRule(value_flags=frozenset({"-f", "-q", "-t"})),
    "batch": WrapperRule(value_flags=frozenset({"-f", "-q"})),
    "stdbuf": WrapperRule(value_flags=frozenset({"-i", "-o", "-e"})),
    "chrt": WrapperRule(duration=_NUMBER),
    "taskset": WrapperRule(positional=1),
    "unbuffer": _PLAIN,

    # Tracing / sandboxing / proxying
    "strace": WrapperRule(value_flags=frozenset({
        "-o", "-e", "-p", "-s", "-u", "-E", "-P", "-a", "-b", "-I", "-O", "-S", "-X",
    })),
    "ltrace": WrapperRule(value_flags=frozenset({
        "-o", "-e", "-p", "-s", "-u", "-a", "-n", "-l", "-x",
    })),
    "firejail": _PLAIN,
    "sandbox-exec": WrapperRule(value_flags=frozenset({"-f", "-n", "-p", "-D"})),
    "proxychains": WrapperRule(value_flags=frozenset({"-f"})),
    "proxychains4": WrapperRule(value_flags=frozenset({"-f"})),
    "tsocks": _PLAIN,

    # Batch / parallel dispatch
    "xargs": WrapperRule(value_flags=frozenset({
        "-I", "-L", "-n", "-P", "-s", "-d", "-E", "-a",
    })),
    "parallel": WrapperRule(value_flags=frozenset({
        "-j", "--jobs", "-S", "--sshlogin", "--joblog", "-I", "--delay",
    })),
})


class UnwrapResult(NamedTuple):
    """
    Outcome of unwrap().

    ``argv`` is the command left once every wrapper is gone.  ``extra`` holds
    further segments produced when an ``eval`` string itself contained
    chained commands (``eval "cd x && npm i y"``); they still need their own
    prefix stripping and unwrapping.
    """
    argv: Segment
    extra: List[Segment]


def lookup_rule(program: str) -> Optional[WrapperRule]:
    """Find the rule for ``program``, verbatim or by path basename."""
    rule = WRAPPER_RULES.get(program)
    if rule is None:
        rule = WRAPPER_RULES.get(posixpath.basename(program))
    return rule


def unwrap(tokens: Segment) -> UnwrapResult:
    """
    Peel wrappers off the front of ``tokens`` until a real program remains.

    Every pass drops at least the wrapper token itself, and an ``eval``
    substitution re-lexes strictly shorter text, so the loop terminates.
    """
    argv = list(tokens)
    extra: List[Segment] = []

    while argv:
        program = argv[0]
        rule = lookup_rule(program)
        if rule is None:
            break

        logger.debug("Unwrapping %r from %r", program, argv)
        argv = _consume_options(argv[1:], rule)

        if posixpath.basename(program) == "eval" and argv:
            segments = split_segments(" ".join(argv))
            if not segments:
                return UnwrapResult([], extra)
            argv = strip_env_prefix(segments[0])
            extra.extend(segments[1:])
            continue

        if rule.duration is not None and argv and rule.duration.match(argv[0]):
            argv = argv[1:]
        # sudo and friends accept NAME=value before the command too
        argv = strip_env_prefix(argv[rule.positional:])

    return UnwrapResult(argv, extra)


def _consume_options(argv: Segment, rule: WrapperRule) -> Segment:
    """Drop the wrapper's own flags (and, for ``env``, its assignments)."""
    index = 0
    while index < len(argv):
        token = argv[index]
        if token == "--":
            index += 1
            break
        if rule.assignments and is_env_assignment(token):
            index += 1
        elif token.startswith("-") and token != "-":
            if "=" not in token and token in rule.value_flags:
                index += 2
            else:
                index += 1
        else:
            break
    return argv[index:]
