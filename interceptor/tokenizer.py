"""
interceptor/tokenizer.py

Shell-aware tokenizer for command lines handed to the Bash tool.
────────────────────────────────────────────────────────────────
Splits a raw command line into *segments*: one list of argument tokens per
simple command, separated at the unquoted control operators the shell uses to
chain commands (``&&``, ``||``, ``;``, ``|``, ``&``, newlines).  Quoting and
backslash escapes are honoured via ``shlex`` so that

    bash -c "npm install a && npm install b"

yields a single segment whose last token is the whole quoted script.

Subshell delimiters (``(``, ``)``, backticks, ``<(`` and ``>(`` process
substitutions) are also treated as segment boundaries, which lets
``(cd x && npm i y)`` and ``echo `npm i y``` surface the inner commands.
Redirections (``> file``, ``2>&1``) are removed from the segment together
with their target.

Nothing here expands variables or globs: tokens are literal text.
"""

import logging
import re
import shlex
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)

Segment = List[str]

# Characters the lexer groups into operator tokens.
_PUNCTUATION = "();<>|&`\n"

# Whitespace for the lexer; newline is an operator, not a separator.
_WHITESPACE = " \t\r"

_ENV_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")


def split_segments(command: str) -> List[Segment]:
    """
    Split ``command`` into ordered, non-empty segments.

    Malformed quoting never raises: the command is cut into fragments at
    unquoted operators and each fragment is lexed on its own.  Fragments that
    still cannot be lexed contribute no segment.

    Examples:
        split_segments("cd /tmp && npm install x")
            → [["cd", "/tmp"], ["npm", "install", "x"]]
        split_segments("")
            → []
    """
    if not command or not command.strip():
        return []

    tokens = _lex(command)
    if tokens is not None:
        return list(_group(tokens))

    logger.debug("Unbalanced quoting, falling back to per-fragment lexing: %r", command)
    segments: List[Segment] = []
    for fragment in _split_fragments(command):
        fragment_tokens = _lex(fragment)
        if fragment_tokens is None:
            logger.debug("Dropping unparsable fragment: %r", fragment)
            continue
        segments.extend(_group(fragment_tokens))
    return segments


def strip_env_prefix(tokens: Segment) -> Segment:
    """
    Drop leading ``NAME=value`` assignments.

        NODE_ENV=production CI=true npm install x  →  npm install x

    Only the head of the segment is inspected; ``--package=foo`` later in
    the argument list is left alone.
    """
    index = 0
    while index < len(tokens) and is_env_assignment(tokens[index]):
        index += 1
    return list(tokens[index:])


def is_env_assignment(token: str) -> bool:
    return bool(_ENV_ASSIGNMENT.match(token))


# ── Private helpers ───────────────────────────────────────────────────────────

def _lex(text: str) -> Optional[List[str]]:
    """Tokenize ``text``; return None when quoting is unbalanced."""
    lexer = shlex.shlex(text, posix=True, punctuation_chars=_PUNCTUATION)
    lexer.whitespace = _WHITESPACE
    lexer.whitespace_split = True
    lexer.commenters = ""
    try:
        return list(lexer)
    except ValueError as exc:
        logger.debug("shlex could not tokenize %r: %s", text, exc)
        return None


def _is_operator(token: str) -> bool:
    return bool(token) and all(char in _PUNCTUATION for char in token)


def _is_redirect(token: str) -> bool:
    # "<(" and ">(" open a process substitution, not a redirection
    if token.endswith("("):
        return False
    return "<" in token or ">" in token


def _group(tokens: List[str]) -> Iterator[Segment]:
    """Group a flat token stream into segments, dropping redirections."""
    current: Segment = []
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if not _is_operator(token):
            current.append(token)
            index += 1
            continue

        if _is_redirect(token):
            # "2>/dev/null": the fd number lexes as its own word
            if current and current[-1].isdigit():
                current.pop()
            # Skip the redirection target as well
            index += 2
            continue

        if current:
            yield current
        current = []
        index += 1

    if current:
        yield current


def _split_fragments(command: str) -> List[str]:
    """
    Lenient character scan that cuts ``command`` at unquoted ``;``, ``|``,
    ``&`` and newlines.  Used only when ``shlex`` rejects the full string.
    """
    fragments: List[str] = []
    buf: List[str] = []
    in_single = False
    in_double = False
    escape = False

    for char in command:
        if escape:
            buf.append(char)
            escape = False
            continue
        if char == "\\" and not in_single:
            buf.append(char)
            escape = True
            continue
        if char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double
        elif not in_single and not in_double and char in ";|&\n":
            fragments.append("".join(buf))
            buf = []
            continue
        buf.append(char)

    fragments.append("".join(buf))
    return [fragment for fragment in fragments if fragment.strip()]
