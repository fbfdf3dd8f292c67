"""
interceptor/command_detector.py

CommandDetector — bypass-resistant package installation classifier.
───────────────────────────────────────────────────────────────────
Takes the exact command line Claude Code is about to hand to the shell and
recovers every registry package it would install or fetch-and-run.

Pipeline, per segment:

    raw string
      → split_segments()      (tokenizer.py: quoting, && || ; |)
      → strip_env_prefix()    (NODE_ENV=production …)
      → unwrap()              (wrappers.py: sudo, timeout 30, eval "…")
      → _resolve_shell()      (bash -c "…", npx -c "…", recursively, bounded)
      → detect_ecosystem()    (ecosystems.py: npm / pypi / homebrew)
      → extract_packages()

Packages from every segment are concatenated in the order they appear in
the original string.

Design notes:
    • Classification is a pure function of the input string: no I/O, no
      shared mutable state, safe to call from several threads.
    • Nested ``sh -c`` strings are followed at most MAX_SHELL_DEPTH levels
      deep.  The depth is an explicit argument, so termination never relies
      on the interpreter's recursion limit.  Deeper commands are treated as
      opaque and flagged with ``depth_exhausted``.
    • The detector never raises on user input; anything it cannot make sense
      of is simply not recognised.
"""

import logging
import posixpath
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

from .ecosystems import detect_ecosystem, exec_script, extract_packages
from .models import NOT_RECOGNIZED, Classification, NotRecognized, Packages, ParsedPackage
from .tokenizer import Segment, split_segments, strip_env_prefix
from .wrappers import unwrap

logger = logging.getLogger(__name__)

MAX_SHELL_DEPTH = 4

SHELLS: FrozenSet[str] = frozenset({
    "bash", "sh", "zsh", "ksh", "dash", "csh", "tcsh", "fish",
})

# Shell options whose value is the next token (bash -o pipefail -c …)
_SHELL_VALUE_FLAGS = frozenset({"-o", "-O", "+o", "+O", "--rcfile", "--init-file"})


@dataclass
class _Walk:
    """Per-call bookkeeping for one classify() run."""
    packages: List[ParsedPackage] = field(default_factory=list)
    depth_exhausted: bool = False


class CommandDetector:
    """
    Classifies shell command lines as package installations.

    Instantiate once and call `classify(command)` (tagged result) or
    `detect(command)` (list of packages, or None) for each command.

    Args:
        max_depth : How many nested ``<shell> -c`` levels to follow.
    """

    def __init__(self, max_depth: int = MAX_SHELL_DEPTH) -> None:
        self._max_depth = max_depth

    def classify(self, command: str) -> Classification:
        """
        Classify ``command``.

        Returns:
            Packages(...) when at least one registry package is named,
            otherwise a NotRecognized value.  "Recognised but nothing to
            check" (bare ``npm install``) is reported as NotRecognized.
        """
        walk = _Walk()
        try:
            for segment in split_segments(command or ""):
                for argv in self._expand(segment, 0, walk):
                    self._collect(argv, walk)
        except Exception:
            # Classification must never take the hook down with it.
            logger.exception("Unexpected error classifying command %r", command)
            return NotRecognized(depth_exhausted=walk.depth_exhausted)

        if not walk.packages:
            if walk.depth_exhausted:
                return NotRecognized(depth_exhausted=True)
            return NOT_RECOGNIZED

        return Packages(tuple(walk.packages), depth_exhausted=walk.depth_exhausted)

    def detect(self, command: str) -> Optional[List[ParsedPackage]]:
        """Convenience wrapper: list of packages, or None when not an install."""
        result = self.classify(command)
        if isinstance(result, Packages):
            return list(result.packages)
        return None

    # ── Private helpers ───────────────────────────────────────────────────────

    def _expand(self, segment: Segment, depth: int, walk: _Walk) -> List[Segment]:
        """Strip, unwrap and resolve one segment into final argument vectors."""
        tokens = strip_env_prefix(segment)
        if not tokens:
            return []

        unwrapped = unwrap(tokens)
        vectors = self._resolve_shell(unwrapped.argv, depth, walk)

        for extra in unwrapped.extra:
            if depth >= self._max_depth:
                logger.warning("eval nesting deeper than %d levels left unresolved",
                               self._max_depth)
                walk.depth_exhausted = True
                break
            vectors.extend(self._expand(extra, depth + 1, walk))
        return vectors

    def _resolve_shell(self, argv: Segment, depth: int, walk: _Walk) -> List[Segment]:
        """
        Follow ``<shell> -c <script>`` into the script's own segments.

        Exec-style package runners that take a shell string (``npx -c``)
        are followed the same way; their own vector is kept too, since its
        ``-p`` packages are still fetched.

        Returns the list of argument vectors to classify; ``[argv]`` when
        ``argv`` runs no script or the depth cap is reached.
        """
        if not argv:
            return []

        vectors: List[Segment] = []
        script = shell_script(argv)
        if script is None:
            script = exec_script(argv)
            if script is None:
                return [argv]
            vectors.append(argv)

        if depth >= self._max_depth:
            logger.warning(
                "Nested shell depth %d reached, treating command as opaque: %r",
                depth, argv[0],
            )
            walk.depth_exhausted = True
            return [argv]

        logger.debug("Descending into %s script at depth %d", argv[0], depth + 1)
        for segment in split_segments(script):
            vectors.extend(self._expand(segment, depth + 1, walk))
        return vectors

    @staticmethod
    def _collect(argv: Segment, walk: _Walk) -> None:
        match = detect_ecosystem(argv)
        if match is None:
            return
        ecosystem, package_args = match
        packages = extract_packages(package_args, ecosystem)
        for package in packages:
            logger.debug(
                "Detected package | ecosystem=%s name=%s version=%s",
                package.ecosystem.value, package.name, package.version,
            )
        walk.packages.extend(packages)


def shell_script(argv: Segment) -> Optional[str]:
    """
    Return the script string of a ``<shell> [flags] -c <script>`` vector.

    Combined short flags that include ``c`` (``bash -lc "…"``) count too.
    Returns None when ``argv`` is not such an invocation.
    """
    if not argv or posixpath.basename(argv[0]) not in SHELLS:
        return None

    index = 1
    while index < len(argv):
        token = argv[index]
        if token in _SHELL_VALUE_FLAGS:
            index += 2
            continue
        if token.startswith("--"):
            index += 1
            continue
        if not token.startswith("-"):
            # Script file or positional argument before any -c
            return None
        if "c" in token[1:]:
            if index + 1 < len(argv):
                return argv[index + 1]
            return None
        index += 1
    return None


def classify(command: str) -> Classification:
    """Module-level shortcut for ``CommandDetector().classify(command)``."""
    return CommandDetector().classify(command)
