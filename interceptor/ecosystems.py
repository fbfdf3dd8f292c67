"""
interceptor/ecosystems.py

Package-manager detection and package-specifier parsing.
────────────────────────────────────────────────────────
Given a fully unwrapped argument vector this module answers two questions:

  1. Is this a package installation (or fetch-and-run) command, and for
     which registry?                                → detect_ecosystem()
  2. Which packages does it name?                   → extract_packages()

Supported invocation shapes live in ECOSYSTEM_RULES, keyed by program
basename.  Each rule lists the subcommand tokens that must follow the
program (``install``, ``pip install``, ``-m pip install`` …).  Execution-
style rules (``npx``, ``bunx``, ``npm exec``) treat the executed target
itself as the package.
"""

import logging
import posixpath
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import FrozenSet, List, Mapping, Optional, Tuple

from .models import Ecosystem, ParsedPackage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EcosystemRule:
    """
    One ``<program> <prefix...> <packages...>`` invocation shape.

    Attributes:
        prefix           : Tokens that must follow the program, in order.
                           Bare flags between them are tolerated
                           (``pip -q install x``).
        ecosystem        : Registry of the packages named by the command.
        requires_package : The command is only an install when at least one
                           package is named (``npm link`` alone links the
                           local project).
        exec_style       : The first positional is fetched and executed;
                           scanning stops there.
        package_flags    : For exec-style rules, flags whose value names an
                           extra package to fetch (``npx -p pkg tool``).
        value_flags      : Manager flags whose value is the next token and
                           must not be mistaken for a package
                           (``pip install -r requirements.txt``).  They are
                           skipped with their value before the prefix too.
        script_flags     : For exec-style rules, flags whose value is a shell
                           string run instead of a target (``npx -c "…"``).
        shell_flags      : For exec-style rules, boolean flags that make the
                           target itself a shell string (``pnpm dlx -c "…"``).
    """
    prefix: Tuple[str, ...]
    ecosystem: Ecosystem
    requires_package: bool = False
    exec_style: bool = False
    package_flags: FrozenSet[str] = field(default_factory=frozenset)
    value_flags: FrozenSet[str] = field(default_factory=frozenset)
    script_flags: FrozenSet[str] = field(default_factory=frozenset)
    shell_flags: FrozenSet[str] = field(default_factory=frozenset)


NPM = Ecosystem.NPM
PYPI = Ecosystem.PYPI
HOMEBREW = Ecosystem.HOMEBREW

# ─────────────────────────────────────────────────────────────────────────────
# Value-taking flags, per manager.  Global flags may also appear before the
# subcommand (``npm --prefix ./app install x``), so the same set is used when
# matching the prefix and when reading package arguments.
# ─────────────────────────────────────────────────────────────────────────────
_NPM_VALUE_FLAGS = frozenset({
    "--registry", "--prefix", "--tag", "-w", "--workspace",
    "--cache", "--userconfig", "--globalconfig", "--omit", "--include",
    "--loglevel", "--install-strategy", "--before",
})
# pnpm: -w is the boolean --workspace-root
_PNPM_VALUE_FLAGS = frozenset({
    "--registry", "-C", "--dir", "--filter", "-F", "--store-dir",
    "--virtual-store-dir", "--modules-dir", "--loglevel", "--reporter",
    "--config-dir", "--global-dir",
})
# yarn: -W (ignore workspace root check) is boolean
_YARN_VALUE_FLAGS = frozenset({
    "--cwd", "--registry", "--cache-folder", "--modules-folder",
    "--global-folder", "--network-timeout", "--mutex", "--use-yarnrc",
})
_BUN_VALUE_FLAGS = frozenset({
    "--cwd", "--registry", "--cache-dir", "--backend", "-c", "--config",
    "--network-concurrency",
})
_PIP_VALUE_FLAGS = frozenset({
    "-r", "--requirement", "-c", "--constraint", "-e", "--editable",
    "-i", "--index-url", "--extra-index-url", "-f", "--find-links",
    "-t", "--target", "--prefix", "--root", "--src", "--platform",
    "--python-version", "--implementation", "--abi", "--upgrade-strategy",
    "--cache-dir", "--report", "--progress-bar", "--trusted-host",
    "--python", "--proxy", "--log", "--log-file", "--timeout", "--retries",
    "--exists-action", "--cert", "--client-cert", "--no-binary",
    "--only-binary", "-C", "--config-settings",
})
_UV_VALUE_FLAGS = _PIP_VALUE_FLAGS | frozenset({
    "--group", "--optional", "--extra", "--index", "--default-index",
    "--directory", "--project", "--package", "--cache-dir",
})
_POETRY_VALUE_FLAGS = frozenset({
    "-G", "--group", "-E", "--extras", "--source", "--python", "--platform",
    "-C", "--directory", "-P", "--project",
})
# Interpreter options ahead of ``-m pip`` (python -W ignore -m pip install x)
_PYTHON_VALUE_FLAGS = _PIP_VALUE_FLAGS | frozenset({"-W", "-X"})
_BREW_VALUE_FLAGS = frozenset({"--appdir", "--fontdir", "--language"})

_NPX_PACKAGE_FLAGS = frozenset({"-p", "--package"})
_UVX_PACKAGE_FLAGS = frozenset({"--from", "--with"})
# npx -c / npm exec --call take a shell string to run
_NPX_SCRIPT_FLAGS = frozenset({"-c", "--call"})
# pnpm dlx -c runs its target as a shell string
_PNPM_SHELL_FLAGS = frozenset({"-c", "--shell-mode"})


def _npm_family(value_flags: FrozenSet[str], *subcommands: str) -> Tuple[EcosystemRule, ...]:
    installs = tuple(
        EcosystemRule((subcommand,), NPM, value_flags=value_flags)
        for subcommand in subcommands
    )
    link = EcosystemRule(("link",), NPM, requires_package=True, value_flags=value_flags)
    return installs + (link,)


_NPX = EcosystemRule(
    (), NPM, exec_style=True, package_flags=_NPX_PACKAGE_FLAGS,
    value_flags=_NPM_VALUE_FLAGS, script_flags=_NPX_SCRIPT_FLAGS,
)


# ─────────────────────────────────────────────────────────────────────────────
# Ecosystem table
# Program names are matched by basename, so /usr/local/bin/npm uses "npm".
# Versioned interpreters (python3.12, pip3.11) are folded onto their base
# name by _normalise_program().
# ─────────────────────────────────────────────────────────────────────────────
ECOSYSTEM_RULES: Mapping[str, Tuple[EcosystemRule, ...]] = MappingProxyType({
    "npm": _npm_family(_NPM_VALUE_FLAGS, "install", "i", "add") + (
        EcosystemRule(("exec",), NPM, exec_style=True, package_flags=_NPX_PACKAGE_FLAGS,
                      value_flags=_NPM_VALUE_FLAGS, script_flags=_NPX_SCRIPT_FLAGS),
    ),
    "pnpm": _npm_family(_PNPM_VALUE_FLAGS, "install", "i", "add") + (
        EcosystemRule(("dlx",), NPM, exec_style=True, package_flags=_NPX_PACKAGE_FLAGS,
                      value_flags=_PNPM_VALUE_FLAGS, shell_flags=_PNPM_SHELL_FLAGS),
    ),
    "yarn": _npm_family(_YARN_VALUE_FLAGS, "add", "install", "i") + (
        EcosystemRule(("global", "add"), NPM, value_flags=_YARN_VALUE_FLAGS),
        EcosystemRule(("dlx",), NPM, exec_style=True, package_flags=_NPX_PACKAGE_FLAGS,
                      value_flags=_YARN_VALUE_FLAGS),
    ),
    "bun": _npm_family(_BUN_VALUE_FLAGS, "add", "install", "i"),
    "npx": (_NPX,),
    "bunx": (EcosystemRule((), NPM, exec_style=True, package_flags=_NPX_PACKAGE_FLAGS,
                           value_flags=_BUN_VALUE_FLAGS),),

    "pip": (EcosystemRule(("install",), PYPI, value_flags=_PIP_VALUE_FLAGS),),
    "pip3": (EcosystemRule(("install",), PYPI, value_flags=_PIP_VALUE_FLAGS),),
    "pipx": (EcosystemRule(("install",), PYPI, value_flags=_PIP_VALUE_FLAGS),),
    "uv": (
        EcosystemRule(("pip", "install"), PYPI, value_flags=_UV_VALUE_FLAGS),
        EcosystemRule(("add",), PYPI, value_flags=_UV_VALUE_FLAGS),
        EcosystemRule(("tool", "install"), PYPI, value_flags=_UV_VALUE_FLAGS),
    ),
    "uvx": (EcosystemRule((), PYPI, exec_style=True, package_flags=_UVX_PACKAGE_FLAGS,
                          value_flags=_UV_VALUE_FLAGS),),
    "poetry": (EcosystemRule(("add",), PYPI, value_flags=_POETRY_VALUE_FLAGS),),
    "python": (EcosystemRule(("-m", "pip", "install"), PYPI, value_flags=_PYTHON_VALUE_FLAGS),),
    "python3": (EcosystemRule(("-m", "pip", "install"), PYPI, value_flags=_PYTHON_VALUE_FLAGS),),

    "brew": tuple(
        EcosystemRule((subcommand,), HOMEBREW, value_flags=_BREW_VALUE_FLAGS)
        for subcommand in ("install", "reinstall", "upgrade")
    ),
})

_VERSIONED_PROGRAM = re.compile(r"^(python3|python|pip3|pip)(?:\.\d+)+$")

# PEP 508 operators / markers that end a requirement's name
_PEP508_NAME_END = re.compile(r"[<>!~=;@\s]")
_EXTRAS = re.compile(r"\[[^\]]*\]$")


def detect_ecosystem(argv: List[str]) -> Optional[Tuple[Ecosystem, List[str]]]:
    """
    Match ``argv`` against ECOSYSTEM_RULES.

    Returns ``(ecosystem, package_args)`` where ``package_args`` are the raw
    tokens naming packages, or None when the command installs nothing.
    """
    match = _match_rule(argv)
    if match is None:
        return None

    rule, remainder = match
    if rule.exec_style:
        package_args, _ = _scan_exec(remainder, rule)
    else:
        package_args = _drop_value_flags(remainder, rule.value_flags)

    if rule.requires_package and not _has_positional(package_args):
        logger.debug("%s %s without a package: nothing fetched",
                     argv[0], " ".join(rule.prefix))
        return None

    logger.debug("Matched %s rule %r → %s", argv[0], rule.prefix, rule.ecosystem.value)
    return rule.ecosystem, package_args


def exec_script(argv: List[str]) -> Optional[str]:
    """
    Return the shell string an exec-style command runs, if any.

        npx -p cowsay -c 'cowsay hi'     →  "cowsay hi"
        pnpm dlx -c 'npm i x && foo'     →  "npm i x && foo"
        npx cowsay hi                    →  None
    """
    match = _match_rule(argv)
    if match is None:
        return None
    rule, remainder = match
    if not rule.exec_style:
        return None
    return _scan_exec(remainder, rule)[1]


def extract_packages(args: List[str], ecosystem: Ecosystem) -> List[ParsedPackage]:
    """
    Parse package specifiers into ParsedPackage records.

    Flags (``-D``) and local paths (``./pkg``, ``/abs/pkg``, ``.``) are
    skipped.  Order is preserved; each remaining token yields one package.
    """
    packages: List[ParsedPackage] = []
    for token in args:
        if not token or token.startswith(("-", ".", "/")):
            continue

        if ecosystem is PYPI:
            name, version = _split_pypi(token)
        else:
            # npm and Homebrew names never contain whitespace
            if any(char.isspace() for char in token):
                logger.debug("Ignoring non-package token %r", token)
                continue
            name, version = _split_at_version(token)

        if not name:
            continue
        packages.append(ParsedPackage(name=name, version=version, ecosystem=ecosystem))
    return packages


# ── Private helpers ───────────────────────────────────────────────────────────

def _normalise_program(program: str) -> str:
    base = posixpath.basename(program)
    match = _VERSIONED_PROGRAM.match(base)
    if match:
        return match.group(1)
    return base


def _match_rule(argv: List[str]) -> Optional[Tuple[EcosystemRule, List[str]]]:
    """First rule whose prefix matches ``argv``, with the arguments after it."""
    if not argv:
        return None

    rules = ECOSYSTEM_RULES.get(_normalise_program(argv[0]))
    if rules is None:
        return None

    args = argv[1:]
    for rule in rules:
        start = _match_prefix(args, rule.prefix, rule.value_flags)
        if start is not None:
            return rule, args[start:]
    return None


def _match_prefix(
    args: List[str],
    prefix: Tuple[str, ...],
    value_flags: FrozenSet[str] = frozenset(),
) -> Optional[int]:
    """
    Return the index just past ``prefix`` inside ``args``, or None.

    Flags that are not themselves part of the prefix may appear before each
    expected token (``python -u -m pip install``); a flag in ``value_flags``
    is skipped together with its value (``npm --prefix ./app install``).
    """
    index = 0
    for expected in prefix:
        while (index < len(args) and args[index] != expected
               and args[index].startswith("-")):
            index += 2 if args[index] in value_flags else 1
        if index >= len(args) or args[index] != expected:
            return None
        index += 1
    return index


def _drop_value_flags(args: List[str], value_flags: FrozenSet[str]) -> List[str]:
    """Remove ``--flag value`` pairs so the value is not read as a package."""
    kept: List[str] = []
    skip_next = False
    for token in args:
        if skip_next:
            skip_next = False
            continue
        if token in value_flags:
            skip_next = True
            continue
        kept.append(token)
    return kept


def _scan_exec(args: List[str], rule: EcosystemRule) -> Tuple[List[str], Optional[str]]:
    """
    Collect the packages an exec-style command fetches, and the shell string
    it runs when one is given.

        npx -p pkg1 --package=pkg2 tool --tool-flag   →  [pkg1, pkg2, tool], None
        npx ./local-script.js                         →  [], None
        npx -p pkg1 -c 'pkg1 --help'                  →  [pkg1], "pkg1 --help"

    Scanning ends at the first bare positional (the executed target).
    """
    targets: List[str] = []
    script: Optional[str] = None
    shell_mode = False
    index = 0
    while index < len(args):
        token = args[index]
        flag, sep, value = token.partition("=")
        if token in rule.package_flags:
            if index + 1 < len(args):
                targets.append(args[index + 1])
            index += 2
            continue
        if sep and flag in rule.package_flags:
            targets.append(value)
            index += 1
            continue
        if token in rule.script_flags:
            if index + 1 < len(args):
                script = args[index + 1]
            index += 2
            continue
        if sep and flag in rule.script_flags:
            script = value
            index += 1
            continue
        if token in rule.shell_flags:
            shell_mode = True
            index += 1
            continue
        if token in rule.value_flags:
            index += 2
            continue
        if token.startswith("-"):
            index += 1
            continue

        if shell_mode:
            script = token
        elif script is None and not token.startswith(("./", "../", "/")):
            targets.append(token)
        break
    return targets, script


def _has_positional(args: List[str]) -> bool:
    return any(not token.startswith("-") for token in args)


def _split_at_version(token: str) -> Tuple[str, Optional[str]]:
    """
    npm / Homebrew: split on the *last* ``@`` unless it is the leading scope
    marker.

        lodash@4.17.21        → ("lodash", "4.17.21")
        @types/node           → ("@types/node", None)
        @types/node@20.0.0    → ("@types/node", "20.0.0")
    """
    at = token.rfind("@")
    if at > 0:
        return token[:at], token[at + 1:] or None
    return token, None


def _split_pypi(token: str) -> Tuple[str, Optional[str]]:
    """
    PyPI requirement: ``==`` pins the version, ``[extras]`` are dropped.

        requests                     → ("requests", None)
        requests==2.0                → ("requests", "2.0")
        requests[security]==2.0      → ("requests", "2.0")
        requests>=2.0                → ("requests", None)
    """
    name_part, sep, version = token.partition("==")
    version = version.lstrip("=") if sep else None

    # Range operators and markers (>=, ~=, ;) do not pin an exact version
    end = _PEP508_NAME_END.search(name_part)
    if end:
        name_part = name_part[:end.start()]

    name = _EXTRAS.sub("", name_part.strip())
    return name, version or None
