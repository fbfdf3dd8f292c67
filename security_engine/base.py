"""
security_engine/base.py

Defines the core abstractions for PatchPilot's vulnerability lookup layer.

Architecture Note:
    This module implements the Strategy Pattern. `PackageVerifier` is the
    abstract "strategy" interface. The concrete OSVVerifier is injected into
    the SecurityChecker orchestrator in checker.py, so the lookup backend can
    be swapped (OSV, a local advisory mirror, a test double) without touching
    the classifier or the decision engine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from interceptor.models import Ecosystem, ParsedPackage


class Severity(Enum):
    """
    Severity label attached to a single vulnerability.
    ``rank`` orders the labels from least to most severe.
    """
    UNKNOWN = "UNKNOWN"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.UNKNOWN: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


@dataclass
class Vulnerability:
    """
    One advisory affecting a package.

    Attributes:
        id          : CVE identifier when one is known, else the database id
                      (e.g. GHSA-xxxx-xxxx-xxxx).
        summary     : One-line advisory summary (may be empty).
        severity    : Highest severity label derived from the advisory.
        package     : The package the advisory was looked up for.
        fix_version : First version that fixes the issue, when published.
    """
    id: str
    summary: str
    severity: Severity
    package: ParsedPackage
    fix_version: Optional[str] = None


@dataclass
class CheckResult:
    """
    Outcome of looking up one package.

    ``ok=False`` is the explicit failure signal (network error, bad status,
    malformed payload) and is never the same thing as "no vulnerabilities".
    ``unchecked=True`` marks packages whose ecosystem has no vulnerability
    database; they are reported to the user rather than silently dropped.
    """
    package: ParsedPackage
    ok: bool = True
    vulnerabilities: List[Vulnerability] = field(default_factory=list)
    error: Optional[str] = None
    unchecked: bool = False

    @classmethod
    def failure(cls, package: ParsedPackage, error: str) -> "CheckResult":
        return cls(package=package, ok=False, error=error)


class PackageVerifier(ABC):
    """
    Abstract base class (the Strategy Interface) for vulnerability lookups.

    Every concrete verifier must implement `verify()` and expose a `name`
    property so the SecurityChecker can log which engine produced a result.
    Implementations report failures through CheckResult.failure() rather
    than raising.
    """

    @abstractmethod
    def verify(self, package: ParsedPackage) -> CheckResult:
        """
        Look up known vulnerabilities for a package.

        Args:
            package : Package recovered from the command line.

        Returns:
            A CheckResult listing the vulnerabilities, or a failure.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable identifier for this verifier engine."""
        ...

    def supports(self, ecosystem: Ecosystem) -> bool:
        """
        Declare which ecosystems this verifier has a database for.
        Packages from unsupported ecosystems are reported as unchecked.
        """
        return True
