"""
security_engine/checker.py

SecurityChecker — runs the vulnerability lookup for every detected package.
───────────────────────────────────────────────────────────────────────────
This class owns the PackageVerifier strategy and applies it to the package
list produced by the CommandDetector:

  1. Packages from ecosystems the verifier has no database for are returned
     as ``unchecked`` results (surfaced in the decision reason).
  2. Every other package is looked up, in command order.
  3. A verifier that raises instead of returning a failure is contained here:
     the exception becomes a failed CheckResult so the decision engine still
     fails closed.
"""

import logging
from typing import Iterable, List, Optional

from interceptor.models import ParsedPackage

from .base import CheckResult, PackageVerifier
from .osv_verifier import OSVVerifier

logger = logging.getLogger(__name__)


class SecurityChecker:
    """
    Orchestrates a PackageVerifier over a batch of packages.

    Args:
        verifier : The lookup strategy. Defaults to OSVVerifier (public OSV
                   API, default timeout).

    Usage:
        checker = SecurityChecker()
        results = checker.check_all(detector.detect("npm install lodash@4.17.20"))
    """

    def __init__(self, verifier: Optional[PackageVerifier] = None) -> None:
        self._verifier = verifier or OSVVerifier()
        logger.debug("SecurityChecker initialised | verifier=%s", self._verifier.name)

    @property
    def verifier(self) -> PackageVerifier:
        return self._verifier

    def check(self, package: ParsedPackage) -> CheckResult:
        """Look up a single package. Never raises."""
        if not self._verifier.supports(package.ecosystem):
            logger.info(
                "[%s] No vulnerability database for %s, '%s' left unchecked",
                self._verifier.name, package.ecosystem.value, package.name,
            )
            return CheckResult(package=package, unchecked=True)

        logger.info(
            "[%s] Checking package '%s' (version=%s, ecosystem=%s)",
            self._verifier.name, package.name, package.version or "any",
            package.ecosystem.value,
        )
        try:
            result = self._verifier.verify(package)
        except Exception as exc:
            # A crashing verifier must NOT silently pass the package.
            logger.error(
                "Verifier [%s] raised an exception for '%s': %s. Treating as failed lookup.",
                self._verifier.name, package.name, exc,
            )
            return CheckResult.failure(package, f"{self._verifier.name} error: {exc}")

        logger.info(
            "[%s] Result: ok=%s vulnerabilities=%d error=%s",
            self._verifier.name, result.ok, len(result.vulnerabilities), result.error,
        )
        return result

    def check_all(self, packages: Iterable[ParsedPackage]) -> List[CheckResult]:
        """Look up every package, preserving order."""
        return [self.check(package) for package in packages]
