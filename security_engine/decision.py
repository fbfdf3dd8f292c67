"""
security_engine/decision.py

Decision engine: turns lookup results into an allow / deny / ask verdict.
─────────────────────────────────────────────────────────────────────────
Precedence, highest first:

    failed lookup          → deny   (fail closed)
    CRITICAL or HIGH       → deny
    MEDIUM or UNKNOWN      → ask
    LOW only / none        → allow

Packages that could not be checked (no vulnerability database for their
ecosystem) never change a deny/ask verdict; they are listed in the reason,
and ``unchecked_policy="ask"`` upgrades an allow to ask.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List

from .base import CheckResult, Severity, Vulnerability


class Decision(Enum):
    ALLOW = "allow"
    DENY = "deny"
    ASK = "ask"


@dataclass
class DecisionResult:
    decision: Decision
    reason: str


_DENY_SEVERITIES = (Severity.CRITICAL, Severity.HIGH)
_ASK_SEVERITIES = (Severity.MEDIUM, Severity.UNKNOWN)

# Order in which severity counts are listed in the reason text
_REPORTED = (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.UNKNOWN)


def make_decision(
    results: Iterable[CheckResult],
    unchecked_policy: str = "allow",
) -> DecisionResult:
    """
    Decide on a batch of CheckResults.

    Args:
        results          : One result per detected package, in command order.
        unchecked_policy : "allow" or "ask": the verdict when the only concern is
                           packages that could not be checked.
    """
    results = list(results)
    failures = [r for r in results if not r.ok]
    unchecked = [r for r in results if r.ok and r.unchecked]
    checked = [r for r in results if r.ok and not r.unchecked]
    vulnerabilities = [v for r in checked for v in r.vulnerabilities]

    if failures:
        first = failures[0]
        reason = (
            f"Could not verify {first.package.spec()} ({first.package.ecosystem.value}): "
            f"{first.error}. Blocking until it can be checked."
        )
        if len(failures) > 1:
            reason += f" {len(failures) - 1} more lookup(s) also failed."
        return DecisionResult(Decision.DENY, reason)

    severities = [v.severity for v in vulnerabilities]
    if any(s in _DENY_SEVERITIES for s in severities):
        decision = Decision.DENY
    elif any(s in _ASK_SEVERITIES for s in severities):
        decision = Decision.ASK
    else:
        decision = Decision.ALLOW

    if decision is not Decision.ALLOW:
        reason = _describe_findings(vulnerabilities, decision)
    elif vulnerabilities:
        reason = "Vulnerabilities found, but none are above LOW severity."
    elif checked:
        reason = f"No known vulnerabilities in {len(checked)} package(s) checked."
    else:
        reason = "No packages could be checked."

    if unchecked:
        names = ", ".join(
            f"{r.package.ecosystem.value}:{r.package.spec()}" for r in unchecked
        )
        reason += f" Not checked (no vulnerability database): {names}."
        if decision is Decision.ALLOW and unchecked_policy == "ask":
            decision = Decision.ASK

    return DecisionResult(decision, reason)


def _describe_findings(vulnerabilities: List[Vulnerability], decision: Decision) -> str:
    """
    "🚨 lodash@4.17.20 has 1 CRITICAL, 2 HIGH vulnerabilities (CVE-2021-23337),
    recommended fix: 4.17.21"
    """
    counts = []
    for severity in _REPORTED:
        count = sum(1 for v in vulnerabilities if v.severity is severity)
        if count:
            counts.append(f"{count} {_label(severity)}")

    # Lead with the most severe finding that drove the verdict
    ranked = sorted(vulnerabilities, key=lambda v: -v.severity.rank)
    worst = ranked[0] if decision is Decision.DENY else next(
        v for v in vulnerabilities if v.severity in _ASK_SEVERITIES)
    package = worst.package
    fix = f", recommended fix: {worst.fix_version}" if worst.fix_version else ""
    return (
        f"🚨 {package.name}@{package.version or 'latest'} has "
        f"{', '.join(counts)} vulnerabilities ({worst.id}){fix}"
    )


def _label(severity: Severity) -> str:
    # GitHub / npm advisories call MEDIUM "MODERATE"
    return "MODERATE" if severity is Severity.MEDIUM else severity.value
