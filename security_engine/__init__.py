"""
security_engine — PatchPilot's pluggable vulnerability lookup layer.

Public API:
    SecurityChecker : Orchestrator — use this from application code.
    PackageVerifier : Abstract base — subclass this to add new lookups.
    OSVVerifier     : Lookup against the OSV database (api.osv.dev).
    CheckResult     : Per-package lookup outcome (findings or failure).
    Vulnerability   : One advisory affecting a package.
    Severity        : Advisory severity labels.
    make_decision   : Results → allow / deny / ask verdict.
"""

from .base import CheckResult, PackageVerifier, Severity, Vulnerability
from .checker import SecurityChecker
from .decision import Decision, DecisionResult, make_decision
from .osv_verifier import OSVVerifier

__all__ = [
    "CheckResult",
    "Decision",
    "DecisionResult",
    "OSVVerifier",
    "PackageVerifier",
    "SecurityChecker",
    "Severity",
    "Vulnerability",
    "make_decision",
]
