"""
security_engine/osv_verifier.py

Concrete Strategy: OSVVerifier
──────────────────────────────
Looks packages up in the OSV vulnerability database:

    POST https://api.osv.dev/v1/query
    {"package": {"name": "lodash", "ecosystem": "npm"}, "version": "4.17.20"}

HTTP 200            → list of advisories (possibly empty)
Other status        → failure
Timeout / network   → failure
Undecodable payload → failure

Failures are returned as CheckResult.failure(...) so the decision engine can
fail closed.  Nothing in here raises on network trouble.

Homebrew has no OSV ecosystem; supports() returns False for it and the
SecurityChecker reports those packages as unchecked.
"""

import logging
import math
import re
from typing import Any, Dict, Optional

import requests

from interceptor.models import Ecosystem, ParsedPackage

from .base import CheckResult, PackageVerifier, Severity, Vulnerability

logger = logging.getLogger(__name__)

OSV_QUERY_URL = "https://api.osv.dev/v1/query"
REQUEST_TIMEOUT = 4.0          # seconds; the hook itself runs under a 10s budget

_OSV_ECOSYSTEMS = {
    Ecosystem.NPM: "npm",
    Ecosystem.PYPI: "PyPI",
}

_CVE_ID = re.compile(r"^CVE-\d{4}-\d{4,}$")


class OSVVerifier(PackageVerifier):
    """
    Vulnerability lookup against the OSV API.

    Args:
        api_url : Query endpoint. Defaults to the public OSV API.
        timeout : Per-request timeout in seconds.
        session : Optional requests.Session (connection reuse, tests).
    """

    def __init__(
        self,
        api_url: str = OSV_QUERY_URL,
        timeout: float = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._api_url = api_url
        self._timeout = timeout
        self._session = session or requests.Session()

        logger.debug("OSVVerifier initialised | url=%s timeout=%.1fs", api_url, timeout)

    @property
    def name(self) -> str:
        return "OSVVerifier"

    def supports(self, ecosystem: Ecosystem) -> bool:
        return ecosystem in _OSV_ECOSYSTEMS

    def verify(self, package: ParsedPackage) -> CheckResult:
        name = package.name.strip()
        if not name:
            return CheckResult(package=package)

        body: Dict[str, Any] = {
            "package": {"name": name, "ecosystem": _OSV_ECOSYSTEMS[package.ecosystem]},
        }
        if package.version and package.version.strip():
            body["version"] = package.version.strip()

        try:
            resp = self._session.post(
                self._api_url,
                json=body,
                timeout=self._timeout,
                headers={"Accept": "application/json"},
            )
        except requests.exceptions.Timeout:
            logger.warning("OSV lookup timed out for %s", package.spec())
            return CheckResult.failure(
                package, f"OSV check timed out after {self._timeout:g}s")
        except requests.exceptions.RequestException as exc:
            logger.warning("OSV lookup failed for %s: %s", package.spec(), exc)
            return CheckResult.failure(package, f"OSV check failed: {exc}")

        if not resp.ok:
            logger.warning("OSV returned HTTP %d for %s", resp.status_code, package.spec())
            return CheckResult.failure(package, f"OSV API returned {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            logger.warning("OSV returned invalid JSON for %s: %s", package.spec(), exc)
            return CheckResult.failure(package, "OSV API returned invalid JSON")

        vulns = data.get("vulns") if isinstance(data, dict) else None
        if not isinstance(vulns, list):
            vulns = []

        vulnerabilities = [
            Vulnerability(
                id=choose_id(vuln),
                summary=vuln.get("summary") or "",
                severity=coerce_severity(vuln),
                package=package,
                fix_version=find_fix_version(vuln, name),
            )
            for vuln in vulns
            if isinstance(vuln, dict)
        ]
        logger.info("OSV: %s has %d known vulnerabilities",
                    package.spec(), len(vulnerabilities))
        return CheckResult(package=package, vulnerabilities=vulnerabilities)


# ─────────────────────────────────────────────────────────────────────────────
# Advisory parsing
# ─────────────────────────────────────────────────────────────────────────────

def choose_id(vuln: dict) -> str:
    """Prefer a CVE alias over the database-specific id."""
    aliases = vuln.get("aliases")
    if isinstance(aliases, list):
        for alias in aliases:
            if isinstance(alias, str) and _CVE_ID.match(alias):
                return alias
    return str(vuln.get("id", "UNKNOWN"))


def label_from_score(score: Optional[float]) -> Severity:
    if score is None or math.isnan(score):
        return Severity.UNKNOWN
    if score >= 9.0:
        return Severity.CRITICAL
    if score >= 7.0:
        return Severity.HIGH
    if score >= 4.0:
        return Severity.MEDIUM
    if score > 0.0:
        return Severity.LOW
    return Severity.UNKNOWN


def coerce_severity(vuln: dict) -> Severity:
    """
    Derive one severity label for an advisory.

    1. Highest label among ``severity[].score`` entries (numeric scores or
       CVSS v3 vectors).
    2. ``database_specific.severity`` text (GitHub uses MODERATE).
    3. UNKNOWN.
    """
    best = Severity.UNKNOWN
    entries = vuln.get("severity")
    if isinstance(entries, list):
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            label = label_from_score(_score_value(entry.get("score")))
            if label.rank > best.rank:
                best = label
    if best is not Severity.UNKNOWN:
        return best

    db_specific = vuln.get("database_specific")
    if isinstance(db_specific, dict) and isinstance(db_specific.get("severity"), str):
        text = db_specific["severity"].upper()
        if "CRITICAL" in text:
            return Severity.CRITICAL
        if "HIGH" in text:
            return Severity.HIGH
        if "MEDIUM" in text or "MODERATE" in text:
            return Severity.MEDIUM
        if "LOW" in text:
            return Severity.LOW

    return Severity.UNKNOWN


def find_fix_version(vuln: dict, package_name: str) -> Optional[str]:
    """First ``fixed`` event among the ranges affecting ``package_name``."""
    affected = vuln.get("affected")
    if not isinstance(affected, list):
        return None

    for entry in affected:
        if not isinstance(entry, dict):
            continue
        pkg = entry.get("package") or {}
        affected_name = pkg.get("name") if isinstance(pkg, dict) else None
        if affected_name and affected_name.lower() != package_name.lower():
            continue
        for rng in entry.get("ranges") or []:
            for event in (rng or {}).get("events") or []:
                if isinstance(event, dict) and event.get("fixed"):
                    return str(event["fixed"])
    return None


def _score_value(score: Any) -> Optional[float]:
    if isinstance(score, (int, float)):
        return float(score)
    if not isinstance(score, str):
        return None
    text = score.strip()
    if text.startswith("CVSS:3"):
        return cvss3_base_score(text)
    try:
        return float(text)
    except ValueError:
        return None


# ── CVSS v3.x base score (FIRST specification, section 7) ─────────────────────

_AV = {"N": 0.85, "A": 0.62, "L": 0.55, "P": 0.2}
_AC = {"L": 0.77, "H": 0.44}
_PR_UNCHANGED = {"N": 0.85, "L": 0.62, "H": 0.27}
_PR_CHANGED = {"N": 0.85, "L": 0.68, "H": 0.5}
_UI = {"N": 0.85, "R": 0.62}
_CIA = {"H": 0.56, "L": 0.22, "N": 0.0}


def cvss3_base_score(vector: str) -> Optional[float]:
    """
    Compute the base score of a ``CVSS:3.x/AV:N/AC:L/...`` vector.
    Returns None when a base metric is missing or invalid.
    """
    metrics: Dict[str, str] = {}
    for part in vector.split("/")[1:]:
        key, _, value = part.partition(":")
        metrics[key] = value

    try:
        scope_changed = metrics["S"] == "C"
        av = _AV[metrics["AV"]]
        ac = _AC[metrics["AC"]]
        pr = (_PR_CHANGED if scope_changed else _PR_UNCHANGED)[metrics["PR"]]
        ui = _UI[metrics["UI"]]
        c, i, a = (_CIA[metrics[key]] for key in ("C", "I", "A"))
    except KeyError:
        logger.debug("Unparsable CVSS vector: %s", vector)
        return None

    iss = 1 - (1 - c) * (1 - i) * (1 - a)
    if scope_changed:
        impact = 7.52 * (iss - 0.029) - 3.25 * (iss - 0.02) ** 15
    else:
        impact = 6.42 * iss
    if impact <= 0:
        return 0.0

    exploitability = 8.22 * av * ac * pr * ui
    if scope_changed:
        return _roundup(min(1.08 * (impact + exploitability), 10.0))
    return _roundup(min(impact + exploitability, 10.0))


def _roundup(value: float) -> float:
    int_input = round(value * 100000)
    if int_input % 10000 == 0:
        return int_input / 100000.0
    return (math.floor(int_input / 10000) + 1) / 10.0
