"""
Vulnerability Database Client
=============================
Queries OSV.dev for known vulnerabilities in NuGet package versions.

Flow:
    1. POST /v1/querybatch in chunks of 100 (name, version, ecosystem=NuGet)
    2. For every advisory id returned, GET /v1/vulns/{id} for the full record
    3. Flatten each record to an AdvisoryDetail

Retry policy (per chunk):
    - Up to 3 attempts
    - HTTP 429 / 5xx: wait Retry-After seconds if given, else 0.5s × attempt
    - Network error: wait 0.2s × attempt
    - Any other status: the chunk fails without retry

Results are keyed by ``name@version``. A failed chunk marks every key in it
with ``{"error": "..."}`` instead of raising.

CVSS vectors are not parsed; ``score`` is only set when OSV supplies a plain
number.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import httpx

from secfix.core.constants import SEVERITY_LEVELS
from secfix.models.vulnerability import AdvisoryDetail, VulnerabilityRecord
from secfix.utils.versions import smallest_newer, version_key

logger = logging.getLogger(__name__)

OSV_API_URL = "https://api.osv.dev"
ECOSYSTEM = "NuGet"
BATCH_SIZE = 100
MAX_ATTEMPTS = 3

CheckResult = Dict[str, Union[List[AdvisoryDetail], Dict[str, str]]]

# database_specific.severity (GitHub advisories) → our levels
_ADVISORY_SEVERITY = {
    "critical": "critical",
    "high": "high",
    "moderate": "medium",
    "medium": "medium",
    "low": "low",
}


def severity_from_score(score: Optional[float]) -> str:
    if score is None:
        return "unknown"
    if score >= 9.0:
        return "critical"
    if score >= 7.0:
        return "high"
    if score >= 4.0:
        return "medium"
    return "low"


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def parse_advisory(data: Dict[str, Any]) -> AdvisoryDetail:
    """Flatten one OSV vulnerability object."""
    fixed_in: List[str] = []
    affected_versions: List[str] = []
    for affected in data.get("affected") or []:
        for v in affected.get("versions") or []:
            if isinstance(v, str) and v not in affected_versions:
                affected_versions.append(v)
        for rng in affected.get("ranges") or []:
            for event in rng.get("events") or []:
                intro = event.get("introduced")
                if isinstance(intro, str) and f"introduced:{intro}" not in affected_versions:
                    affected_versions.append(f"introduced:{intro}")
                fixed = event.get("fixed")
                if isinstance(fixed, str) and fixed not in fixed_in:
                    fixed_in.append(fixed)

    references = []
    for ref in data.get("references") or []:
        url = ref.get("url") if isinstance(ref, dict) else ref
        if isinstance(url, str):
            references.append(url)

    score = None
    for entry in data.get("severity") or []:
        try:
            score = round(float(entry.get("score")), 1)
            break
        except (TypeError, ValueError, AttributeError):
            continue

    return AdvisoryDetail(
        id=data.get("id") or "",
        summary=data.get("summary"),
        details=data.get("details"),
        score=score,
        fixed_in=fixed_in,
        affected_versions=affected_versions,
        published_date=data.get("published") or data.get("modified"),
        references=references,
    )


class VulnerabilityDatabase:
    """
    OSV.dev client.

    Usage:
        db = VulnerabilityDatabase(timeout_seconds=10)
        results = await db.check_vulnerabilities([("Newtonsoft.Json", "12.0.1")])
        await db.close()
    """

    def __init__(self, timeout_seconds: float = 10.0, base_url: str = OSV_API_URL) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._http: Optional[httpx.AsyncClient] = None
        # Severity label from database_specific, keyed by advisory id
        self._advisory_severity: Dict[str, str] = {}

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    async def _post_batch(self, chunk: List[Tuple[str, str]]) -> Optional[Dict[str, Any]]:
        """POST one querybatch chunk with retry. None when every attempt failed."""
        http = await self._get_http()
        payload = {
            "queries": [
                {"package": {"name": name, "ecosystem": ECOSYSTEM}, "version": version}
                for name, version in chunk
            ]
        }
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = await http.post(f"{self.base_url}/v1/querybatch", json=payload)
            except httpx.HTTPError as e:
                logger.warning("OSV batch attempt %d failed: %s", attempt, e)
                await asyncio.sleep(0.2 * attempt)
                continue

            if response.status_code < 300:
                try:
                    return response.json()
                except ValueError:
                    logger.error("OSV returned a non-JSON body")
                    return None

            if response.status_code == 429 or 500 <= response.status_code < 600:
                delay = _retry_after_seconds(response)
                logger.warning("OSV batch attempt %d: HTTP %d, retrying", attempt, response.status_code)
                await asyncio.sleep(delay if delay is not None else 0.5 * attempt)
                continue

            logger.error("OSV batch query rejected: HTTP %d", response.status_code)
            return None
        return None

    async def _fetch_advisory(self, vuln_id: str) -> Optional[AdvisoryDetail]:
        http = await self._get_http()
        try:
            response = await http.get(f"{self.base_url}/v1/vulns/{vuln_id}")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not fetch advisory %s: %s", vuln_id, e)
            return None
        label = ((data.get("database_specific") or {}).get("severity") or "").lower()
        if label in _ADVISORY_SEVERITY:
            self._advisory_severity[vuln_id] = _ADVISORY_SEVERITY[label]
        return parse_advisory(data)

    async def check_vulnerabilities(self, packages: Iterable[Tuple[str, str]]) -> CheckResult:
        """Advisories per ``name@version``; an empty list means no known vulnerabilities."""
        seen = set()
        pkg_list: List[Tuple[str, str]] = []
        for name, version in packages:
            if not name or not version or not name.strip() or not version.strip():
                continue
            item = (name.strip(), version.strip())
            if item not in seen:
                seen.add(item)
                pkg_list.append(item)

        results: CheckResult = {}
        for start in range(0, len(pkg_list), BATCH_SIZE):
            chunk = pkg_list[start:start + BATCH_SIZE]
            body = await self._post_batch(chunk)

            entries = body.get("results") if isinstance(body, dict) else None
            if not isinstance(entries, list):
                message = "OSV query failed or timed out" if body is None else "Unexpected OSV response format"
                for name, version in chunk:
                    results[f"{name}@{version}"] = {"error": message}
                continue

            for (name, version), entry in zip(chunk, entries):
                advisories: List[AdvisoryDetail] = []
                for summary in (entry or {}).get("vulns") or []:
                    vuln_id = summary.get("id")
                    if not vuln_id:
                        continue
                    detail = await self._fetch_advisory(vuln_id)
                    if detail is not None:
                        advisories.append(detail)
                results[f"{name}@{version}"] = advisories

        logger.info(
            "Checked %d package(s): %d vulnerable",
            len(pkg_list), sum(1 for v in results.values() if isinstance(v, list) and v),
        )
        return results

    def build_vulnerability_records(self, results: CheckResult) -> List[VulnerabilityRecord]:
        return build_vulnerability_records(results, self._advisory_severity)


# SEVERITY_LEVELS is ordered worst first; higher rank is worse
_SEVERITY_RANK = {level: len(SEVERITY_LEVELS) - i for i, level in enumerate(SEVERITY_LEVELS)}


def build_vulnerability_records(
    results: CheckResult,
    advisory_severity: Optional[Dict[str, str]] = None,
) -> List[VulnerabilityRecord]:
    """
    One VulnerabilityRecord per vulnerable package version.

    Fixed version is the highest of the per-advisory fixes, where each
    advisory contributes its smallest ``fixed_in`` above the current version.
    Advisories without a newer fix do not contribute; empty when none has
    one. Severity is the worst across advisories.
    """
    advisory_severity = advisory_severity or {}
    records = []
    for key, advisories in results.items():
        if not isinstance(advisories, list) or not advisories:
            continue
        name, _, version = key.rpartition("@")

        per_advisory = [smallest_newer(a.fixed_in, version) for a in advisories]
        fixes = [f for f in per_advisory if f]
        fixed = max(fixes, key=version_key) if fixes else ""

        severity = "unknown"
        for a in advisories:
            level = severity_from_score(a.score) if a.score is not None else advisory_severity.get(a.id, "unknown")
            if _SEVERITY_RANK[level] > _SEVERITY_RANK[severity]:
                severity = level

        records.append(VulnerabilityRecord(
            package_name=name,
            current_version=version,
            fixed_version=fixed,
            severity=severity,
            advisory_ids=tuple(a.id for a in advisories),
        ))
    return sorted(records, key=lambda r: (r.package_name.lower(), r.current_version))
