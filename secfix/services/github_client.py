"""
GitHub Client
=============
Thin async wrapper over the GitHub REST API for the calls the remediation
and merge workflows need: pull requests, reviews, files, compare, status
checks, merge, issues, comments, labels and review requests.

Every non-2xx response raises GitHubAPIError. Callers that treat a call as
best-effort (comments, review requests) catch it and log a warning.
"""
import re
import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"

_SLUG_RE = re.compile(r"github\.com[:/]+([^/\s]+)/([^/\s]+?)(?:\.git)?/?$")


class GitHubAPIError(Exception):
    """A GitHub REST call failed (HTTP error status or transport error)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def parse_repo_slug(url: Optional[str]) -> Optional[str]:
    """
    Extract ``owner/repo`` from a GitHub URL.

    Accepts https (``https://github.com/o/r(.git)``) and ssh
    (``git@github.com:o/r.git``) forms. Returns None for anything else.
    """
    if not url:
        return None
    match = _SLUG_RE.search(url.strip())
    if not match:
        return None
    return f"{match.group(1)}/{match.group(2)}"


class GitHubClient:
    """
    Async GitHub REST client bound to one token.

    Usage:
        gh = GitHubClient(token)
        prs = await gh.list_open_pull_requests("owner/repo")
        await gh.close()
    """

    def __init__(self, token: str, timeout_seconds: float = 20.0, base_url: str = GITHUB_API_URL) -> None:
        if not token:
            raise ValueError("GitHub token is required")
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "secfix-security-agent",
            "Authorization": f"token {token}",
        }
        self._http: Optional[httpx.AsyncClient] = None

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(headers=self.headers, timeout=self.timeout_seconds)
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        http = await self._get_http()
        url = f"{self.base_url}{path}"
        try:
            response = await http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise GitHubAPIError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            try:
                message = response.json().get("message", "")
            except ValueError:
                message = response.text
            raise GitHubAPIError(
                f"{method} {path} returned HTTP {response.status_code}: {message}",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    # -------------------------------------------------------------------
    # Pull requests
    # -------------------------------------------------------------------
    async def list_open_pull_requests(self, slug: str) -> List[Dict[str, Any]]:
        """Open PRs, most recently updated first (one page of 100)."""
        return await self._request(
            "GET", f"/repos/{slug}/pulls",
            params={"state": "open", "sort": "updated", "direction": "desc", "per_page": 100},
        )

    async def get_pull_request(self, slug: str, number: int) -> Dict[str, Any]:
        return await self._request("GET", f"/repos/{slug}/pulls/{number}")

    async def list_reviews(self, slug: str, number: int) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/repos/{slug}/pulls/{number}/reviews", params={"per_page": 100})

    async def list_pull_request_files(self, slug: str, number: int) -> List[str]:
        files = await self._request("GET", f"/repos/{slug}/pulls/{number}/files", params={"per_page": 100})
        return [f.get("filename", "") for f in files if f.get("filename")]

    async def compare(self, slug: str, base: str, head: str) -> Dict[str, Any]:
        return await self._request("GET", f"/repos/{slug}/compare/{base}...{head}")

    async def create_pull_request(self, slug: str, title: str, head: str, base: str, body: str) -> Dict[str, Any]:
        return await self._request(
            "POST", f"/repos/{slug}/pulls",
            json={"title": title, "head": head, "base": base, "body": body},
        )

    async def merge_pull_request(
        self,
        slug: str,
        number: int,
        commit_title: str,
        merge_method: str = "squash",
        sha: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"commit_title": commit_title, "merge_method": merge_method}
        if sha:
            payload["sha"] = sha
        return await self._request("PUT", f"/repos/{slug}/pulls/{number}/merge", json=payload)

    async def request_reviewers(self, slug: str, number: int, reviewers: List[str]) -> Dict[str, Any]:
        return await self._request(
            "POST", f"/repos/{slug}/pulls/{number}/requested_reviewers",
            json={"reviewers": reviewers},
        )

    # -------------------------------------------------------------------
    # Status checks
    # -------------------------------------------------------------------
    async def get_combined_status(self, slug: str, ref: str) -> Dict[str, Any]:
        return await self._request("GET", f"/repos/{slug}/commits/{ref}/status")

    async def list_check_runs(self, slug: str, ref: str) -> List[Dict[str, Any]]:
        data = await self._request("GET", f"/repos/{slug}/commits/{ref}/check-runs", params={"per_page": 100})
        return data.get("check_runs", [])

    # -------------------------------------------------------------------
    # Issues & comments
    # -------------------------------------------------------------------
    async def create_issue(self, slug: str, title: str, body: str, labels: Optional[List[str]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = labels
        return await self._request("POST", f"/repos/{slug}/issues", json=payload)

    async def get_issue(self, slug: str, number: int) -> Dict[str, Any]:
        return await self._request("GET", f"/repos/{slug}/issues/{number}")

    async def close_issue(self, slug: str, number: int) -> Dict[str, Any]:
        return await self._request("PATCH", f"/repos/{slug}/issues/{number}", json={"state": "closed"})

    async def create_comment(self, slug: str, number: int, body: str) -> Dict[str, Any]:
        """Comment on an issue or a pull request (PRs share the issue comment endpoint)."""
        return await self._request("POST", f"/repos/{slug}/issues/{number}/comments", json={"body": body})

    async def add_labels(self, slug: str, number: int, labels: List[str]) -> List[Dict[str, Any]]:
        return await self._request("POST", f"/repos/{slug}/issues/{number}/labels", json={"labels": labels})


def resolve_repo_slug(configured_url: Optional[str], remote_url: Optional[str]) -> Optional[str]:
    """``owner/repo`` from the configured repository URL, else from the origin remote."""
    return parse_repo_slug(configured_url) or parse_repo_slug(remote_url)
