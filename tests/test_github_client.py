import asyncio
import pytest
import httpx
from unittest.mock import AsyncMock, patch

from secfix.services.github_client import (
    GitHubAPIError,
    GitHubClient,
    parse_repo_slug,
    resolve_repo_slug,
)


def _resp(status, json=None, content=None):
    request = httpx.Request("GET", "https://api.github.com/x")
    if json is not None:
        return httpx.Response(status, json=json, request=request)
    return httpx.Response(status, content=content or b"", request=request)


@pytest.mark.parametrize("url,slug", [
    ("https://github.com/acme/shop", "acme/shop"),
    ("https://github.com/acme/shop.git", "acme/shop"),
    ("https://github.com/acme/shop/", "acme/shop"),
    ("git@github.com:acme/shop.git", "acme/shop"),
    ("https://gitlab.com/acme/shop", None),
    ("", None),
    (None, None),
])
def test_parse_repo_slug(url, slug):
    assert parse_repo_slug(url) == slug


def test_resolve_repo_slug_prefers_configured_url():
    assert resolve_repo_slug("https://github.com/a/b", "git@github.com:c/d.git") == "a/b"
    assert resolve_repo_slug(None, "git@github.com:c/d.git") == "c/d"


def test_client_requires_token():
    with pytest.raises(ValueError):
        GitHubClient("")


def test_merge_pull_request_payload():
    async def run_test():
        gh = GitHubClient("tok")
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_req:
            mock_req.return_value = _resp(200, json={"merged": True, "sha": "abc123"})
            data = await gh.merge_pull_request("acme/shop", 7, "Security fix: bump (#7)", sha="deadbeef")
        await gh.close()
        return data, mock_req

    data, mock_req = asyncio.run(run_test())
    assert data["merged"] is True
    method, url = mock_req.call_args.args
    assert method == "PUT"
    assert url == "https://api.github.com/repos/acme/shop/pulls/7/merge"
    assert mock_req.call_args.kwargs["json"] == {
        "commit_title": "Security fix: bump (#7)",
        "merge_method": "squash",
        "sha": "deadbeef",
    }


def test_error_status_raises_with_message():
    async def run_test():
        gh = GitHubClient("tok")
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_req:
            mock_req.return_value = _resp(405, json={"message": "Pull Request is not mergeable"})
            try:
                await gh.merge_pull_request("acme/shop", 7, "t")
            finally:
                await gh.close()

    with pytest.raises(GitHubAPIError) as exc:
        asyncio.run(run_test())
    assert exc.value.status_code == 405
    assert "not mergeable" in str(exc.value)


def test_transport_error_becomes_api_error():
    async def run_test():
        gh = GitHubClient("tok")
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_req:
            mock_req.side_effect = httpx.ConnectError("boom")
            try:
                await gh.get_issue("acme/shop", 1)
            finally:
                await gh.close()

    with pytest.raises(GitHubAPIError):
        asyncio.run(run_test())


def test_no_content_returns_empty_dict_and_files_are_flattened():
    async def run_test():
        gh = GitHubClient("tok")
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_req:
            mock_req.side_effect = [
                _resp(204),
                _resp(200, json=[{"filename": "dependency-graph.json"}, {"filename": "src/App.csproj"}]),
            ]
            empty = await gh.request_reviewers("acme/shop", 3, ["alice"])
            files = await gh.list_pull_request_files("acme/shop", 3)
        await gh.close()
        return empty, files

    empty, files = asyncio.run(run_test())
    assert empty == {}
    assert files == ["dependency-graph.json", "src/App.csproj"]
