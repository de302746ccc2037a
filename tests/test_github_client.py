import unittest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp

from src.domain.exceptions import QuotaExhaustedException, RetryCeilingExceededException
from src.domain.models import QuotaState, RepositoryTarget
from src.infrastructure.github_client import GitHubRestClient

QUOTA = QuotaState(remaining=50, limit=60, reset_at=datetime(2026, 1, 2, tzinfo=timezone.utc))
RATE_LIMIT_OK = {"resources": {"core": {"limit": 60, "remaining": 48, "reset": 1767225600}}}
RATE_LIMIT_EMPTY = {"resources": {"core": {"limit": 60, "remaining": 0, "reset": 1767225600}}}


def _response(status=200, body=None, headers=None, links=None, raw=b""):
    response = AsyncMock()
    response.status = status
    response.headers = headers or {}
    response.links = links or {}
    response.json = AsyncMock(return_value=body)
    response.read = AsyncMock(return_value=raw)
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=False)
    return response


class TestGitHubRestClient(unittest.TestCase):
    def test_user_token_auth_uses_basic_auth(self) -> None:
        client = GitHubRestClient(auth="octocat:secret")

        self.assertEqual(client.auth, aiohttp.BasicAuth("octocat", "secret"))
        self.assertNotIn("Authorization", client.headers)

    def test_bare_token_uses_bearer_header(self) -> None:
        client = GitHubRestClient(auth="secret")

        self.assertIsNone(client.auth)
        self.assertEqual(client.headers["Authorization"], "Bearer secret")

    def test_unauthenticated_by_default(self) -> None:
        client = GitHubRestClient()

        self.assertIsNone(client.auth)
        self.assertIn("User-Agent", client.headers)
        self.assertIn("Accept", client.headers)


class TestFetchWithRetry(unittest.IsolatedAsyncioTestCase):
    async def test_two_failures_then_success(self) -> None:
        client = GitHubRestClient(retry_delay=5)
        success = _response(body=[{"name": "nixops-aws"}], headers={"X-RateLimit-Remaining": "47"})

        session = MagicMock()
        session.get = MagicMock(side_effect=[
            _response(status=502),
            _response(body=RATE_LIMIT_OK),
            _response(status=502),
            _response(body=RATE_LIMIT_OK),
            success,
        ])

        with patch("src.infrastructure.github_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with self.assertLogs("src.infrastructure.github_client", level="WARNING") as logs:
                body, next_url, quota = await client.fetch_with_retry(session, "https://api.test/x", QUOTA)

        self.assertEqual(body, [{"name": "nixops-aws"}])
        self.assertIsNone(next_url)
        self.assertEqual(quota.remaining, 47)
        self.assertEqual(len(logs.output), 2)
        self.assertIn("attempt 1/30", logs.output[0])
        self.assertIn("attempt 2/30", logs.output[1])
        self.assertEqual(mock_sleep.await_count, 2)
        mock_sleep.assert_awaited_with(5)

    async def test_connection_error_is_retried(self) -> None:
        client = GitHubRestClient()
        session = MagicMock()
        session.get = MagicMock(side_effect=[
            aiohttp.ClientConnectionError("connection reset"),
            _response(body={"ok": True}),
        ])

        with patch("src.infrastructure.github_client.asyncio.sleep", new_callable=AsyncMock):
            body, _, _ = await client.fetch_with_retry(session, "https://api.test/x", None)

        self.assertEqual(body, {"ok": True})

    async def test_exhausted_quota_stops_retrying(self) -> None:
        client = GitHubRestClient()
        session = MagicMock()
        session.get = MagicMock(side_effect=[
            _response(status=403),
            _response(body=RATE_LIMIT_EMPTY),
        ])

        with patch("src.infrastructure.github_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with self.assertRaises(QuotaExhaustedException) as ctx:
                await client.fetch_with_retry(session, "https://api.test/x", QUOTA)

        self.assertIn("GITHUB_AUTH", str(ctx.exception))
        self.assertEqual(session.get.call_count, 2)
        mock_sleep.assert_not_awaited()

    async def test_retry_ceiling(self) -> None:
        client = GitHubRestClient(max_attempts=3, retry_delay=1)
        session = MagicMock()
        session.get = MagicMock(side_effect=lambda *args, **kwargs: _response(status=500))

        with patch("src.infrastructure.github_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with self.assertRaises(RetryCeilingExceededException) as ctx:
                await client.fetch_with_retry(session, "https://api.test/x", None)

        self.assertEqual(ctx.exception.attempts, 3)
        self.assertEqual(session.get.call_count, 3)
        self.assertEqual(mock_sleep.await_count, 2)

    async def test_failed_quota_probe_keeps_previous_quota(self) -> None:
        client = GitHubRestClient()
        session = MagicMock()
        session.get = MagicMock(side_effect=[
            _response(status=502),
            _response(status=502),
            _response(body=[]),
        ])

        with patch("src.infrastructure.github_client.asyncio.sleep", new_callable=AsyncMock):
            _, _, quota = await client.fetch_with_retry(session, "https://api.test/x", QUOTA)

        self.assertEqual(quota, QUOTA)


class TestQuotaCheck(unittest.IsolatedAsyncioTestCase):
    async def test_check_quota_returns_state(self) -> None:
        client = GitHubRestClient(api_url="https://api.test")
        session = MagicMock()
        session.get = MagicMock(return_value=_response(body=RATE_LIMIT_OK))

        quota = await client.check_quota(session)

        self.assertEqual(quota.remaining, 48)
        self.assertEqual(session.get.call_args.args[0], "https://api.test/rate_limit")

    async def test_check_quota_exhausted(self) -> None:
        client = GitHubRestClient()
        session = MagicMock()
        session.get = MagicMock(return_value=_response(body=RATE_LIMIT_EMPTY))

        with self.assertRaises(QuotaExhaustedException) as ctx:
            await client.check_quota(session)

        self.assertIn("2026-01-02T00:00:00+00:00", str(ctx.exception))


class TestListing(unittest.IsolatedAsyncioTestCase):
    async def test_org_repos_follow_pagination(self) -> None:
        client = GitHubRestClient(api_url="https://api.test")
        page_two = "https://api.test/orgs/nixos/repos?per_page=100&page=2"
        session = MagicMock()
        session.get = MagicMock(side_effect=[
            _response(body=[{"name": "nixops-aws"}], links={"next": {"url": page_two}}),
            _response(body=[{"name": "nixops-gce"}]),
        ])

        names, _ = await client.list_org_repos(session, "nixos", QUOTA)

        self.assertEqual(names, ["nixops-aws", "nixops-gce"])
        first, second = session.get.call_args_list
        self.assertEqual(first.args[0], "https://api.test/orgs/nixos/repos")
        self.assertEqual(first.kwargs["params"], {"per_page": 100})
        self.assertEqual(second.args[0], page_two)
        self.assertIsNone(second.kwargs["params"])

    async def test_list_tags(self) -> None:
        client = GitHubRestClient(api_url="https://api.test")
        session = MagicMock()
        session.get = MagicMock(return_value=_response(body=[
            {"ref": "refs/tags/v1.0"},
            {"ref": "refs/tags/v1.1"},
        ]))

        tags, _ = await client.list_tags(session, RepositoryTarget(owner="nixos", repo="nixops-aws"), QUOTA)

        self.assertEqual(tags, ["v1.0", "v1.1"])
        self.assertEqual(
            session.get.call_args.args[0],
            "https://api.test/repos/nixos/nixops-aws/git/matching-refs/tags",
        )

    async def test_download_archive_is_unauthenticated(self) -> None:
        client = GitHubRestClient(auth="octocat:secret")
        session = MagicMock()
        session.get = MagicMock(return_value=_response(raw=b"tarball"))

        data, quota = await client.download_archive(
            session, RepositoryTarget(owner="nixos", repo="nixops-aws"), "v1.0", QUOTA,
        )

        self.assertEqual(data, b"tarball")
        self.assertEqual(quota, QUOTA)
        call = session.get.call_args
        self.assertEqual(call.args[0], "https://github.com/nixos/nixops-aws/archive/v1.0.tar.gz")
        self.assertIsNone(call.kwargs["auth"])
        self.assertNotIn("Authorization", call.kwargs["headers"])
