import aiohttp
import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from src.domain.exceptions import (
    ArchiveException,
    QuotaExhaustedException,
    RetryCeilingExceededException,
    TransientNetworkError,
)
from src.domain.models import QuotaState, RepositoryTarget
from src.infrastructure.acl import GitHubTranslator
from src.infrastructure.settings import DEFAULT_API_URL, DEFAULT_ARCHIVE_URL, PinnerSettings

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
MAX_ATTEMPTS = 30
RETRY_DELAY = 5.0
CONNECT_TIMEOUT = 10
USER_AGENT = "plugin-pinner"

class GitHubRestClient:
    """
    Client for the GitHub REST API and release archive downloads.
    Handles authentication, pagination, quota tracking and retries.

    Every call that can spend API quota takes the current QuotaState and
    returns the refreshed one alongside its result.
    """

    def __init__(
        self,
        auth: Optional[str] = None,
        api_url: str = DEFAULT_API_URL,
        archive_url: str = DEFAULT_ARCHIVE_URL,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delay: float = RETRY_DELAY,
        page_size: int = DEFAULT_PAGE_SIZE,
        request_timeout: float = 120.0,
    ):
        self.headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": "2022-11-28",
        }
        self.download_headers = {"User-Agent": USER_AGENT}
        self.auth: Optional[aiohttp.BasicAuth] = None
        if auth:
            if ":" in auth:
                user, _, token = auth.partition(":")
                self.auth = aiohttp.BasicAuth(user, token)
            else:
                self.headers["Authorization"] = f"Bearer {auth}"

        self.api_url = api_url.rstrip("/")
        self.archive_url = archive_url
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.page_size = page_size
        self.timeout = aiohttp.ClientTimeout(total=request_timeout, connect=CONNECT_TIMEOUT)

    @classmethod
    def from_settings(cls, settings: PinnerSettings) -> "GitHubRestClient":
        return cls(
            auth=settings.github_auth,
            api_url=settings.api_url,
            archive_url=settings.archive_url,
            max_attempts=settings.max_attempts,
            retry_delay=settings.retry_delay,
            page_size=settings.page_size,
            request_timeout=settings.request_timeout,
        )

    @property
    def rate_limit_url(self) -> str:
        return f"{self.api_url}/rate_limit"

    async def _get(
        self,
        session: aiohttp.ClientSession,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        as_json: bool = True,
    ) -> Tuple[Any, Optional[str], Mapping[str, str]]:
        """
        Issues a single GET.

        Returns:
            Tuple of (body, next_page_url, response_headers).

        Raises:
            TransientNetworkError: On connection problems, timeouts and HTTP errors.
        """
        try:
            async with session.get(
                url,
                params=params,
                headers=self.headers if as_json else self.download_headers,
                auth=self.auth if as_json else None,
                timeout=self.timeout,
            ) as response:
                if response.status >= 400:
                    raise TransientNetworkError(url, f"HTTP {response.status}")

                body = await response.json() if as_json else await response.read()
                next_link = response.links.get("next")
                next_url = str(next_link["url"]) if next_link else None
                return body, next_url, response.headers

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientNetworkError(url, str(e) or type(e).__name__) from e

    async def _probe_quota(self, session: aiohttp.ClientSession) -> QuotaState:
        body, _, _ = await self._get(session, self.rate_limit_url)
        quota = GitHubTranslator.to_quota_state(body)
        if quota.exhausted:
            raise QuotaExhaustedException(reset_at=quota.reset_at.isoformat())
        return quota

    async def check_quota(self, session: aiohttp.ClientSession) -> QuotaState:
        """
        Reads the remaining call budget. Called once at the start of a run.

        Raises:
            QuotaExhaustedException: If no calls are left.
        """
        body, _, _ = await self.fetch_with_retry(session, self.rate_limit_url, None)
        quota = GitHubTranslator.to_quota_state(body)
        if quota.exhausted:
            raise QuotaExhaustedException(reset_at=quota.reset_at.isoformat())

        logger.info(
            f"GitHub API quota: {quota.remaining}/{quota.limit} calls left, "
            f"resets at {quota.reset_at.isoformat()}."
        )
        return quota

    async def _recheck_quota(self, session: aiohttp.ClientSession, previous: QuotaState) -> QuotaState:
        try:
            return await self._probe_quota(session)
        except TransientNetworkError as e:
            logger.warning(f"Could not refresh rate limit status: {e}")
            return previous

    @staticmethod
    def _decode(url: str, body: Any, decode: Callable[[Any], Any]) -> Any:
        try:
            return decode(body)
        except ArchiveException as e:
            raise TransientNetworkError(url, str(e)) from e

    async def fetch_with_retry(
        self,
        session: aiohttp.ClientSession,
        url: str,
        quota: Optional[QuotaState],
        params: Optional[Dict[str, Any]] = None,
        as_json: bool = True,
        decode: Optional[Callable[[Any], Any]] = None,
    ) -> Tuple[Any, Optional[str], Optional[QuotaState]]:
        """
        GETs a URL, retrying with a fixed delay.

        After each failure the quota is probed again so that an exhausted
        budget ends the run at once instead of burning the remaining attempts.
        Passing ``quota=None`` skips the probe. A ``decode`` callable is applied
        to the body inside the same attempt; an unreadable archive counts as a
        failed attempt.

        Returns:
            Tuple of (body, next_page_url, refreshed_quota).

        Raises:
            QuotaExhaustedException: If a re-check finds no calls left.
            RetryCeilingExceededException: If every attempt failed.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                body, next_url, headers = await self._get(session, url, params, as_json)
                if decode is not None:
                    body = self._decode(url, body, decode)
            except TransientNetworkError as e:
                logger.warning(f"Request failed (attempt {attempt}/{self.max_attempts}): {e}")
                if quota is not None:
                    quota = await self._recheck_quota(session, quota)
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay)
                continue

            if quota is not None:
                quota = GitHubTranslator.to_quota_from_headers(headers, quota)
            return body, next_url, quota

        raise RetryCeilingExceededException(url, self.max_attempts)

    async def _fetch_all_pages(
        self, session: aiohttp.ClientSession, url: str, quota: QuotaState,
    ) -> Tuple[List[Dict[str, Any]], QuotaState]:
        """Follows ``Link: rel="next"`` headers until the last page."""
        items: List[Dict[str, Any]] = []
        params: Optional[Dict[str, Any]] = {"per_page": self.page_size}
        next_url: Optional[str] = url

        while next_url:
            page, next_url, quota = await self.fetch_with_retry(session, next_url, quota, params=params)
            # The next link already carries the query string.
            params = None
            items.extend(page or [])
            logger.debug(f"Fetched {len(page or [])} items from {url}.")

        return items, quota

    async def list_org_repos(
        self, session: aiohttp.ClientSession, org: str, quota: QuotaState,
    ) -> Tuple[List[str], QuotaState]:
        raw_repos, quota = await self._fetch_all_pages(session, f"{self.api_url}/orgs/{org}/repos", quota)
        return GitHubTranslator.to_repository_names(raw_repos), quota

    async def list_tags(
        self, session: aiohttp.ClientSession, target: RepositoryTarget, quota: QuotaState,
    ) -> Tuple[List[str], QuotaState]:
        url = f"{self.api_url}/repos/{target.owner}/{target.repo}/git/matching-refs/tags"
        raw_refs, quota = await self._fetch_all_pages(session, url, quota)
        return GitHubTranslator.to_tag_names(raw_refs), quota

    async def download_archive(
        self,
        session: aiohttp.ClientSession,
        target: RepositoryTarget,
        tag: str,
        quota: QuotaState,
        decode: Optional[Callable[[bytes], Any]] = None,
    ) -> Tuple[Any, QuotaState]:
        """
        Downloads a release tarball. With ``decode`` the decoded value is
        returned, and a body that fails to decode is downloaded again.
        """
        url = self.archive_url.format(owner=target.owner, repo=target.repo, tag=tag)
        body, _, quota = await self.fetch_with_retry(session, url, quota, as_json=False, decode=decode)
        return body, quota
