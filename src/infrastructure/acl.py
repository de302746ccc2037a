from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
from src.domain.models import QuotaState
from src.domain.versioning import strip_ref_prefix

class GitHubTranslator:
    """
    Anti-corruption layer that translates raw GitHub REST JSON responses into domain values.
    """

    @staticmethod
    def to_quota_state(raw: Dict[str, Any]) -> QuotaState:
        """
        Transforms a ``/rate_limit`` response into a QuotaState.

        Args:
            raw (Dict[str, Any]): The decoded JSON body of the rate limit endpoint.

        Returns:
            QuotaState: Remaining calls of the ``core`` resource and its reset time.
        """
        core = raw.get('resources', {}).get('core') or raw.get('rate')
        if not core:
            raise ValueError("rate limit response has no core resource.")

        return QuotaState(
            remaining=core.get('remaining', 0),
            limit=core.get('limit'),
            reset_at=datetime.fromtimestamp(int(core.get('reset', 0)), tz=timezone.utc),
        )

    @staticmethod
    def to_quota_from_headers(headers: Mapping[str, str], previous: QuotaState) -> QuotaState:
        """
        Refreshes a QuotaState from ``X-RateLimit-*`` response headers.

        Responses without the headers (archive downloads) leave the quota untouched.
        """
        remaining = headers.get('X-RateLimit-Remaining')
        if remaining is None:
            return previous

        reset = headers.get('X-RateLimit-Reset')
        limit = headers.get('X-RateLimit-Limit')
        return QuotaState(
            remaining=int(remaining),
            limit=int(limit) if limit is not None else previous.limit,
            reset_at=datetime.fromtimestamp(int(reset), tz=timezone.utc) if reset else previous.reset_at,
        )

    @staticmethod
    def to_repository_names(raw_repos: List[Dict[str, Any]]) -> List[str]:
        return [repo['name'] for repo in raw_repos if repo.get('name')]

    @staticmethod
    def to_tag_names(raw_refs: List[Dict[str, Any]]) -> List[str]:
        """Extracts tag names from ``git/matching-refs/tags`` entries."""
        names = []
        for ref in raw_refs:
            name: Optional[str] = ref.get('ref')
            if name:
                names.append(strip_ref_prefix(name))
        return names
