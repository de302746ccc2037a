import logging
from pathlib import Path
from typing import List, Tuple, Union

import aiohttp

from src.domain.exceptions import NoReleaseFoundException
from src.domain.models import PluginEntry, QuotaState, RepositoryTarget, SelectionRule
from src.domain.versioning import select_latest_tag
from src.infrastructure.archive import digest_tarball
from src.infrastructure.artifact import GeneratedArtifact
from src.infrastructure.github_client import GitHubRestClient

logger = logging.getLogger(__name__)

# Requests are issued one at a time; the GitHub quota is shared by every call.
CONNECTOR_LIMIT = 1


class PinnerService:
    """
    Service responsible for resolving selection rules to repositories, pinning
    each repository's latest release and rewriting the generated artifact.

    The run is all-or-nothing: any exception that escapes ``run`` leaves the
    artifact exactly as it was before the run started.
    """

    def __init__(
            self,
            github_client: GitHubRestClient,
            artifact_path: Union[str, Path],
            skip_untagged: bool = False,
    ):
        self.github_client = github_client
        self.artifact_path = Path(artifact_path)
        self.skip_untagged = skip_untagged

    @staticmethod
    def filter_repositories(names: List[str], rule: SelectionRule) -> List[str]:
        """Applies the rule's include filter, then its exclude filter, and sorts."""
        if rule.include:
            names = [name for name in names if rule.include in name]
        if rule.exclude:
            names = [name for name in names if rule.exclude not in name]
        return sorted(names)

    async def resolve_targets(
        self, session: aiohttp.ClientSession, rule: SelectionRule, quota: QuotaState,
    ) -> Tuple[List[RepositoryTarget], QuotaState]:
        if rule.is_explicit:
            return [RepositoryTarget(owner=rule.owner, repo=rule.repo)], quota

        names, quota = await self.github_client.list_org_repos(session, rule.owner, quota)
        selected = self.filter_repositories(names, rule)
        logger.info(f"Organization '{rule.owner}': {len(selected)} of {len(names)} repositories selected.")
        return [RepositoryTarget(owner=rule.owner, repo=name) for name in selected], quota

    async def latest_tag(
        self, session: aiohttp.ClientSession, target: RepositoryTarget, quota: QuotaState,
    ) -> Tuple[str, QuotaState]:
        """
        Returns the highest well-formed release tag of a repository.

        Raises:
            NoReleaseFoundException: If the repository has no qualifying tag.
        """
        tags, quota = await self.github_client.list_tags(session, target, quota)
        latest = select_latest_tag(tags)
        if latest is None:
            raise NoReleaseFoundException(target.owner, target.repo)
        return latest, quota

    async def digest_archive(
        self, session: aiohttp.ClientSession, target: RepositoryTarget, tag: str, quota: QuotaState,
    ) -> Tuple[str, QuotaState]:
        # Unpacking happens inside each download attempt so a truncated body is fetched again.
        sha256, quota = await self.github_client.download_archive(
            session, target, tag, quota, decode=digest_tarball,
        )
        logger.debug(f"Hashed {target.full_name}@{tag}: {sha256}.")
        return sha256, quota

    async def _pin(
        self, session: aiohttp.ClientSession, target: RepositoryTarget, quota: QuotaState,
    ) -> Tuple[PluginEntry, QuotaState]:
        tag, quota = await self.latest_tag(session, target, quota)
        sha256, quota = await self.digest_archive(session, target, tag, quota)
        return PluginEntry.from_release(target, tag, sha256), quota

    async def run(self, rules: List[SelectionRule]) -> List[PluginEntry]:
        """
        Pins every repository the rules select and rewrites the artifact.

        Rules and their repositories are processed strictly in order, one
        request at a time.

        Returns:
            The entries written, in output order.
        """
        logger.info(f"Starting run over {len(rules)} selection rules.")

        async with aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=CONNECTOR_LIMIT),
        ) as session:
            quota = await self.github_client.check_quota(session)

            with GeneratedArtifact(self.artifact_path) as artifact:
                for rule in rules:
                    targets, quota = await self.resolve_targets(session, rule, quota)

                    for index, target in enumerate(targets, start=1):
                        try:
                            entry, quota = await self._pin(session, target, quota)
                        except NoReleaseFoundException as e:
                            if not self.skip_untagged:
                                raise
                            logger.warning(f"{e} Skipping.")
                            continue

                        artifact.append(entry)
                        logger.info(
                            f"[{index}/{len(targets)}] {target.full_name} -> {entry.version} "
                            f"({quota.remaining} API calls left)."
                        )

        logger.info(f"Run completed. Pinned {len(artifact.entries)} plugins.")
        return artifact.entries
