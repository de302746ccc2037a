import unittest
from datetime import datetime, timezone

from src.domain.models import QuotaState
from src.infrastructure.acl import GitHubTranslator


class TestGitHubTranslator(unittest.TestCase):
    def test_to_quota_state_reads_core_resource(self) -> None:
        raw = {
            "resources": {
                "core": {"limit": 60, "remaining": 12, "reset": 1767225600},
                "search": {"limit": 10, "remaining": 10, "reset": 1767225000},
            },
            "rate": {"limit": 60, "remaining": 12, "reset": 1767225600},
        }

        quota = GitHubTranslator.to_quota_state(raw)

        self.assertEqual(quota.remaining, 12)
        self.assertEqual(quota.limit, 60)
        self.assertEqual(quota.reset_at, datetime(2026, 1, 2, tzinfo=timezone.utc))
        self.assertFalse(quota.exhausted)

    def test_to_quota_state_without_core_raises(self) -> None:
        with self.assertRaises(ValueError):
            GitHubTranslator.to_quota_state({"resources": {}})

    def test_quota_from_headers_refreshes_remaining(self) -> None:
        previous = QuotaState(remaining=100, limit=5000, reset_at=datetime(2026, 1, 2, tzinfo=timezone.utc))
        headers = {
            "X-RateLimit-Limit": "5000",
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": "1767229200",
        }

        quota = GitHubTranslator.to_quota_from_headers(headers, previous)

        self.assertTrue(quota.exhausted)
        self.assertEqual(quota.reset_at, datetime(2026, 1, 2, 1, tzinfo=timezone.utc))

    def test_quota_from_headers_keeps_previous_without_headers(self) -> None:
        previous = QuotaState(remaining=100, limit=5000, reset_at=datetime(2026, 1, 2, tzinfo=timezone.utc))

        self.assertIs(GitHubTranslator.to_quota_from_headers({}, previous), previous)

    def test_to_tag_names_strips_ref_prefix(self) -> None:
        raw_refs = [
            {"ref": "refs/tags/v1.0", "object": {"sha": "a"}},
            {"ref": "refs/tags/v2.0", "object": {"sha": "b"}},
            {"object": {"sha": "c"}},
        ]

        self.assertEqual(GitHubTranslator.to_tag_names(raw_refs), ["v1.0", "v2.0"])

    def test_to_repository_names(self) -> None:
        raw_repos = [{"name": "nixops-aws"}, {"name": "nixops-gce"}, {"id": 3}]

        self.assertEqual(GitHubTranslator.to_repository_names(raw_repos), ["nixops-aws", "nixops-gce"])
