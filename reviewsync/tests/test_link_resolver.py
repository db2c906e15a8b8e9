import unittest

from reviewsync.github.fixtures import FixtureGitHubAPI
from reviewsync.models import LinkedReference, RecordAugmentation
from reviewsync.remote import RemoteContext, StaticCredentialProvider
from reviewsync.services.link_resolver import LinkResolver
from reviewsync.stores import IssueStore, PullRequestStore

SCOPE = "octocat/review-client"


class _CountingAPI(FixtureGitHubAPI):
    def __init__(self) -> None:
        super().__init__()
        self.calls: list[str] = []
        self.flag_during_link: list[bool] = []
        self.issues_store = None

    async def list_pull_requests(self, owner, repo, state="all"):
        self.calls.append("list_pull_requests")
        return await super().list_pull_requests(owner, repo, state)

    async def list_issues(self, owner, repo, state="all"):
        self.calls.append("list_issues")
        return await super().list_issues(owner, repo, state)

    async def get_issue_development(self, owner, repo, number):
        self.calls.append("get_issue_development")
        return await super().get_issue_development(owner, repo, number)

    async def link_pull_request_to_issue(self, owner, repo, issue_number, pr_number):
        self.calls.append("link")
        if self.issues_store is not None:
            issue = self.issues_store.get(f"{owner}/{repo}", issue_number)
            self.flag_during_link.append(issue.augmentation.isUpdatingLinks)
        return await super().link_pull_request_to_issue(owner, repo, issue_number, pr_number)


class LinkResolverTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.api = _CountingAPI()
        remote = RemoteContext(StaticCredentialProvider("token"), client_factory=lambda _token: self.api)
        self.pull_requests = PullRequestStore(remote)
        self.issues = IssueStore(remote)
        self.resolver = LinkResolver(remote, self.pull_requests, self.issues)
        await self.pull_requests.fetch_scope(SCOPE, activate=True)
        await self.issues.fetch_scope(SCOPE, activate=True)
        self.api.calls.clear()

    async def test_cache_path_makes_no_remote_calls(self) -> None:
        refs = await self.resolver.get_linked_entities(SCOPE, 3)

        self.assertEqual(self.api.calls, [])
        self.assertEqual([ref.number for ref in refs], [1])
        augmentation = self.issues.get(SCOPE, 3).augmentation
        self.assertEqual(augmentation.linksSource, "cache")
        self.assertEqual([ref.number for ref in augmentation.linkedPRs], [1])
        self.assertIsNotNone(augmentation.linksRefreshedAt)

    async def test_forced_path_makes_one_call_and_replaces_links(self) -> None:
        issue = self.issues.get(SCOPE, 3)
        stale = [LinkedReference(id=999, number=99, title="Gone")]
        await self.issues.mutate(issue.model_copy(update={"augmentation": RecordAugmentation(linkedPRs=stale)}))

        refs = await self.resolver.get_linked_entities(SCOPE, 3, force_remote=True)

        self.assertEqual(self.api.calls, ["get_issue_development"])
        self.assertEqual([ref.number for ref in refs], [1])
        augmentation = self.issues.get(SCOPE, 3).augmentation
        self.assertEqual([ref.number for ref in augmentation.linkedPRs], [1])
        self.assertEqual(augmentation.linksSource, "remote")

    async def test_forced_path_failure_returns_current_links(self) -> None:
        refs = await self.resolver.get_linked_entities("octocat/unknown", 3, force_remote=True)

        self.assertEqual(refs, [])
        self.assertIn("not found", self.resolver.error)

    async def test_link_sets_updating_flag_and_recomputes(self) -> None:
        self.api.issues_store = self.issues

        result = await self.resolver.link_pull_requests(SCOPE, 7, [5])

        self.assertTrue(result.ok)
        self.assertEqual(self.api.flag_during_link, [True])
        augmentation = self.issues.get(SCOPE, 7).augmentation
        self.assertFalse(augmentation.isUpdatingLinks)
        self.assertEqual(augmentation.linksSource, "local")
        self.assertEqual([ref.number for ref in augmentation.linkedPRs], [5])
        self.assertTrue(augmentation.linkedPRs[0].draft)
        self.assertIn("Closes #7", self.pull_requests.get(SCOPE, 5).body)

        cached = await self.resolver.get_linked_entities(SCOPE, 7)
        self.assertEqual([ref.number for ref in cached], [5])

    async def test_link_failure_clears_flag_and_keeps_previous_links(self) -> None:
        await self.resolver.get_linked_entities(SCOPE, 3)

        result = await self.resolver.link_pull_requests(SCOPE, 3, [404])

        self.assertFalse(result.ok)
        self.assertEqual(result.error, "Pull request #404 not found")
        augmentation = self.issues.get(SCOPE, 3).augmentation
        self.assertFalse(augmentation.isUpdatingLinks)
        self.assertEqual([ref.number for ref in augmentation.linkedPRs], [1])
        self.assertEqual(augmentation.linksSource, "cache")

    async def test_unlink_removes_reference_and_closing_keyword(self) -> None:
        await self.resolver.get_linked_entities(SCOPE, 3)

        result = await self.resolver.unlink_pull_request(SCOPE, 3, 1)

        self.assertTrue(result.ok)
        self.assertEqual(self.issues.get(SCOPE, 3).augmentation.linkedPRs, [])
        self.assertNotIn("#3", self.pull_requests.get(SCOPE, 1).body)
        self.assertEqual(await self.resolver.get_linked_entities(SCOPE, 3), [])

    async def test_linear_issue_map_groups_pull_requests(self) -> None:
        mapping = self.resolver.linear_issue_map(SCOPE)

        self.assertEqual(list(mapping), ["ENG-42"])
        self.assertEqual([ref.number for ref in mapping["ENG-42"]], [2])


if __name__ == "__main__":
    unittest.main()
