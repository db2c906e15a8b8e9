import unittest
from unittest.mock import patch

from reviewsync import remote as remote_module
from reviewsync.errors import AuthError
from reviewsync.github.fixtures import FixtureGitHubAPI
from reviewsync.remote import EnvCredentialProvider, RemoteContext, StaticCredentialProvider


class _FakeClient:
    def __init__(self, token: str) -> None:
        self.token = token
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


class RemoteContextTests(unittest.IsolatedAsyncioTestCase):
    async def test_missing_token_raises_auth_error(self) -> None:
        context = RemoteContext(StaticCredentialProvider(None), client_factory=_FakeClient)

        self.assertFalse(context.is_authenticated())
        with self.assertRaises(AuthError) as ctx:
            context.client()
        self.assertEqual(ctx.exception.message, "Not authenticated")

    async def test_offline_token_selects_shared_fixture(self) -> None:
        context = RemoteContext(StaticCredentialProvider("dev-token"), client_factory=_FakeClient, offline_token="dev-token")

        first = context.client()
        second = context.client()

        self.assertIsInstance(first, FixtureGitHubAPI)
        self.assertIs(first, second)
        self.assertTrue(context.is_offline())

    async def test_clients_are_cached_per_token(self) -> None:
        credentials = StaticCredentialProvider("token-a")
        context = RemoteContext(credentials, client_factory=_FakeClient)

        first = context.client()
        self.assertIs(context.client(), first)
        credentials.set_token("token-b")
        second = context.client()

        self.assertEqual((first.token, second.token), ("token-a", "token-b"))
        await context.aclose()
        self.assertTrue(first.closed and second.closed)

    async def test_env_provider_reads_config(self) -> None:
        with patch.object(remote_module.config, "GITHUB_TOKEN", ""):
            self.assertIsNone(EnvCredentialProvider().get_token())
        with patch.object(remote_module.config, "GITHUB_TOKEN", "ghp_example"):
            self.assertEqual(EnvCredentialProvider().get_token(), "ghp_example")


class FixtureGitHubAPITests(unittest.IsolatedAsyncioTestCase):
    async def test_writes_are_visible_to_later_reads(self) -> None:
        api = FixtureGitHubAPI()

        created = await api.create_issue("octocat", "review-client", "Flaky test", labels=["bug"])
        await api.update_issue_state("octocat", "review-client", created.number, "closed")
        issue = await api.get_issue("octocat", "review-client", created.number)

        self.assertEqual(issue.state, "closed")
        self.assertEqual([label.name for label in issue.labels], ["bug"])
        self.assertEqual(issue.labels[0].color, "d73a4a")

    async def test_instances_do_not_share_state(self) -> None:
        first = FixtureGitHubAPI()
        await first.update_issue_state("octocat", "review-client", 3, "closed")

        issue = await FixtureGitHubAPI().get_issue("octocat", "review-client", 3)

        self.assertEqual(issue.state, "open")

    async def test_merged_flag_follows_merged_at(self) -> None:
        pulls = await FixtureGitHubAPI().list_pull_requests("octocat", "review-client")

        self.assertEqual({pr.number: pr.merged for pr in pulls}, {1: False, 2: True, 5: False, 6: False})


if __name__ == "__main__":
    unittest.main()
