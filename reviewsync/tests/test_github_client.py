import json
import unittest

import httpx

from reviewsync.errors import RemoteAPIError
from reviewsync.github.client import GitHubAPI


def _pull(number: int, **fields) -> dict:
    payload = {
        "id": number * 10,
        "number": number,
        "title": f"PR {number}",
        "body": "",
        "state": "open",
        "draft": False,
        "merged_at": None,
        "user": {"login": "octocat", "id": 1, "avatar_url": ""},
        "head": {"ref": f"feature/{number}", "sha": "abc"},
        "base": {"ref": "main", "sha": "def"},
    }
    payload.update(fields)
    return payload


class GitHubAPITests(unittest.IsolatedAsyncioTestCase):
    def _client(self, handler) -> GitHubAPI:
        return GitHubAPI(
            "secret-token",
            base_url="https://api.test",
            graphql_url="https://api.test/graphql",
            transport=httpx.MockTransport(handler),
        )

    async def test_list_pull_requests_follows_next_links(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=[_pull(3, merged_at="2024-02-01T00:00:00Z", state="closed")])
            return httpx.Response(
                200,
                json=[_pull(1), _pull(2, draft=True)],
                headers={"link": '<https://api.test/repos/acme/web/pulls?state=all&per_page=100&page=2>; rel="next"'},
            )

        api = self._client(handler)
        pulls = await api.list_pull_requests("acme", "web")
        await api.aclose()

        self.assertEqual([pr.number for pr in pulls], [1, 2, 3])
        self.assertEqual({pr.scope for pr in pulls}, {"acme/web"})
        self.assertTrue(pulls[1].draft)
        self.assertTrue(pulls[2].merged)
        self.assertFalse(pulls[0].merged)
        self.assertEqual(seen[0].url.params["per_page"], "100")
        self.assertEqual(seen[0].url.params["state"], "all")
        self.assertEqual(seen[0].headers["authorization"], "Bearer secret-token")

    async def test_list_issues_skips_pull_requests(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json=[
                    {"id": 30, "number": 3, "title": "Bug", "state": "open"},
                    {"id": 10, "number": 1, "title": "PR", "state": "open", "pull_request": {"url": "x"}},
                ],
            )

        api = self._client(handler)
        issues = await api.list_issues("acme", "web")
        await api.aclose()

        self.assertEqual([issue.number for issue in issues], [3])
        self.assertEqual(issues[0].repository.full_name, "acme/web")

    async def test_error_statuses_are_classified(self) -> None:
        cases = [
            (401, {}, "unauthorized"),
            (403, {"x-ratelimit-remaining": "0"}, "rate_limited"),
            (403, {}, "http_error"),
            (404, {}, "not_found"),
            (429, {}, "rate_limited"),
            (502, {}, "transient"),
        ]
        for status, headers, code in cases:
            with self.subTest(status=status, code=code):
                api = self._client(
                    lambda request, status=status, headers=headers: httpx.Response(
                        status, json={"message": "nope"}, headers=headers
                    )
                )
                with self.assertRaises(RemoteAPIError) as ctx:
                    await api.get_pull_request("acme", "web", 1)
                await api.aclose()
                self.assertEqual(ctx.exception.code, code)
                self.assertEqual(ctx.exception.message, "nope")
                self.assertEqual(ctx.exception.retryable, code in {"transient", "rate_limited"})

    async def test_connection_errors_are_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        api = self._client(handler)
        with self.assertRaises(RemoteAPIError) as ctx:
            await api.list_repositories()
        await api.aclose()

        self.assertEqual(ctx.exception.code, "transient")

    async def test_graphql_errors_raise(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"errors": [{"message": "Could not resolve to an Issue"}]})

        api = self._client(handler)
        with self.assertRaises(RemoteAPIError) as ctx:
            await api.get_issue_development("acme", "web", 3)
        await api.aclose()

        self.assertEqual(ctx.exception.message, "Could not resolve to an Issue")

    async def test_issue_development_maps_graph_nodes(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            self.assertEqual(body["variables"], {"owner": "acme", "name": "web", "number": 3})
            node = {
                "databaseId": 555,
                "number": 8,
                "state": "MERGED",
                "merged": True,
                "isDraft": False,
                "title": "Fix crash",
                "headRefName": "fix/crash",
                "author": {"login": "hubot", "avatarUrl": "https://a/2"},
            }
            return httpx.Response(
                200,
                json={"data": {"repository": {"issue": {"closedByPullRequestsReferences": {"nodes": [node]}}}}},
            )

        api = self._client(handler)
        refs = await api.get_issue_development("acme", "web", 3)
        await api.aclose()

        self.assertEqual(len(refs), 1)
        self.assertEqual(refs[0].id, 555)
        self.assertEqual(refs[0].state, "merged")
        self.assertTrue(refs[0].merged)
        self.assertEqual(refs[0].head.ref, "fix/crash")
        self.assertEqual(refs[0].author.login, "hubot")

    async def test_link_patches_body_only_when_needed(self) -> None:
        patches = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "PATCH":
                body = json.loads(request.content)["body"]
                patches.append(body)
                return httpx.Response(200, json=_pull(5, body=body))
            if request.url.path.endswith("/pulls/5"):
                return httpx.Response(200, json=_pull(5, body="Speeds up diff"))
            return httpx.Response(200, json=_pull(6, body="Closes #7"))

        api = self._client(handler)
        linked = await api.link_pull_request_to_issue("acme", "web", 7, 5)
        already = await api.link_pull_request_to_issue("acme", "web", 7, 6)
        await api.aclose()

        self.assertEqual(patches, ["Speeds up diff\n\nCloses #7"])
        self.assertEqual(linked.body, "Speeds up diff\n\nCloses #7")
        self.assertEqual(already.number, 6)

    async def test_remove_missing_label_is_not_an_error(self) -> None:
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.raw_path.decode())
            return httpx.Response(404, json={"message": "Label does not exist"})

        api = self._client(handler)
        await api.remove_issue_label("acme", "web", 3, "good first issue")
        await api.aclose()

        self.assertEqual(paths, ["/repos/acme/web/issues/3/labels/good%20first%20issue"])

    async def test_malformed_rows_raise_invalid_payload(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/user/repos":
                return httpx.Response(200, json=[{"name": "web"}])
            return httpx.Response(200, json=[{"number": 1, "title": "x"}])

        api = self._client(handler)
        for call in (api.list_repositories, lambda: api.list_pull_requests("acme", "web")):
            with self.subTest(call=call):
                with self.assertRaises(RemoteAPIError) as ctx:
                    await call()
                self.assertEqual(ctx.exception.code, "invalid_payload")
                self.assertFalse(ctx.exception.retryable)
        await api.aclose()

    async def test_non_json_body_raises_invalid_payload(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        api = self._client(handler)
        with self.assertRaises(RemoteAPIError) as pull_ctx:
            await api.get_pull_request("acme", "web", 1)
        with self.assertRaises(RemoteAPIError) as graph_ctx:
            await api.get_review_threads("acme", "web", 1)
        await api.aclose()

        self.assertEqual(pull_ctx.exception.code, "invalid_payload")
        self.assertIn("GET /repos/acme/web/pulls/1", pull_ctx.exception.message)
        self.assertEqual(graph_ctx.exception.code, "invalid_payload")

    async def test_list_organizations(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"login": "acme", "id": 9, "avatar_url": "https://a.test/acme"}])

        api = self._client(handler)
        orgs = await api.list_organizations()
        await api.aclose()

        self.assertEqual([(org.login, org.avatar_url) for org in orgs], [("acme", "https://a.test/acme")])


if __name__ == "__main__":
    unittest.main()
