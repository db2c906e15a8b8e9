"""Credential lookup and per-call resolution of the remote API client."""
from __future__ import annotations

import logging
from typing import Any, Callable

from reviewsync import config
from reviewsync.errors import AuthError
from reviewsync.github.client import GitHubAPI
from reviewsync.github.fixtures import FixtureGitHubAPI

logger = logging.getLogger("reviewsync.github")


class CredentialProvider:
    """Supplies the current access token, or ``None`` when signed out."""

    def get_token(self) -> str | None:
        raise NotImplementedError


class EnvCredentialProvider(CredentialProvider):
    def get_token(self) -> str | None:
        return config.GITHUB_TOKEN or None


class StaticCredentialProvider(CredentialProvider):
    """Token held in memory; the host updates it after sign-in or sign-out."""

    def __init__(self, token: str | None = None):
        self.token = token

    def get_token(self) -> str | None:
        return self.token

    def set_token(self, token: str | None) -> None:
        self.token = token


class RemoteContext:
    """Resolves the API client for the current credential.

    The offline sentinel token selects a shared ``FixtureGitHubAPI`` so callers
    branch identically in offline mode. Live clients are cached per token.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        *,
        client_factory: Callable[[str], Any] = GitHubAPI,
        offline_token: str = config.OFFLINE_TOKEN,
    ):
        self.credentials = credentials
        self.client_factory = client_factory
        self.offline_token = offline_token
        self._clients: dict[str, Any] = {}
        self._fixture: FixtureGitHubAPI | None = None

    def is_authenticated(self) -> bool:
        return bool(self.credentials.get_token())

    def is_offline(self) -> bool:
        return self.credentials.get_token() == self.offline_token

    def client(self) -> Any:
        token = self.credentials.get_token()
        if not token:
            raise AuthError()
        if token == self.offline_token:
            if self._fixture is None:
                logger.info("Offline token in use; serving fixture data")
                self._fixture = FixtureGitHubAPI()
            return self._fixture
        client = self._clients.get(token)
        if client is None:
            client = self.client_factory(token)
            self._clients[token] = client
        return client

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
