"""Credential types and providers.

Secure storage lives outside this package; the pipeline only needs something
that can hand it an API key or a bearer token right before a request.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiKey:
    """Google API key, sent as the ``key`` query parameter."""

    value: str

    def apply(self, request: httpx.Request) -> httpx.Request:
        request.url = request.url.copy_merge_params({"key": self.value})
        return request

    def __repr__(self) -> str:
        return "ApiKey(***)"


@dataclass(frozen=True)
class BearerToken:
    """OAuth access token, sent in the Authorization header."""

    value: str

    def apply(self, request: httpx.Request) -> httpx.Request:
        request.headers["Authorization"] = f"Bearer {self.value}"
        return request

    def __repr__(self) -> str:
        return "BearerToken(***)"


Credential = ApiKey | BearerToken


class CredentialProvider(Protocol):
    """Anything that can return the current credential, or None."""

    def get_credential(self) -> Credential | None:
        ...


class StaticCredentialProvider:
    """Provider returning a fixed credential (tests, CLI flags)."""

    def __init__(self, credential: Credential | None):
        self._credential = credential

    def get_credential(self) -> Credential | None:
        return self._credential


class EnvCredentialProvider:
    """Reads credentials from environment variables on every call.

    ``GEMINI_API_KEY`` wins over ``GOOGLE_API_KEY``; ``GEMINI_BEARER_TOKEN`` is
    used only when no API key is set.
    """

    API_KEY_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY")
    TOKEN_VAR = "GEMINI_BEARER_TOKEN"

    def __init__(
        self,
        env: Mapping[str, str] | None = None,
        *,
        api_key: str | None = None,
        bearer_token: str | None = None,
    ):
        """Initialize provider.

        Args:
            env: Environment mapping (defaults to os.environ)
            api_key: Configured key that takes precedence over the environment
            bearer_token: Configured token used when no key is available
        """
        self._env = env if env is not None else os.environ
        self._api_key = api_key
        self._bearer_token = bearer_token

    def get_credential(self) -> Credential | None:
        if self._api_key:
            return ApiKey(self._api_key)
        for var in self.API_KEY_VARS:
            if value := self._env.get(var):
                return ApiKey(value)
        token = self._bearer_token or self._env.get(self.TOKEN_VAR)
        if token:
            return BearerToken(token)
        logger.debug("No credential found in configuration or environment")
        return None
