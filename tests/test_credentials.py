"""Tests for credential providers."""

import httpx

from voice_shortcut.credentials import (
    ApiKey,
    BearerToken,
    EnvCredentialProvider,
    StaticCredentialProvider,
)


class TestCredentials:
    """Tests for credential values."""

    def test_api_key_apply(self):
        """Test an API key is added as a query parameter."""
        request = httpx.Request("POST", "https://example.com/v1/models?alt=json")
        ApiKey("secret").apply(request)
        assert request.url.params["key"] == "secret"
        assert request.url.params["alt"] == "json"

    def test_bearer_apply(self):
        """Test a bearer token sets the Authorization header."""
        request = httpx.Request("POST", "https://example.com/")
        BearerToken("tok").apply(request)
        assert request.headers["Authorization"] == "Bearer tok"

    def test_repr_masks_secret(self):
        """Test secrets never appear in repr."""
        assert "secret" not in repr(ApiKey("secret"))
        assert "tok" not in repr(BearerToken("tok"))


class TestProviders:
    """Tests for credential providers."""

    def test_static_provider(self):
        """Test the static provider returns its credential."""
        assert StaticCredentialProvider(ApiKey("k")).get_credential() == ApiKey("k")
        assert StaticCredentialProvider(None).get_credential() is None

    def test_env_precedence(self):
        """Test configured key, then GEMINI_API_KEY, then GOOGLE_API_KEY."""
        env = {"GEMINI_API_KEY": "gemini", "GOOGLE_API_KEY": "google"}
        assert EnvCredentialProvider(env, api_key="cfg").get_credential() == ApiKey("cfg")
        assert EnvCredentialProvider(env).get_credential() == ApiKey("gemini")
        assert EnvCredentialProvider({"GOOGLE_API_KEY": "google"}).get_credential() == ApiKey("google")

    def test_env_bearer_token_fallback(self):
        """Test a bearer token is used only without an API key."""
        provider = EnvCredentialProvider({"GEMINI_BEARER_TOKEN": "tok"})
        assert provider.get_credential() == BearerToken("tok")

    def test_env_nothing_configured(self):
        """Test no credential yields None."""
        assert EnvCredentialProvider({}).get_credential() is None

    def test_env_read_on_every_call(self):
        """Test changes to the environment are picked up."""
        env = {}
        provider = EnvCredentialProvider(env)
        assert provider.get_credential() is None
        env["GEMINI_API_KEY"] = "later"
        assert provider.get_credential() == ApiKey("later")
