"""Unit tests for secret_resolver.py - Secret resolution pipeline."""

import pytest

from conftest import arr_spec, prowlarr_spec
from kinds import wrap
from resources import KIND_PROWLARR, KIND_SONARR, Resource
from secret_resolver import (
    CONNECTION_API_KEY,
    SecretKeyNotFoundError,
    SecretNotFoundError,
    SecretResolutionError,
    SecretResolver,
    decode_value,
    secret_map_key,
)


def sonarr(spec, name="tv"):
    return wrap(Resource(kind=KIND_SONARR, name=name, spec=spec))


class TestDecodeValue:
    """Tests for decode_value."""

    def test_decodes_base64(self):
        assert decode_value("YWJj") == "abc"

    def test_rejects_invalid_base64(self):
        with pytest.raises(SecretResolutionError):
            decode_value("not base64!")


@pytest.mark.asyncio
class TestResolveFor:
    """Tests for SecretResolver.resolve_for."""

    async def test_connection_key(self, store):
        """Test the connection API key lands under the well-known key."""
        store.put_secret("sonarr-api-key", {"apiKey": "abc"})

        resolved = await SecretResolver(store).resolve_for(sonarr(arr_spec()))

        assert resolved == {CONNECTION_API_KEY: "abc"}

    async def test_custom_key(self, store):
        """Test an explicit key in the selector is honoured."""
        store.put_secret("creds", {"token": "abc"})
        spec = arr_spec(secret=None)
        spec["connection"]["apiKeySecretRef"] = {"name": "creds", "key": "token"}

        resolved = await SecretResolver(store).resolve_for(sonarr(spec))

        assert resolved[CONNECTION_API_KEY] == "abc"

    async def test_no_connection_secret(self, store):
        """Test a connection without a secret resolves to nothing."""
        resolved = await SecretResolver(store).resolve_for(
            sonarr(arr_spec(secret=None))
        )
        assert resolved == {}

    async def test_missing_secret(self, store):
        """Test a missing secret aborts resolution."""
        with pytest.raises(SecretNotFoundError) as exc_info:
            await SecretResolver(store).resolve_for(sonarr(arr_spec()))

        assert "default/sonarr-api-key not found" in str(exc_info.value)

    async def test_missing_key(self, store):
        """Test a secret without the referenced key aborts resolution."""
        store.put_secret("sonarr-api-key", {"other": "abc"})

        with pytest.raises(SecretKeyNotFoundError) as exc_info:
            await SecretResolver(store).resolve_for(sonarr(arr_spec()))

        assert exc_info.value.key == "apiKey"

    async def test_namespace_scoped(self, store):
        """Test secrets are looked up in the resource's namespace only."""
        store.put_secret("sonarr-api-key", {"apiKey": "abc"}, namespace="other")

        with pytest.raises(SecretNotFoundError):
            await SecretResolver(store).resolve_for(sonarr(arr_spec()))

    async def test_download_client_credentials(self, store):
        """Test both halves of a credentials reference are resolved."""
        store.put_secret("sonarr-api-key", {"apiKey": "abc"})
        store.put_secret("qbit", {"username": "admin", "password": "hunter2"})
        spec = arr_spec(
            downloadClients=[
                {
                    "name": "qbit",
                    "url": "qbittorrent://qbit:8080",
                    "credentialsSecretRef": {"name": "qbit"},
                }
            ]
        )

        resolved = await SecretResolver(store).resolve_for(sonarr(spec))

        assert resolved[secret_map_key("qbit", "username")] == "admin"
        assert resolved[secret_map_key("qbit", "password")] == "hunter2"

    async def test_import_list_secret_spreads_every_key(self, store):
        """Test every key of an import list secret is resolved."""
        store.put_secret("sonarr-api-key", {"apiKey": "abc"})
        store.put_secret("trakt", {"accessToken": "t", "refreshToken": "r"})
        spec = arr_spec(
            importLists=[
                {
                    "name": "trakt",
                    "type": "TraktUserImport",
                    "settingsSecretRef": {"name": "trakt"},
                }
            ]
        )

        resolved = await SecretResolver(store).resolve_for(sonarr(spec))

        assert resolved["trakt/accessToken"] == "t"
        assert resolved["trakt/refreshToken"] == "r"

    async def test_all_or_nothing(self, store):
        """Test one bad reference fails the whole pass."""
        store.put_secret("sonarr-api-key", {"apiKey": "abc"})
        spec = arr_spec(authentication={"passwordSecretRef": {"name": "ui-auth"}})

        with pytest.raises(SecretNotFoundError, match="authentication password"):
            await SecretResolver(store).resolve_for(sonarr(spec))

    async def test_prowlarr_application_keys(self, store):
        """Test push-model application keys are resolved for the aggregator."""
        store.put_secret("prowlarr-api-key", {"apiKey": "xyz"})
        store.put_secret("sonarr-key", {"apiKey": "abc"})
        spec = prowlarr_spec(
            applications=[
                {
                    "name": "tv",
                    "type": "sonarr",
                    "url": "http://sonarr:8989",
                    "apiKeySecretRef": {"name": "sonarr-key"},
                }
            ]
        )
        config = wrap(Resource(kind=KIND_PROWLARR, name="prowlarr", spec=spec))

        resolved = await SecretResolver(store).resolve_for(config)

        assert resolved[CONNECTION_API_KEY] == "xyz"
        assert resolved["sonarr-key/apiKey"] == "abc"


@pytest.mark.asyncio
class TestRegistrationApiKey:
    """Tests for SecretResolver.resolve_registration_api_key."""

    async def test_prefers_connection_secret(self, store):
        store.put_secret("own-key", {"apiKey": "own"})
        store.put_secret("sonarr-api-key", {"apiKey": "by-type"})

        key = await SecretResolver(store).resolve_registration_api_key(
            sonarr(arr_spec(secret="own-key"))
        )

        assert key == "own"

    async def test_falls_back_to_type_convention(self, store):
        store.put_secret("sonarr-api-key", {"apiKey": "by-type"})
        store.put_secret("tv-api-key", {"apiKey": "by-name"})

        key = await SecretResolver(store).resolve_registration_api_key(
            sonarr(arr_spec(secret="missing"))
        )

        assert key == "by-type"

    async def test_falls_back_to_name_convention(self, store):
        store.put_secret("tv-api-key", {"apiKey": "by-name"})

        key = await SecretResolver(store).resolve_registration_api_key(
            sonarr(arr_spec(secret=None))
        )

        assert key == "by-name"

    async def test_empty_values_are_skipped(self, store):
        store.put_secret("sonarr-api-key", {"apiKey": ""})
        store.put_secret("tv-api-key", {"apiKey": "by-name"})

        key = await SecretResolver(store).resolve_registration_api_key(
            sonarr(arr_spec(secret=None))
        )

        assert key == "by-name"

    async def test_nothing_resolves(self, store):
        with pytest.raises(SecretResolutionError, match="sonarr/tv"):
            await SecretResolver(store).resolve_registration_api_key(
                sonarr(arr_spec(secret=None))
            )
