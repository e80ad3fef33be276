"""
Secret resolution pipeline.

Resolves every secret a configuration resource references into one flat
string map for the compiler. The connection API key is stored under
``apiKey``; every other value under ``<secret name>/<key>``. Resolution is
all-or-nothing: the first failure aborts the whole pass.
"""

import base64
import binascii
import logging
from typing import Dict, Optional, Protocol

from kinds import ConfigObject
from resources import ConnectionSpec, CredentialsSecretRef, SecretKeySelector

logger = logging.getLogger(__name__)

DEFAULT_API_KEY_KEY = "apiKey"
DEFAULT_USERNAME_KEY = "username"
DEFAULT_PASSWORD_KEY = "password"

CONNECTION_API_KEY = "apiKey"


class SecretStore(Protocol):
    async def get_secret(
        self, namespace: str, name: str
    ) -> Optional[Dict[str, str]]: ...


class SecretResolutionError(Exception):
    """Base class for secret resolution failures."""


class SecretNotFoundError(SecretResolutionError):
    def __init__(self, namespace: str, name: str, purpose: str = ""):
        self.namespace = namespace
        self.name = name
        prefix = f"{purpose}: " if purpose else ""
        super().__init__(f"{prefix}secret {namespace}/{name} not found")


class SecretKeyNotFoundError(SecretResolutionError):
    def __init__(self, namespace: str, name: str, key: str, purpose: str = ""):
        self.namespace = namespace
        self.name = name
        self.key = key
        prefix = f"{purpose}: " if purpose else ""
        super().__init__(f'{prefix}key "{key}" not found in secret {namespace}/{name}')


def secret_map_key(name: str, key: str) -> str:
    """Key under which a non-connection secret value is stored."""
    return f"{name}/{key}"


def decode_value(raw: str) -> str:
    """Decode a base64 secret value as stored in the secret store."""
    try:
        return base64.b64decode(raw, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise SecretResolutionError(f"secret value is not valid base64: {e}") from e


class SecretResolver:
    """
    Resolves secret references against a namespaced secret store.

    A resolver instance caches fetched secrets, so create one per pass;
    values must not outlive the pass that read them.
    """

    def __init__(self, store: SecretStore):
        self.store = store
        self._cache: Dict[str, Dict[str, str]] = {}

    async def _fetch(self, namespace: str, name: str, purpose: str) -> Dict[str, str]:
        cache_key = f"{namespace}/{name}"
        if cache_key not in self._cache:
            data = await self.store.get_secret(namespace, name)
            if data is None:
                raise SecretNotFoundError(namespace, name, purpose)
            self._cache[cache_key] = data
        return self._cache[cache_key]

    async def resolve_value(
        self, namespace: str, name: str, key: str, purpose: str = ""
    ) -> str:
        """
        Return the decoded value of one key.

        Raises:
            SecretNotFoundError: If the secret does not exist
            SecretKeyNotFoundError: If the key is absent from the secret
        """
        data = await self._fetch(namespace, name, purpose)
        if key not in data:
            raise SecretKeyNotFoundError(namespace, name, key, purpose)
        return decode_value(data[key])

    async def resolve_all(
        self, namespace: str, name: str, purpose: str = ""
    ) -> Dict[str, str]:
        """Return every key of a secret, decoded."""
        data = await self._fetch(namespace, name, purpose)
        return {key: decode_value(value) for key, value in data.items()}

    async def resolve_connection(
        self, namespace: str, connection: ConnectionSpec
    ) -> Dict[str, str]:
        """Resolve the connection API key into a fresh map."""
        resolved: Dict[str, str] = {}
        ref = connection.api_key_secret_ref
        if ref is not None:
            resolved[CONNECTION_API_KEY] = await self.resolve_value(
                namespace,
                ref.name,
                ref.key or DEFAULT_API_KEY_KEY,
                "failed to resolve API key secret",
            )
        return resolved

    async def _resolve_selector(
        self,
        namespace: str,
        ref: Optional[SecretKeySelector],
        default_key: str,
        purpose: str,
        resolved: Dict[str, str],
    ) -> None:
        if ref is None:
            return
        key = ref.key or default_key
        resolved[secret_map_key(ref.name, key)] = await self.resolve_value(
            namespace, ref.name, key, purpose
        )

    async def _resolve_credentials(
        self,
        namespace: str,
        ref: Optional[CredentialsSecretRef],
        purpose: str,
        resolved: Dict[str, str],
    ) -> None:
        if ref is None:
            return
        for key in (
            ref.username_key or DEFAULT_USERNAME_KEY,
            ref.password_key or DEFAULT_PASSWORD_KEY,
        ):
            resolved[secret_map_key(ref.name, key)] = await self.resolve_value(
                namespace, ref.name, key, purpose
            )

    async def resolve_for(self, config: ConfigObject) -> Dict[str, str]:
        """
        Resolve every secret the configuration references.

        Args:
            config: The wrapped configuration resource

        Returns:
            Flat map of resolved values

        Raises:
            SecretResolutionError: On the first reference that cannot be
                resolved; no partial map is returned
        """
        namespace = config.namespace
        resolved = await self.resolve_connection(namespace, config.connection)

        for client in config.download_clients:
            await self._resolve_credentials(
                namespace,
                client.credentials_secret_ref,
                "failed to resolve download client credentials",
                resolved,
            )

        if config.indexers is not None:
            for indexer in config.indexers.direct:
                await self._resolve_selector(
                    namespace,
                    indexer.api_key_secret_ref,
                    DEFAULT_API_KEY_KEY,
                    "failed to resolve indexer API key",
                    resolved,
                )

        for indexer in config.prowlarr_indexers:
            await self._resolve_selector(
                namespace,
                indexer.api_key_secret_ref,
                DEFAULT_API_KEY_KEY,
                "failed to resolve Prowlarr indexer API key",
                resolved,
            )

        for proxy in config.prowlarr_proxies:
            await self._resolve_credentials(
                namespace,
                proxy.credentials_secret_ref,
                "failed to resolve proxy credentials",
                resolved,
            )

        for app in config.prowlarr_applications:
            await self._resolve_selector(
                namespace,
                app.api_key_secret_ref,
                DEFAULT_API_KEY_KEY,
                "failed to resolve application API key",
                resolved,
            )

        for import_list in config.import_lists:
            ref = import_list.settings_secret_ref
            if ref is None:
                continue
            values = await self.resolve_all(
                namespace, ref.name, "failed to get import list secret"
            )
            for key, value in values.items():
                resolved[secret_map_key(ref.name, key)] = value

        auth = config.authentication
        if auth is not None:
            await self._resolve_selector(
                namespace,
                auth.password_secret_ref,
                DEFAULT_PASSWORD_KEY,
                "failed to resolve authentication password",
                resolved,
            )

        logger.debug(
            f"Resolved {len(resolved)} secret value(s) for "
            f"{config.kind} {namespace}/{config.name}"
        )
        return resolved

    async def resolve_registration_api_key(self, config: ConfigObject) -> str:
        """
        Find the API key a downstream service is registered with.

        Prefers the resource's own connection secret, then the
        ``<service type>-api-key`` and ``<resource name>-api-key``
        convention secrets (key ``apiKey``).

        Raises:
            SecretResolutionError: If no candidate yields a non-empty key
        """
        namespace = config.namespace
        errors = []

        ref = config.connection.api_key_secret_ref
        if ref is not None:
            try:
                value = await self.resolve_value(
                    namespace, ref.name, ref.key or DEFAULT_API_KEY_KEY
                )
                if value:
                    return value
            except SecretResolutionError as e:
                errors.append(str(e))

        for secret_name in (f"{config.app_type}-api-key", f"{config.name}-api-key"):
            try:
                value = await self.resolve_value(
                    namespace, secret_name, DEFAULT_API_KEY_KEY
                )
            except SecretResolutionError as e:
                errors.append(str(e))
                continue
            if value:
                logger.info(
                    f"Using convention secret {secret_name} for "
                    f"{config.kind} {namespace}/{config.name}"
                )
                return value

        detail = "; ".join(errors) if errors else "all candidates were empty"
        raise SecretResolutionError(
            f"could not resolve API key for {config.app_type}/{config.name}: {detail}"
        )
