"""
Prowlarr application registration client.

Thin aiohttp client over Prowlarr's ``/api/v1/applications`` endpoints.
Registration is idempotent: an application is looked up by name and
updated in place when it already exists.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from ir import DEFAULT_SYNC_CATEGORIES, SYNC_LEVEL_FULL_SYNC
from kinds import ConfigObject
from secret_resolver import CONNECTION_API_KEY, SecretResolver

logger = logging.getLogger(__name__)

APPLICATIONS_PATH = "/api/v1/applications"
API_KEY_HEADER = "X-Api-Key"

IMPLEMENTATIONS = {
    "sonarr": "Sonarr",
    "radarr": "Radarr",
    "lidarr": "Lidarr",
    "readarr": "Readarr",
}


class RegistrationError(Exception):
    """Raised when the aggregator rejects or cannot serve a request."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


def pull_registration_name(prefix: str, name: str, app_type: str) -> str:
    """Name a downstream resource is auto-registered under."""
    return f"{prefix}-pull-{name}-{app_type}"


@dataclass
class AppRegistration:
    """One downstream service as the aggregator should know it."""

    name: str
    app_type: str
    base_url: str
    api_key: str
    prowlarr_url: str
    sync_categories: List[int] = field(default_factory=list)
    sync_level: str = SYNC_LEVEL_FULL_SYNC

    @property
    def implementation(self) -> str:
        try:
            return IMPLEMENTATIONS[self.app_type]
        except KeyError:
            raise RegistrationError(
                f"unsupported application type: {self.app_type}"
            ) from None

    def to_payload(self, application_id: Optional[int] = None) -> Dict[str, Any]:
        implementation = self.implementation
        categories = self.sync_categories or DEFAULT_SYNC_CATEGORIES.get(
            self.app_type, []
        )
        payload: Dict[str, Any] = {
            "name": self.name,
            "implementation": implementation,
            "configContract": f"{implementation}Settings",
            "syncLevel": self.sync_level or SYNC_LEVEL_FULL_SYNC,
            "fields": [
                {"name": "baseUrl", "value": self.base_url},
                {"name": "apiKey", "value": self.api_key},
                {"name": "prowlarrUrl", "value": self.prowlarr_url},
                {"name": "syncCategories", "value": list(categories)},
            ],
        }
        if application_id is not None:
            payload["id"] = application_id
        return payload


class ProwlarrClient:
    """
    Client for one Prowlarr instance.

    Every call opens its own session bounded by ``timeout`` seconds.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: int = 30,
        insecure_skip_verify: bool = False,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.insecure_skip_verify = insecure_skip_verify

    def _headers(self) -> Dict[str, str]:
        return {
            API_KEY_HEADER: self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Send one request and decode the JSON response.

        Raises:
            RegistrationError: On a non-2xx response or a transport failure
        """
        url = f"{self.base_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method,
                    url,
                    headers=self._headers(),
                    json=payload,
                    ssl=not self.insecure_skip_verify,
                ) as response:
                    body = await response.text()
                    if response.status < 200 or response.status >= 300:
                        raise RegistrationError(
                            f"unexpected status {response.status}: {body}",
                            status=response.status,
                        )
        except aiohttp.ClientError as e:
            raise RegistrationError(f"{method} {url} failed: {e}") from e

        if not body:
            return None
        return json.loads(body)

    async def list_applications(self) -> List[Dict[str, Any]]:
        """Return every application registered with the aggregator."""
        result = await self._request("GET", APPLICATIONS_PATH)
        return result or []

    async def find_application(self, name: str) -> Optional[Dict[str, Any]]:
        """Look up an application by its registered name."""
        for app in await self.list_applications():
            if app.get("name") == name:
                return app
        return None

    async def register(self, registration: AppRegistration) -> int:
        """
        Create or update an application registration.

        Returns:
            The aggregator's numeric application id

        Raises:
            RegistrationError: If the aggregator rejects the request
        """
        existing = await self.find_application(registration.name)
        if existing is not None:
            app_id = existing["id"]
            result = await self._request(
                "PUT",
                f"{APPLICATIONS_PATH}/{app_id}",
                registration.to_payload(application_id=app_id),
            )
            logger.info(f"Updated Prowlarr application {registration.name} ({app_id})")
        else:
            result = await self._request(
                "POST", APPLICATIONS_PATH, registration.to_payload()
            )
            logger.info(f"Created Prowlarr application {registration.name}")

        if isinstance(result, dict) and "id" in result:
            return int(result["id"])
        if existing is not None:
            return int(existing["id"])
        raise RegistrationError(
            f"aggregator did not return an id for {registration.name}"
        )

    async def unregister(self, name: str) -> bool:
        """
        Delete an application registration by name.

        Returns:
            True if a registration was deleted, False if none existed
        """
        existing = await self.find_application(name)
        if existing is None:
            logger.debug(f"Prowlarr application {name} not registered")
            return False
        await self._request("DELETE", f"{APPLICATIONS_PATH}/{existing['id']}")
        logger.info(f"Removed Prowlarr application {name}")
        return True


ClientFactory = Callable[..., ProwlarrClient]


async def client_for(
    aggregator: ConfigObject,
    resolver: SecretResolver,
    timeout: int = 30,
    factory: ClientFactory = ProwlarrClient,
) -> ProwlarrClient:
    """
    Build a client for an aggregator resource using its own connection.

    Raises:
        SecretResolutionError: If the aggregator's API key cannot be resolved
        RegistrationError: If the aggregator has no API key configured
    """
    secrets = await resolver.resolve_connection(
        aggregator.namespace, aggregator.connection
    )
    api_key = secrets.get(CONNECTION_API_KEY)
    if not api_key:
        raise RegistrationError(
            f"Prowlarr {aggregator.namespace}/{aggregator.name} "
            "has no API key configured"
        )
    return factory(
        aggregator.connection.url,
        api_key,
        timeout=aggregator.connection.timeout or timeout,
        insecure_skip_verify=aggregator.connection.insecure_skip_verify,
    )
