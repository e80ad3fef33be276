"""
Database Manager - PostgreSQL-backed resource and secret store.

Holds configuration resources the way a Kubernetes API server would:
namespaced, versioned objects with a spec, a status subresource guarded by
optimistic concurrency, named finalizers and two-phase deletion. Also holds
namespaced opaque secrets.
"""

import asyncpg
import base64
import hashlib
import json
import logging
from typing import Any, Dict, List, Optional

from migrate import run_migrations
from resources import Resource

logger = logging.getLogger(__name__)


class ConflictError(Exception):
    """Raised when a write is based on a stale resource version."""

    def __init__(self, resource: Resource):
        self.resource = resource
        super().__init__(
            f"Conflict updating {resource.key}: resource version "
            f"{resource.resource_version} is stale"
        )


class DatabaseManager:
    """Manages PostgreSQL operations for resources and secrets."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        """Apply database migrations to bring schema up to date."""
        self._ensure_connected()
        await run_migrations(self.pool)
        logger.info("Database schema initialized")

    # ==================== Resource Methods ====================

    async def create_resource(
        self,
        kind: str,
        namespace: str,
        name: str,
        spec: Dict[str, Any],
    ) -> Resource:
        """
        Create a resource and schedule its first reconcile.

        Args:
            kind: Resource kind (e.g. 'SonarrConfig')
            namespace: Namespace the resource lives in
            name: Resource name, unique per kind and namespace
            spec: Desired configuration document
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO resources (
                    kind, namespace, name, spec, spec_hash, next_reconcile_time
                )
                VALUES ($1, $2, $3, $4, $5, NOW())
                RETURNING *
                """,
                kind,
                namespace,
                name,
                json.dumps(spec),
                self._calculate_spec_hash(spec),
            )
            logger.info(f"Created {kind} {namespace}/{name}")
            return self._parse_resource_row(row)

    async def update_spec(
        self, kind: str, namespace: str, name: str, spec: Dict[str, Any]
    ) -> Optional[Resource]:
        """
        Replace a resource's spec.

        The generation only increases when the spec content changes; any
        change schedules an immediate reconcile.

        Returns:
            The updated resource, or None if not found
        """
        spec_hash = self._calculate_spec_hash(spec)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE resources
                SET spec = $4,
                    generation = CASE WHEN spec_hash = $5
                                      THEN generation ELSE generation + 1 END,
                    next_reconcile_time = CASE WHEN spec_hash = $5
                                               THEN next_reconcile_time ELSE NOW() END,
                    spec_hash = $5,
                    resource_version = resource_version + 1,
                    updated_at = NOW()
                WHERE kind = $1 AND namespace = $2 AND name = $3
                RETURNING *
                """,
                kind,
                namespace,
                name,
                json.dumps(spec),
                spec_hash,
            )
            return self._parse_resource_row(row) if row else None

    async def request_deletion(self, kind: str, namespace: str, name: str) -> bool:
        """
        Start two-phase deletion of a resource.

        Sets the deletion timestamp and schedules a reconcile so finalizers
        can run. A resource without finalizers is removed at once.

        Returns:
            True if the resource existed
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE resources
                SET deletion_timestamp = COALESCE(deletion_timestamp, NOW()),
                    next_reconcile_time = NOW(),
                    resource_version = resource_version + 1,
                    updated_at = NOW()
                WHERE kind = $1 AND namespace = $2 AND name = $3
                RETURNING id, finalizers
                """,
                kind,
                namespace,
                name,
            )
        if row is None:
            return False

        logger.info(f"Deletion requested for {kind} {namespace}/{name}")
        finalizers = self._parse_json_list(row["finalizers"])
        if not finalizers:
            await self.hard_delete_resource(row["id"])
        return True

    async def get_resource(
        self, kind: str, namespace: str, name: str
    ) -> Optional[Resource]:
        """Get a resource by kind, namespace and name; None if not found."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM resources
                WHERE kind = $1 AND namespace = $2 AND name = $3
                """,
                kind,
                namespace,
                name,
            )
            return self._parse_resource_row(row) if row else None

    async def list_resources(
        self, kind: str, namespace: Optional[str] = None
    ) -> List[Resource]:
        """List resources of a kind, optionally restricted to a namespace."""
        async with self.pool.acquire() as conn:
            query = "SELECT * FROM resources WHERE kind = $1"
            params: List[Any] = [kind]

            if namespace is not None:
                query += " AND namespace = $2"
                params.append(namespace)

            query += " ORDER BY namespace, name"
            rows = await conn.fetch(query, *params)
            return [self._parse_resource_row(row) for row in rows]

    async def get_resources_needing_reconciliation(
        self, limit: int = 20
    ) -> List[Resource]:
        """
        Get resources whose reconcile is due.

        Resources being deleted come first, then the longest overdue.
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT *
                FROM resources
                WHERE next_reconcile_time IS NOT NULL
                  AND next_reconcile_time <= NOW()
                ORDER BY
                    (deletion_timestamp IS NULL) ASC,
                    next_reconcile_time ASC
                LIMIT $1
                """,
                limit,
            )
            return [self._parse_resource_row(row) for row in rows]

    async def update_status(
        self, resource: Resource, status: Dict[str, Any]
    ) -> Resource:
        """
        Write the status subresource.

        The write only succeeds if the stored resource version still equals
        ``resource.resource_version``.

        Returns:
            The resource with its new status and resource version

        Raises:
            ConflictError: If the resource changed since it was read
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE resources
                SET status = $2,
                    resource_version = resource_version + 1,
                    updated_at = NOW()
                WHERE id = $1 AND resource_version = $3
                RETURNING *
                """,
                resource.id,
                json.dumps(status, default=str),
                resource.resource_version,
            )
        if row is None:
            raise ConflictError(resource)
        return self._parse_resource_row(row)

    async def schedule_reconcile(
        self, resource: Resource, after_seconds: Optional[int]
    ) -> None:
        """
        Set when the resource is next reconciled.

        If the spec or deletion state changed since ``resource`` was read,
        the resource is due immediately instead.

        Args:
            resource: The resource as it was reconciled
            after_seconds: Delay from now; None clears any pending re-check
        """
        delay = float(after_seconds) if after_seconds is not None else None
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE resources
                SET next_reconcile_time = CASE
                        WHEN generation = $3
                             AND (deletion_timestamp IS NOT NULL) = $4
                        THEN NOW() + make_interval(secs => $2)
                        ELSE NOW()
                    END
                WHERE id = $1
                """,
                resource.id,
                delay,
                resource.generation,
                resource.being_deleted,
            )

    async def hard_delete_resource(self, resource_id: int) -> bool:
        """
        Permanently delete a resource.

        Only succeeds once deletion was requested and every finalizer has
        been removed.

        Returns:
            True if the resource was deleted
        """
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                DELETE FROM resources
                WHERE id = $1
                  AND deletion_timestamp IS NOT NULL
                  AND finalizers = '[]'::jsonb
                RETURNING id
                """,
                resource_id,
            )
            if result:
                logger.info(f"Purged resource {resource_id}")
                return True
            return False

    async def add_finalizer(self, resource: Resource, finalizer: str) -> Resource:
        """
        Add a finalizer to a resource. No-op if already present.

        Raises:
            ConflictError: If the resource changed since it was read
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE resources
                SET finalizers = CASE
                        WHEN NOT finalizers @> to_jsonb($2::text)
                        THEN finalizers || to_jsonb($2::text)
                        ELSE finalizers
                    END,
                    resource_version = resource_version + 1,
                    updated_at = NOW()
                WHERE id = $1 AND resource_version = $3
                RETURNING *
                """,
                resource.id,
                finalizer,
                resource.resource_version,
            )
        if row is None:
            raise ConflictError(resource)
        return self._parse_resource_row(row)

    async def remove_finalizer(
        self, resource: Resource, finalizer: str
    ) -> Optional[Resource]:
        """
        Remove a finalizer; purges the resource if it was the last one and
        deletion was requested.

        Returns:
            The updated resource, or None if it was purged

        Raises:
            ConflictError: If the resource changed since it was read
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE resources
                SET finalizers = COALESCE(
                        (SELECT jsonb_agg(elem)
                         FROM jsonb_array_elements(finalizers) AS elem
                         WHERE elem #>> '{}' != $2),
                        '[]'::jsonb
                    ),
                    resource_version = resource_version + 1,
                    updated_at = NOW()
                WHERE id = $1 AND resource_version = $3
                RETURNING *
                """,
                resource.id,
                finalizer,
                resource.resource_version,
            )
        if row is None:
            raise ConflictError(resource)

        updated = self._parse_resource_row(row)
        if updated.being_deleted and not updated.finalizers:
            await self.hard_delete_resource(updated.id)
            return None
        return updated

    # ==================== Secret Methods ====================

    async def put_secret(
        self, namespace: str, name: str, values: Dict[str, str]
    ) -> None:
        """Create or replace a secret; values are stored base64-encoded."""
        data = {
            key: base64.b64encode(value.encode("utf-8")).decode("ascii")
            for key, value in values.items()
        }
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO secrets (namespace, name, data)
                VALUES ($1, $2, $3)
                ON CONFLICT (namespace, name)
                DO UPDATE SET data = EXCLUDED.data, updated_at = NOW()
                """,
                namespace,
                name,
                json.dumps(data),
            )

    async def get_secret(
        self, namespace: str, name: str
    ) -> Optional[Dict[str, str]]:
        """
        Get a secret's data.

        Returns:
            Key to base64-encoded value, or None if the secret does not exist
        """
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                "SELECT data FROM secrets WHERE namespace = $1 AND name = $2",
                namespace,
                name,
            )
        if result is None:
            return None
        return json.loads(result) if isinstance(result, str) else dict(result)

    async def delete_secret(self, namespace: str, name: str) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                DELETE FROM secrets WHERE namespace = $1 AND name = $2
                RETURNING name
                """,
                namespace,
                name,
            )
            return result is not None

    # ==================== Helpers ====================

    @staticmethod
    def _parse_json_list(value: Any) -> List[str]:
        if isinstance(value, str):
            return json.loads(value)
        return list(value or [])

    @staticmethod
    def _parse_json_dict(value: Any) -> Dict[str, Any]:
        if not value:
            return {}
        return json.loads(value) if isinstance(value, str) else dict(value)

    def _parse_resource_row(self, row: asyncpg.Record) -> Resource:
        """
        Convert a resources row into a Resource.

        Args:
            row: An asyncpg.Record from a resources query

        Returns:
            The Resource with its JSON columns parsed
        """
        return Resource(
            id=row["id"],
            kind=row["kind"],
            namespace=row["namespace"],
            name=row["name"],
            generation=row["generation"],
            resource_version=row["resource_version"],
            finalizers=self._parse_json_list(row["finalizers"]),
            deletion_timestamp=row["deletion_timestamp"],
            spec=self._parse_json_dict(row["spec"]),
            status=self._parse_json_dict(row["status"]),
        )

    def _calculate_spec_hash(self, spec: Dict[str, Any]) -> str:
        """Calculate a hash of the resource specification for change detection."""
        spec_string = json.dumps(spec, sort_keys=True)
        return hashlib.sha256(spec_string.encode()).hexdigest()
