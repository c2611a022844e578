"""Task store factory — one SQLite store per household (tenant).

Stores are opened on first use, cached, and evicted least-recently-used once
more than ``max_open`` tenants are held. Each tenant also gets a lock so
allocation runs for the same household never overlap.
"""

from __future__ import annotations

import logging
import re
import threading
from collections import OrderedDict
from pathlib import Path

from chorewheel.data.db import TaskDB

logger = logging.getLogger(__name__)

_TENANT_RE = re.compile(r"^[A-Za-z0-9_]+$")


class StoreRegistry:
    """Hands out the task store and run lock of a tenant."""

    def __init__(
        self,
        database_dir: str | Path | None = None,
        file_pattern: str | None = None,
        max_open: int | None = None,
    ) -> None:
        if database_dir is None or file_pattern is None or max_open is None:
            from chorewheel.config import settings
            database_dir = database_dir if database_dir is not None else settings.DATABASE_DIR
            file_pattern = file_pattern or settings.DATABASE_FILE_PATTERN
            max_open = max_open if max_open is not None else settings.MAX_OPEN_STORES

        if "{tenant}" not in file_pattern:
            raise ValueError(f"File pattern must contain '{{tenant}}': {file_pattern!r}")

        self._dir = Path(database_dir)
        self._pattern = file_pattern
        self._max_open = max(1, max_open)
        self._stores: OrderedDict[str, TaskDB] = OrderedDict()
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @staticmethod
    def validate_tenant(tenant: str) -> str:
        if not tenant or not _TENANT_RE.match(tenant):
            raise ValueError(
                f"Invalid tenant name {tenant!r}: use letters, digits and underscores"
            )
        return tenant

    def path_for(self, tenant: str) -> Path:
        self.validate_tenant(tenant)
        return self._dir / self._pattern.format(tenant=tenant)

    def get(self, tenant: str) -> TaskDB:
        """Return the tenant's store, opening it if needed."""
        path = self.path_for(tenant)
        with self._guard:
            store = self._stores.get(tenant)
            if store is not None:
                self._stores.move_to_end(tenant)
                return store

            store = TaskDB(db_path=path)
            self._stores[tenant] = store
            logger.info("Opened task store for tenant '%s' at %s", tenant, path)

            while len(self._stores) > self._max_open:
                evicted, _ = self._stores.popitem(last=False)
                logger.info("Evicted task store for tenant '%s'", evicted)
        return store

    def lock(self, tenant: str) -> threading.Lock:
        """Return the run lock of a tenant; use it as ``with registry.lock(t):``."""
        self.validate_tenant(tenant)
        with self._guard:
            return self._locks.setdefault(tenant, threading.Lock())

    def evict(self, tenant: str) -> bool:
        with self._guard:
            removed = self._stores.pop(tenant, None) is not None
        if removed:
            logger.info("Evicted task store for tenant '%s'", tenant)
        return removed

    def close(self) -> None:
        """Drop every cached store."""
        with self._guard:
            count = len(self._stores)
            self._stores.clear()
        logger.info("Closed %d task stores", count)

    def open_tenants(self) -> list[str]:
        with self._guard:
            return list(self._stores)

    def discover_tenants(self) -> list[str]:
        """Tenants that already have a database file on disk."""
        if not self._dir.is_dir():
            return []
        prefix, suffix = self._pattern.split("{tenant}", 1)
        tenants = []
        for path in sorted(self._dir.glob(f"{prefix}*{suffix}")):
            name = path.name
            tenant = name[len(prefix):len(name) - len(suffix)] if suffix else name[len(prefix):]
            if _TENANT_RE.match(tenant):
                tenants.append(tenant)
        return tenants
