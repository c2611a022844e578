"""Tests for the per-tenant task store registry."""

import pytest
from unittest.mock import patch

from chorewheel.adapters.store_factory import StoreRegistry
from chorewheel.data.db import TaskDB


def _registry(tmp_path, max_open=4):
    return StoreRegistry(tmp_path, "database-{tenant}.sqlite", max_open)


class TestStoreRegistry:
    def test_get_opens_tenant_file(self, tmp_path):
        registry = _registry(tmp_path)
        store = registry.get("home")
        assert isinstance(store, TaskDB)
        assert store.path == str(tmp_path / "database-home.sqlite")
        assert (tmp_path / "database-home.sqlite").exists()

    def test_get_returns_cached_store(self, tmp_path):
        registry = _registry(tmp_path)
        assert registry.get("home") is registry.get("home")

    def test_tenants_get_separate_stores(self, tmp_path):
        registry = _registry(tmp_path)
        assert registry.get("home") is not registry.get("cabin")

    def test_least_recently_used_evicted(self, tmp_path):
        registry = _registry(tmp_path, max_open=2)
        registry.get("a")
        registry.get("b")
        registry.get("a")
        registry.get("c")
        assert registry.open_tenants() == ["a", "c"]

    def test_evicted_store_reopens_with_data(self, tmp_path):
        registry = _registry(tmp_path, max_open=1)
        registry.get("a").add_user("alice", 100, "2026-03-01T00:00:00")
        registry.get("b")
        assert registry.open_tenants() == ["b"]
        assert [u.name for u in registry.get("a").list_active_users()] == ["alice"]

    def test_evict_and_close(self, tmp_path):
        registry = _registry(tmp_path)
        registry.get("a")
        registry.get("b")
        assert registry.evict("a") is True
        assert registry.evict("a") is False
        registry.close()
        assert registry.open_tenants() == []

    def test_lock_is_per_tenant(self, tmp_path):
        registry = _registry(tmp_path)
        assert registry.lock("a") is registry.lock("a")
        assert registry.lock("a") is not registry.lock("b")

    @pytest.mark.parametrize("tenant", ["", "../etc", "a b", "home/x", "tenant.sqlite"])
    def test_invalid_tenant_names(self, tmp_path, tenant):
        registry = _registry(tmp_path)
        with pytest.raises(ValueError, match="Invalid tenant"):
            registry.get(tenant)

    def test_pattern_must_contain_tenant(self, tmp_path):
        with pytest.raises(ValueError, match="must contain"):
            StoreRegistry(tmp_path, "database.sqlite", 4)

    def test_discover_tenants(self, tmp_path):
        registry = _registry(tmp_path)
        registry.get("home")
        registry.get("cabin_2")
        (tmp_path / "notes.txt").write_text("x")
        assert registry.discover_tenants() == ["cabin_2", "home"]

    def test_discover_missing_dir(self, tmp_path):
        registry = StoreRegistry(tmp_path / "missing", "database-{tenant}.sqlite", 4)
        assert registry.discover_tenants() == []


class TestStoreRegistryDefaults:
    @patch("chorewheel.config.settings")
    def test_uses_settings(self, mock_settings, tmp_path):
        mock_settings.DATABASE_DIR = str(tmp_path)
        mock_settings.DATABASE_FILE_PATTERN = "household-{tenant}.db"
        mock_settings.MAX_OPEN_STORES = 3
        registry = StoreRegistry()
        assert registry.path_for("home") == tmp_path / "household-home.db"
