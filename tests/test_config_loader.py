import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from config_loader import DEFAULTS, load_env_settings, load_reconcile_config


def test_missing_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("RECONCILE_CONCURRENCY", raising=False)
    cfg = load_reconcile_config(str(tmp_path / "none.yml"))
    assert cfg == DEFAULTS


def test_yaml_is_merged_over_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("RECONCILE_CONCURRENCY", raising=False)
    path = tmp_path / "reconcile.yml"
    path.write_text("throttle:\n  min_gap_ms: 600\nretry:\n  max_attempts: 3\n", encoding="utf-8")

    cfg = load_reconcile_config(str(path))

    assert cfg["throttle"]["min_gap_ms"] == 600
    assert cfg["retry"] == {"max_attempts": 3, "base_delay_ms": 2000, "max_delay_ms": 10000}
    # DEFAULTS は変更されない
    assert DEFAULTS["retry"]["max_attempts"] == 5


def test_concurrency_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("RECONCILE_CONCURRENCY", "3")
    assert load_reconcile_config(str(tmp_path / "none.yml"))["batch"]["max_workers"] == 3


def test_repository_config_matches_defaults(monkeypatch):
    monkeypatch.delenv("RECONCILE_CONCURRENCY", raising=False)
    assert load_reconcile_config() == DEFAULTS


def test_env_settings_require_shopify(monkeypatch):
    monkeypatch.delenv("SHOPIFY_DOMAIN", raising=False)
    monkeypatch.setenv("SHOPIFY_ADMIN_TOKEN", "shpat_x")

    with pytest.raises(ValueError, match="SHOPIFY_DOMAIN"):
        load_env_settings()


def test_env_settings(monkeypatch):
    monkeypatch.setenv("SHOPIFY_DOMAIN", "store.myshopify.com")
    monkeypatch.setenv("SHOPIFY_ADMIN_TOKEN", "shpat_x")
    monkeypatch.delenv("SHOPIFY_API_VERSION", raising=False)
    monkeypatch.setenv("DRY_RUN", "TRUE")

    settings = load_env_settings()

    assert settings["shopify_api_version"] == "2025-01"
    assert settings["dry_run"] is True
