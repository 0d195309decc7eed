import os
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv

load_dotenv()


DEFAULTS = {
    "throttle": {"min_gap_ms": 400},
    "retry": {"max_attempts": 5, "base_delay_ms": 2000, "max_delay_ms": 10000},
    "http": {"timeout_seconds": 30},
    "batch": {"max_workers": 1},
}

REQUIRED_ENV = ["SHOPIFY_DOMAIN", "SHOPIFY_ADMIN_TOKEN"]


def _default_path() -> str:
    return os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "reconcile.yml")


def load_reconcile_config(path: Optional[str] = None) -> dict:
    path = path or _default_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        cfg = {}

    # shallow merge defaults
    merged = {k: dict(v) for k, v in DEFAULTS.items()}
    for k, v in cfg.items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            merged[k].update(v)
        else:
            merged[k] = v

    # 並列数は環境変数で上書き可能
    concurrency = os.getenv("RECONCILE_CONCURRENCY")
    if concurrency:
        merged["batch"]["max_workers"] = max(1, int(concurrency))
    return merged


def load_env_settings() -> Dict[str, str]:
    """環境変数から接続設定を読み込む（必須が欠けていれば ValueError）"""
    missing = [name for name in REQUIRED_ENV if not os.getenv(name)]
    if missing:
        raise ValueError(f"必須の環境変数が設定されていません: {', '.join(missing)}")

    return {
        "shopify_domain": os.getenv("SHOPIFY_DOMAIN"),
        "shopify_admin_token": os.getenv("SHOPIFY_ADMIN_TOKEN"),
        "shopify_api_version": os.getenv("SHOPIFY_API_VERSION", "2025-01"),
        "slack_bot_token": os.getenv("SLACK_BOT_TOKEN", ""),
        "watch_channel_id": os.getenv("WATCH_CHANNEL_ID", ""),
        "flowbot_user_id": os.getenv("FLOWBOT_USER_ID", ""),
        "snapshot_dir": os.getenv("ORDER_SNAPSHOT_DIR", os.path.join("data", "orders")),
        "dry_run": os.getenv("DRY_RUN", "false").lower() == "true",
        "port": int(os.getenv("PORT", "3000")),
    }
