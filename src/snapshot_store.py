import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Dict, Optional

from order_models import Classification, RemoteRecord


def _snapshot_path(directory: str, record_code: str) -> str:
    digits = record_code.replace("C#", "", 1)
    return os.path.join(directory, f"{digits}.json")


def save_snapshot(directory: str, record: RemoteRecord, classification: Classification) -> str:
    """分類結果のスナップショットを保存（一時ファイルに書いてからリネーム）"""
    os.makedirs(directory, exist_ok=True)
    path = _snapshot_path(directory, record.code)
    snapshot = {
        "savedAt": datetime.now(timezone.utc).isoformat(),
        "recordId": record.id,
        "recordCode": record.code,
        "classification": classification.to_dict(),
    }

    fd, tmp = tempfile.mkstemp(dir=directory, prefix=f".{os.path.basename(path)}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise

    print(f"💾 スナップショットを {path} に保存しました")
    return path


def load_snapshot(directory: str, record_code: str) -> Optional[Dict]:
    path = _snapshot_path(directory, record_code)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (FileNotFoundError, json.JSONDecodeError):
        return None
