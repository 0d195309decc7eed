from datetime import datetime
from typing import Dict, List, Optional

from config_loader import load_env_settings, load_reconcile_config
from initial_state import classify_from_fields
from order_models import BatchResult, Classification, RemoteRecord
from reconcile_runner import BatchReconciliationRunner
from shopify_client import ShopifyFieldStore
from shopify_transport import ShopifyTransport


class OrderTaggingCore:
    """Slack側から呼ばれる入口（初期値の復元と一括反映）"""

    def __init__(self, store: ShopifyFieldStore, runner: BatchReconciliationRunner):
        self.store = store
        self.runner = runner

    def find_order(self, code: str) -> RemoteRecord:
        return self.store.find_order_by_code(code)

    def classify_from_existing_fields(self, record_id: int) -> Classification:
        """既存メタフィールドからモーダルの初期値を作る"""
        return classify_from_fields(self.store.list_fields(record_id))

    def reconcile(self, records: List[RemoteRecord], classifications: List[Classification]) -> List[BatchResult]:
        return self.runner.run(records, classifications)


def build_core(settings: Dict, config: Optional[Dict] = None) -> OrderTaggingCore:
    config = config or load_reconcile_config()
    transport = ShopifyTransport.from_config(settings, config)
    store = ShopifyFieldStore(transport)
    runner = BatchReconciliationRunner(
        store,
        max_workers=config["batch"]["max_workers"],
        dry_run=settings.get("dry_run", False),
    )
    return OrderTaggingCore(store, runner)


def main():
    """メイン処理"""

    print("=== Slack注文タグ付けを開始します ===")
    print(f"実行時刻: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    try:
        settings = load_env_settings()
    except ValueError as e:
        print(f"エラー: {e}")
        return

    if settings["dry_run"]:
        print("\n*** DRY_RUNモード: Shopifyへの書き込みは行いません ***\n")

    core = build_core(settings)

    # 起動後の接続確認（失敗しても続行）
    try:
        shop = core.store.ping()
        print(f"✅ [shopify] connectivity ok: {shop.get('name', settings['shopify_domain'])}")
    except Exception as e:
        print(f"⚠️ Post-start Shopify check failed: {e}")

    from slack_interactive_handler import app, configure
    configure(core, settings)
    print(f"[http] listening on :{settings['port']}")
    app.run(host="0.0.0.0", port=settings["port"])


if __name__ == "__main__":
    main()
