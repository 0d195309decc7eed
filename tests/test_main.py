import sys
import os
import unittest
from unittest.mock import MagicMock

# srcディレクトリをパスに追加
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from main import OrderTaggingCore, build_core
from order_models import BatchResult, Classification, RemoteRecord
from reconcile_runner import BatchReconciliationRunner
from shopify_client import ShopifyFieldStore
from config_loader import DEFAULTS


class TestOrderTaggingCore(unittest.TestCase):
    def setUp(self):
        self.store = MagicMock(spec=ShopifyFieldStore)
        self.runner = MagicMock(spec=BatchReconciliationRunner)
        self.core = OrderTaggingCore(self.store, self.runner)

    def test_classify_from_existing_fields(self):
        self.store.list_fields.return_value = {
            "custom.initial_slack_tagging_done": "yes",
            "custom.parts_paddles": "Paddles",
            "custom.ship_install_pickup": "TBD",
            "custom.pif_or_not": "Deposit",
        }

        result = self.core.classify_from_existing_fields(42)

        self.store.list_fields.assert_called_once_with(42)
        self.assertEqual(result, Classification(parts=frozenset({"paddles"}), fulfillment="tbd", payment="deposit"))

    def test_classify_without_marker_uses_default(self):
        self.store.list_fields.return_value = {}
        result = self.core.classify_from_existing_fields(42)
        self.assertEqual(result.parts, frozenset({"steering_wheel"}))

    def test_reconcile_delegates_to_runner(self):
        records = [RemoteRecord("C#1234", id=1)]
        classifications = [Classification()]
        self.runner.run.return_value = [BatchResult(True, "C#1234", 1)]

        results = self.core.reconcile(records, classifications)

        self.runner.run.assert_called_once_with(records, classifications)
        self.assertTrue(results[0].ok)

    def test_build_core_wires_config(self):
        settings = {
            "shopify_domain": "store.myshopify.com",
            "shopify_admin_token": "shpat_x",
            "shopify_api_version": "2025-01",
            "dry_run": True,
        }
        config = {k: dict(v) for k, v in DEFAULTS.items()}
        config["batch"]["max_workers"] = 2

        core = build_core(settings, config)

        self.assertEqual(core.runner.max_workers, 2)
        self.assertTrue(core.runner.dry_run)
        self.assertIs(core.runner.store, core.store)
        self.assertEqual(core.store.transport.gate.min_gap, 0.4)


if __name__ == "__main__":
    unittest.main()
