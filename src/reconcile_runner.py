"""
分類結果を Shopify 注文へ一括反映する

- 1注文内の操作はコンパイラが出した順に1つずつ実行する
  （一覧取得→更新の upsert やメモの読み書きが同一注文内で競合しないため）
- 注文間の並列数は既定1。増やすと共有レート制限でリトライが増える
- 1注文の失敗は BatchResult に記録し、残りの注文は続行する
"""

import itertools
import threading
from datetime import date
from typing import Callable, Dict, List, Optional

from field_compiler import NAMESPACE, compile_classification, ensure_valid
from order_models import BatchResult, Classification, InvoiceContext, ReconciliationOp, RemoteRecord, SINGLE_LINE

ARRANGED_KEY = "parts_arranged"
ARRANGED_TAG = "Parts Arranged"

INCOMING_KEY = "parts_incoming"
INCOMING_VALUE = "Yes"
INCOMING_LOG_KEY = "incoming_invoice_log"
INCOMING_LOG_SEPARATOR = "; "
INCOMING_TAG = "Parts Incoming"

NOTE_HEADER_TEMPLATE = "[{date}] Parts incoming from {supplier} (invoice {invoice})"
NOTE_SEPARATOR = "-" * 24


def incoming_marker_keys(fields: Dict[str, str]) -> List[str]:
    """入荷マーカーを書き込むキー一覧

    旧バージョンで作られた "parts_incoming" を含むキー（parts_incoming_status 等）
    にも同じ値を書き込む。正規キーは常に先頭。
    """
    keys = [INCOMING_KEY]
    prefix = f"{NAMESPACE}."
    for field_key in fields:
        if not field_key.startswith(prefix):
            continue
        key = field_key[len(prefix):]
        if INCOMING_KEY in key.lower() and key not in keys:
            keys.append(key)
    return keys


def narrow_arrangement(arranged: str, supplier: str) -> Optional[List[str]]:
    """手配済み仕入先リスト（& 区切り）から今回の仕入先を除く

    Returns:
        残りの仕入先。今回の仕入先が含まれていなければ None
    """
    names = [name.strip() for name in arranged.split("&") if name.strip()]
    remaining = [name for name in names if name.lower() != supplier.strip().lower()]
    if len(remaining) == len(names):
        return None
    return remaining


def append_incoming_log(current: str, entry: str) -> str:
    current = (current or "").strip()
    return f"{current}{INCOMING_LOG_SEPARATOR}{entry}" if current else entry


def prepend_note_header(note: str, header: str) -> str:
    note = note or ""
    if not note.strip():
        return f"{header}\n{NOTE_SEPARATOR}"
    return f"{header}\n{NOTE_SEPARATOR}\n{note}"


class BatchReconciliationRunner:
    """注文ごとに分類を反映し、結果を入力順で返す"""

    def __init__(self, store, max_workers: int = 1, dry_run: bool = False,
                 today: Callable[[], date] = date.today):
        """
        Args:
            store: ShopifyFieldStore 互換のオブジェクト
            max_workers: 同時に処理する注文数
            dry_run: True の場合は操作を生成するだけで書き込まない
            today: メモのヘッダ日付（テスト用に差し替え可能）
        """
        self.store = store
        self.max_workers = max(1, int(max_workers))
        self.dry_run = dry_run
        self.today = today

    def run(self, records: List[RemoteRecord], classifications: List[Classification]) -> List[BatchResult]:
        if len(records) != len(classifications):
            raise ValueError("records と classifications の件数が一致しません")

        total = len(records)
        results: List[Optional[BatchResult]] = [None] * total
        counter = itertools.count()
        claim_lock = threading.Lock()

        def worker():
            while True:
                with claim_lock:
                    index = next(counter)
                if index >= total:
                    return
                print(f"\n[{index + 1}/{total}] 処理中: {records[index].code}")
                results[index] = self.process_record(records[index], classifications[index])

        print(f"📦 {total}件の注文を反映します (並列数: {min(self.max_workers, total)})")
        threads = [
            threading.Thread(target=worker, name=f"reconcile-worker-{n}", daemon=True)
            for n in range(min(self.max_workers, total))
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        ok = len([r for r in results if r.ok])
        print(f"\n=== 反映完了: 成功 {ok}件, 失敗 {total - ok}件 ===")
        return results

    def process_record(self, record: RemoteRecord, classification: Classification) -> BatchResult:
        """1注文を反映する。例外はここで捕まえて失敗結果にする"""
        record_id = record.id
        try:
            # 入力チェックはAPI呼び出し前に行う
            ensure_valid(classification)

            if record_id is None:
                record_id = self.store.find_order_by_code(record.code).id

            tags = self.store.get_tags(record_id)
            ops = compile_classification(classification, tags)

            if self.dry_run:
                print(f"  [DRY_RUN] {len(ops)}件の操作をスキップします")
                return BatchResult(True, record.code, record_id, ops_applied=0)

            applied = self.apply_ops(record_id, ops)
            if classification.invoice:
                applied += self.apply_incoming_invoice(record_id, tags, classification.invoice)

            print(f"  ✅ {record.code}: {applied}件の更新が完了")
            return BatchResult(True, record.code, record_id, ops_applied=applied)

        except Exception as e:
            print(f"  ❌ {record.code}: {e}")
            return BatchResult(False, record.code, record_id, reason=str(e))

    def apply_ops(self, record_id: int, ops: List[ReconciliationOp]) -> int:
        applied = 0
        for op in ops:
            if op.action == "set":
                self.store.upsert_field(record_id, op.namespace, op.key, op.value, op.type_hint)
                applied += 1
            elif op.action == "delete":
                if self.store.delete_field_if_present(record_id, op.namespace, op.key):
                    applied += 1
            else:
                raise ValueError(f"未知の操作: {op.action}")
        return applied

    def apply_incoming_invoice(self, record_id: int, tags: List[str], invoice: InvoiceContext) -> int:
        """仕入先請求書の入荷に伴う更新（手配状況・入荷マーカー・ログ・タグ・メモ）"""
        applied = 0
        fields = self.store.list_fields(record_id)
        original_tags = list(tags)
        tags = list(tags)

        arranged = fields.get(f"{NAMESPACE}.{ARRANGED_KEY}", "")
        if arranged:
            remaining = narrow_arrangement(arranged, invoice.supplier)
            if remaining:
                # 複数仕入先の手配は今回分だけ外す。Shopify側で許可されていない
                # 組み合わせの場合は API が拒否し、この注文は失敗として報告される
                self.store.upsert_field(record_id, NAMESPACE, ARRANGED_KEY, " & ".join(remaining), SINGLE_LINE)
                applied += 1
            elif remaining is not None:
                self.store.delete_field_if_present(record_id, NAMESPACE, ARRANGED_KEY)
                applied += 1
                if ARRANGED_TAG in tags:
                    tags.remove(ARRANGED_TAG)

        for key in incoming_marker_keys(fields):
            if fields.get(f"{NAMESPACE}.{key}") != INCOMING_VALUE:
                self.store.upsert_field(record_id, NAMESPACE, key, INCOMING_VALUE, SINGLE_LINE)
                applied += 1

        entry = f"Incoming {invoice.date_label} ({invoice.supplier})"
        log = append_incoming_log(fields.get(f"{NAMESPACE}.{INCOMING_LOG_KEY}", ""), entry)
        self.store.upsert_field(record_id, NAMESPACE, INCOMING_LOG_KEY, log, SINGLE_LINE)
        applied += 1

        if INCOMING_TAG not in tags:
            tags.append(INCOMING_TAG)
        if tags != original_tags:
            self.store.replace_tags(record_id, tags)
            applied += 1

        header = NOTE_HEADER_TEMPLATE.format(
            date=self.today().isoformat(), supplier=invoice.supplier, invoice=invoice.date_label
        )
        note = self.store.get_note(record_id)
        self.store.replace_note(record_id, prepend_note_header(note, header))
        applied += 1
        return applied
