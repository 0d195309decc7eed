"""
Slackで選択された分類 → Shopifyメタフィールド操作 への変換

純粋関数のみ。API呼び出しは reconcile_runner 側で行う。
"""

import re
from collections import OrderedDict
from typing import Dict, Iterable, List

from order_models import (
    Classification,
    FULFILLMENT_LABELS,
    MULTI_LINE,
    OTHER,
    PART_LABELS,
    PAYMENT_LABELS,
    ReconciliationOp,
    SET_ASIDE,
    SINGLE_LINE,
    ValidationError,
)

NAMESPACE = "custom"

PART_FIELD_KEYS = {key: f"parts_{key}" for key, _ in PART_LABELS}
NEGATIVE_LABEL = "No"

OTHER_KEY = "parts_other"
SET_ASIDE_KEY = "parts_set_aside_already"
FULFILLMENT_KEY = "ship_install_pickup"
PAYMENT_KEY = "pif_or_not"
SUPPLIERS_KEY = "suppliers"
SUMMARY_KEY = "order_summary"
HANDLED_BY_KEY = "handled_by"
DONE_KEY = "initial_slack_tagging_done"

HANDLED_BY_VALUE = "Slack Order Tagging"
DONE_VALUE = "yes"

# "Supplier: ACME" 形式のタグから仕入先名を取り出す
SUPPLIER_TAG_PATTERN = re.compile(r"^supplier\s*:\s*(.+)$", re.IGNORECASE)

SUMMARY_SEPARATOR = " — "

# Slackモーダルの block_id
OTHER_BLOCK_ID = "parts_other_text"
SET_ASIDE_BLOCK_ID = "parts_set_aside_text"


def validate_classification(classification: Classification) -> Dict[str, str]:
    """テキスト必須項目のチェック。エラーは block_id -> メッセージ"""
    errors = {}
    if OTHER in classification.parts and not classification.other_text:
        errors[OTHER_BLOCK_ID] = 'Please provide details for "Other".'
    if SET_ASIDE in classification.parts and not classification.set_aside_text:
        errors[SET_ASIDE_BLOCK_ID] = 'Please provide details for "Parts Set Aside".'
    return errors


def ensure_valid(classification: Classification):
    errors = validate_classification(classification)
    if errors:
        raise ValidationError(errors)


def suppliers_from_tags(tags: Iterable[str]) -> List[str]:
    suppliers = []
    for tag in tags:
        m = SUPPLIER_TAG_PATTERN.match(tag.strip())
        if not m:
            continue
        name = m.group(1).strip()
        if name and name not in suppliers:
            suppliers.append(name)
    return suppliers


def render_parts_line(classification: Classification) -> str:
    labels = classification.selected_labels()
    if OTHER in classification.parts and classification.other_text:
        labels.append(f"Other ({classification.other_text})")
    if not labels:
        return "No parts"
    if len(labels) == 1:
        return f"{labels[0]} only"
    return ", ".join(labels)


def render_summary(classification: Classification) -> str:
    """注文サマリー（複数行）を組み立てる"""
    header = SUMMARY_SEPARATOR.join([
        FULFILLMENT_LABELS[classification.fulfillment].upper(),
        PAYMENT_LABELS[classification.payment].upper(),
    ])
    lines = [header, "", render_parts_line(classification)]
    if classification.set_aside_text:
        lines += ["", f"Set aside: {classification.set_aside_text}"]
    return "\n".join(lines)


def _set(key: str, value: str, type_hint: str = SINGLE_LINE) -> ReconciliationOp:
    return ReconciliationOp("set", NAMESPACE, key, value, type_hint)


def _delete(key: str) -> ReconciliationOp:
    return ReconciliationOp("delete", NAMESPACE, key)


def _annotation_op(key: str, selected: bool, text: str) -> ReconciliationOp:
    if selected and text:
        return _set(key, text)
    return _delete(key)


def compile_classification(classification: Classification,
                           tags: Iterable[str] = ()) -> List[ReconciliationOp]:
    """分類から注文メタフィールドの操作リストを生成する

    同じキーへの操作は1つだけ（後勝ち）。完了マーカーは必ず最後。
    """
    ensure_valid(classification)

    ops = []
    for part_key, label in PART_LABELS:
        value = label if part_key in classification.parts else NEGATIVE_LABEL
        ops.append(_set(PART_FIELD_KEYS[part_key], value))

    ops.append(_annotation_op(OTHER_KEY, OTHER in classification.parts, classification.other_text))
    ops.append(_annotation_op(SET_ASIDE_KEY, SET_ASIDE in classification.parts, classification.set_aside_text))

    ops.append(_set(FULFILLMENT_KEY, FULFILLMENT_LABELS[classification.fulfillment]))
    ops.append(_set(PAYMENT_KEY, PAYMENT_LABELS[classification.payment]))

    suppliers = suppliers_from_tags(tags)
    ops.append(_set(SUPPLIERS_KEY, ", ".join(suppliers)) if suppliers else _delete(SUPPLIERS_KEY))

    ops.append(_set(SUMMARY_KEY, render_summary(classification), MULTI_LINE))
    ops.append(_set(HANDLED_BY_KEY, HANDLED_BY_VALUE))
    ops.append(_set(DONE_KEY, DONE_VALUE))
    return dedupe_ops(ops)


def dedupe_ops(ops: Iterable[ReconciliationOp]) -> List[ReconciliationOp]:
    """同じフィールドへの操作は最後のものだけ残す"""
    latest = OrderedDict()
    for op in ops:
        latest.pop(op.field_key, None)
        latest[op.field_key] = op
    return list(latest.values())
