"""
既存メタフィールドからモーダル初期値（分類）を復元する

完了マーカーが "yes" でない注文は、値が残っていても既定値を使う。
"""

from typing import Dict

from field_compiler import (
    DONE_KEY,
    DONE_VALUE,
    FULFILLMENT_KEY,
    NAMESPACE,
    OTHER_KEY,
    PART_FIELD_KEYS,
    PAYMENT_KEY,
    SET_ASIDE_KEY,
)
from order_models import Classification, FULFILLMENT_LABELS, PART_LABELS, PAYMENT_LABELS

DEFAULT_PARTS = frozenset({"steering_wheel"})
DEFAULT_FULFILLMENT = "ship"
DEFAULT_PAYMENT = "pif"

# 空欄時の扱い
BLANK_FULFILLMENT = "ship"
BLANK_PAYMENT = "unknown"

_FULFILLMENT_BY_LABEL = {label: key for key, label in FULFILLMENT_LABELS.items()}
_PAYMENT_BY_LABEL = {label: key for key, label in PAYMENT_LABELS.items()}


def default_classification() -> Classification:
    return Classification(parts=DEFAULT_PARTS, fulfillment=DEFAULT_FULFILLMENT, payment=DEFAULT_PAYMENT)


def classify_from_fields(fields: Dict[str, str]) -> Classification:
    def v(key):
        return (fields.get(f"{NAMESPACE}.{key}") or "").strip()

    if v(DONE_KEY).lower() != DONE_VALUE:
        return default_classification()

    parts = set()
    for part_key, label in PART_LABELS:
        if v(PART_FIELD_KEYS[part_key]).lower() == label.lower():
            parts.add(part_key)

    fulfillment_label = v(FULFILLMENT_KEY)
    if not fulfillment_label:
        fulfillment = BLANK_FULFILLMENT
    else:
        fulfillment = _FULFILLMENT_BY_LABEL.get(fulfillment_label, DEFAULT_FULFILLMENT)

    payment_label = v(PAYMENT_KEY)
    if not payment_label:
        payment = BLANK_PAYMENT
    else:
        payment = _PAYMENT_BY_LABEL.get(payment_label, DEFAULT_PAYMENT)

    # other / set_aside はテキストがあれば自動的に選択扱いになる
    return Classification(
        parts=frozenset(parts),
        other_text=v(OTHER_KEY),
        set_aside_text=v(SET_ASIDE_KEY),
        fulfillment=fulfillment,
        payment=payment,
    )
