from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional


# 6つの通常パーツ（キー, ラベル）
PART_LABELS = [
    ("steering_wheel", "Steering Wheel"),
    ("trim", "Trim"),
    ("paddles", "Paddles"),
    ("magnetic_paddles", "Magnetic Paddles"),
    ("da_module", "DA Module"),
    ("return_label", "Return Label"),
]

# テキスト必須のパーツ
OTHER = "other"
SET_ASIDE = "set_aside"

ALL_PART_KEYS = [key for key, _ in PART_LABELS] + [OTHER, SET_ASIDE]

FULFILLMENT_LABELS = {
    "ship": "Ship",
    "install_pickup": "Install/Pickup",
    "tbd": "TBD",
}

PAYMENT_LABELS = {
    "pif": "PIF",
    "deposit": "Deposit",
    "pif_prepaid_install": "PIF + Pre-Paid Install",
    "unpaid": "Unpaid",
    "unknown": "Unknown",
}

SINGLE_LINE = "single_line_text_field"
MULTI_LINE = "multi_line_text_field"


class OrderTaggingError(Exception):
    """注文タグ付け処理の基底例外"""


class TransportError(OrderTaggingError):
    """Shopify APIが2xx以外を返した（リトライ上限後を含む）"""

    def __init__(self, status: int, message: str, body: str = "", status_text: str = ""):
        super().__init__(message)
        self.status = status
        self.status_text = status_text
        self.body = body


class NotFoundError(OrderTaggingError):
    """注文コードに一致する注文が存在しない"""


class ValidationError(OrderTaggingError):
    """テキスト必須の項目が未入力

    errors は Slack モーダルの block_id -> メッセージ
    """

    def __init__(self, errors: Dict[str, str]):
        super().__init__("; ".join(errors.values()))
        self.errors = dict(errors)


@dataclass
class RemoteRecord:
    code: str
    id: Optional[int] = None
    customer_name: str = ""

    @property
    def digits(self) -> str:
        return self.code.replace("C#", "", 1)


@dataclass(frozen=True)
class InvoiceContext:
    supplier: str
    date_label: str


@dataclass
class Classification:
    parts: FrozenSet[str] = field(default_factory=frozenset)
    other_text: str = ""
    set_aside_text: str = ""
    fulfillment: str = "ship"
    payment: str = "pif"
    invoice: Optional[InvoiceContext] = None

    def __post_init__(self):
        self.other_text = (self.other_text or "").strip()
        self.set_aside_text = (self.set_aside_text or "").strip()
        parts = set(self.parts or ())
        # テキストがあればチェックなしでも選択扱い
        if self.other_text:
            parts.add(OTHER)
        if self.set_aside_text:
            parts.add(SET_ASIDE)
        unknown = parts - set(ALL_PART_KEYS)
        if unknown:
            raise ValueError(f"未知のパーツ: {sorted(unknown)}")
        if self.fulfillment not in FULFILLMENT_LABELS:
            raise ValueError(f"未知のfulfillment: {self.fulfillment}")
        if self.payment not in PAYMENT_LABELS:
            raise ValueError(f"未知のpayment: {self.payment}")
        self.parts = frozenset(parts)

    def selected_labels(self) -> List[str]:
        """選択された通常パーツのラベル（表示順）"""
        return [label for key, label in PART_LABELS if key in self.parts]

    def to_dict(self) -> Dict:
        data = {
            "parts": {
                "selections": [key for key in ALL_PART_KEYS if key in self.parts],
                "other_text": self.other_text or None,
                "set_aside_text": self.set_aside_text or None,
            },
            "fulfillment": self.fulfillment,
            "payment": self.payment,
        }
        if self.invoice:
            data["invoice"] = {"supplier": self.invoice.supplier, "date_label": self.invoice.date_label}
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Classification":
        parts = data.get("parts") or {}
        invoice = data.get("invoice")
        return cls(
            parts=frozenset(parts.get("selections") or []),
            other_text=parts.get("other_text") or "",
            set_aside_text=parts.get("set_aside_text") or "",
            fulfillment=data.get("fulfillment") or "ship",
            payment=data.get("payment") or "pif",
            invoice=InvoiceContext(invoice["supplier"], invoice["date_label"]) if invoice else None,
        )


@dataclass(frozen=True)
class ReconciliationOp:
    action: str  # set|delete
    namespace: str
    key: str
    value: Optional[str] = None
    type_hint: str = SINGLE_LINE

    @property
    def field_key(self) -> str:
        return f"{self.namespace}.{self.key}"


@dataclass
class BatchResult:
    ok: bool
    record_code: str
    record_id: Optional[int] = None
    reason: Optional[str] = None
    ops_applied: int = 0


def summarize_results(results: List[BatchResult]) -> Dict:
    """バッチ結果を ok / failed / reasons にまとめる"""
    ok = [r.record_code for r in results if r.ok]
    failed = [r.record_code for r in results if not r.ok]
    reasons = {r.record_code: r.reason or "Unknown error" for r in results if not r.ok}
    return {"ok": ok, "failed": failed, "reasons": reasons}
