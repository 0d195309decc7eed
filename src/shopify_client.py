from typing import Dict, List, Optional

from order_models import NotFoundError, RemoteRecord, SINGLE_LINE
from shopify_transport import ShopifyTransport

# 1注文あたりの取得上限（Shopify既定は50件）
METAFIELD_PAGE_LIMIT = 250


class ShopifyFieldStore:
    """Shopify 注文のメタフィールド / タグ / メモ操作

    upsert_field と delete_field_if_present は「一覧取得してから更新」のため
    アトミックではない。同一注文への変更は BatchReconciliationRunner が
    1本の直列ストリームに限定している前提で成り立つ。
    """

    def __init__(self, transport: ShopifyTransport):
        self.transport = transport

    def ping(self) -> Dict:
        """接続確認"""
        return self.transport.call("GET", "/shop.json").get("shop", {})

    def _list_raw(self, record_id: int) -> List[Dict]:
        data = self.transport.call("GET", f"/orders/{record_id}/metafields.json", params={"limit": METAFIELD_PAGE_LIMIT})
        return data.get("metafields") or []

    def _find(self, record_id: int, namespace: str, key: str) -> Optional[Dict]:
        for mf in self._list_raw(record_id):
            if (mf.get("namespace") or "").strip() == namespace and (mf.get("key") or "").strip() == key:
                return mf
        return None

    def list_fields(self, record_id: int) -> Dict[str, str]:
        """全メタフィールドを {"namespace.key": value} で返す"""
        out = {}
        for mf in self._list_raw(record_id):
            ns = (mf.get("namespace") or "").strip()
            key = (mf.get("key") or "").strip()
            value = mf.get("value")
            value = "" if value is None else str(value).strip()
            if ns and key:
                out[f"{ns}.{key}"] = value
        return out

    def upsert_field(self, record_id: int, namespace: str, key: str, value: str,
                     type_hint: Optional[str] = None):
        existing = self._find(record_id, namespace, key)
        if existing:
            # 型は作成後に変更できないので値のみ更新
            return self.transport.call(
                "PUT",
                f"/orders/{record_id}/metafields/{existing['id']}.json",
                body={"metafield": {"id": existing["id"], "value": value}},
            )
        return self.transport.call(
            "POST",
            f"/orders/{record_id}/metafields.json",
            body={"metafield": {
                "namespace": namespace,
                "key": key,
                "value": value,
                "type": type_hint or SINGLE_LINE,
            }},
        )

    def delete_field_if_present(self, record_id: int, namespace: str, key: str) -> bool:
        existing = self._find(record_id, namespace, key)
        if not existing:
            return False
        self.transport.call("DELETE", f"/orders/{record_id}/metafields/{existing['id']}.json")
        return True

    def find_order_by_code(self, code: str) -> RemoteRecord:
        """注文名（"C#1234"）で注文を検索（検索はあいまいなので完全一致を再確認）"""
        data = self.transport.call("GET", "/orders.json", params={"name": code, "status": "any"})
        order = next(
            (o for o in data.get("orders") or [] if isinstance(o.get("name"), str) and o["name"] == code),
            None,
        )
        if not order:
            raise NotFoundError(f"Order {code} not found")
        return RemoteRecord(code=code, id=order["id"], customer_name=customer_name_of(order))

    def _get_order(self, record_id: int, fields: str) -> Dict:
        data = self.transport.call("GET", f"/orders/{record_id}.json", params={"fields": fields})
        return data.get("order") or {}

    def _update_order(self, record_id: int, changes: Dict):
        return self.transport.call(
            "PUT", f"/orders/{record_id}.json", body={"order": {"id": record_id, **changes}}
        )

    def get_tags(self, record_id: int) -> List[str]:
        raw = self._get_order(record_id, "id,tags").get("tags") or ""
        tags = []
        for tag in raw.split(","):
            tag = tag.strip()
            if tag and tag not in tags:
                tags.append(tag)
        return tags

    def replace_tags(self, record_id: int, tags: List[str]):
        return self._update_order(record_id, {"tags": ", ".join(tags)})

    def get_note(self, record_id: int) -> str:
        return self._get_order(record_id, "id,note").get("note") or ""

    def replace_note(self, record_id: int, note: str):
        return self._update_order(record_id, {"note": note})


def customer_name_of(order: Dict) -> str:
    """注文の顧客名（なければ配送先名、どちらもなければ Unknown）"""
    for source in ("customer", "shipping_address"):
        person = order.get(source)
        if person:
            name = f"{person.get('first_name') or ''} {person.get('last_name') or ''}".strip()
            return name or "Unknown"
    return "Unknown"
