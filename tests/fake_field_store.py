"""
テスト用のインメモリ ShopifyFieldStore
"""

from order_models import NotFoundError, RemoteRecord, SINGLE_LINE


class InMemoryFieldStore:
    def __init__(self, orders=None):
        # orders: {code: {"id": int, "fields": {"ns.key": value}, "tags": [...], "note": str}}
        self.orders = {}
        self.types = {}
        self.calls = []
        self.fail_on = {}
        for code, order in (orders or {}).items():
            self.add_order(code, **order)

    def add_order(self, code, id, fields=None, tags=None, note="", customer_name=""):
        self.orders[code] = {
            "id": id,
            "fields": dict(fields or {}),
            "tags": list(tags or []),
            "note": note,
            "customer_name": customer_name,
        }

    def _by_id(self, record_id):
        for order in self.orders.values():
            if order["id"] == record_id:
                return order
        raise KeyError(record_id)

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        exc = self.fail_on.get(name)
        if exc:
            raise exc

    def fields_of(self, code):
        return self.orders[code]["fields"]

    def find_order_by_code(self, code):
        self._record("find_order_by_code", code)
        order = self.orders.get(code)
        if not order:
            raise NotFoundError(f"Order {code} not found")
        return RemoteRecord(code=code, id=order["id"], customer_name=order["customer_name"])

    def list_fields(self, record_id):
        self._record("list_fields", record_id)
        return dict(self._by_id(record_id)["fields"])

    def upsert_field(self, record_id, namespace, key, value, type_hint=None):
        self._record("upsert_field", record_id, namespace, key, value)
        field_key = f"{namespace}.{key}"
        fields = self._by_id(record_id)["fields"]
        if field_key not in fields:
            self.types[(record_id, field_key)] = type_hint or SINGLE_LINE
        fields[field_key] = value

    def delete_field_if_present(self, record_id, namespace, key):
        self._record("delete_field_if_present", record_id, namespace, key)
        return self._by_id(record_id)["fields"].pop(f"{namespace}.{key}", None) is not None

    def get_tags(self, record_id):
        self._record("get_tags", record_id)
        return list(self._by_id(record_id)["tags"])

    def replace_tags(self, record_id, tags):
        self._record("replace_tags", record_id, list(tags))
        self._by_id(record_id)["tags"] = list(tags)

    def get_note(self, record_id):
        self._record("get_note", record_id)
        return self._by_id(record_id)["note"]

    def replace_note(self, record_id, note):
        self._record("replace_note", record_id, note)
        self._by_id(record_id)["note"] = note
