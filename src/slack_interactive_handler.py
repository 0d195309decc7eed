"""
Slackイベント / インタラクションのハンドラー
※ 注意: SlackアプリでEvent SubscriptionsとInteractivityを有効にし、
Request URLに /slack/events と /slack/interactive を、
スラッシュコマンド /ping のURLに /slack/commands を設定する必要があります。
"""

import json
import re
import threading
from typing import Dict, List, Optional

from flask import Flask, jsonify, request

from field_compiler import validate_classification
from notifier import open_modal, post_batch_summary, post_thread_reply
from order_models import (
    FULFILLMENT_LABELS, OTHER, PART_LABELS, PAYMENT_LABELS, SET_ASIDE,
    Classification, InvoiceContext, NotFoundError, OrderTaggingError, RemoteRecord,
)
from snapshot_store import save_snapshot

app = Flask(__name__)

# メッセージ先頭の "C#1234"
ORDER_REGEX = re.compile(r"^\s*C#(\d{4})\b")
FLOWBOT_NAME = "FlowBot"
SUBMIT_CALLBACK_ID = "update_meta_modal_submit"
OPEN_MODAL_ACTION_ID = "open_update_modal"


def configure(core, settings: Dict):
    app.config["TAGGING_CORE"] = core
    app.config["TAGGING_SETTINGS"] = settings


def _core():
    return app.config["TAGGING_CORE"]


def _settings() -> Dict:
    return app.config.get("TAGGING_SETTINGS") or {}


def _dispatch(fn, *args):
    """Slackの3秒制限に収まるよう重い処理は別スレッドで実行（テスト時は同期）"""
    if app.config.get("TESTING"):
        fn(*args)
        return
    threading.Thread(target=fn, args=args, daemon=True).start()


def is_from_flowbot(event: Dict, flowbot_user_id: str = "") -> bool:
    if flowbot_user_id and event.get("user") == flowbot_user_id:
        return True
    profile = event.get("bot_profile") or {}
    return FLOWBOT_NAME in (profile.get("name"), profile.get("display_name"), event.get("username"))


def match_order_message(event: Dict, watch_channel_id: str = "", flowbot_user_id: str = "") -> Optional[str]:
    """監視対象のFlowBotメッセージなら注文番号（4桁）を返す"""
    if not event or event.get("hidden") or event.get("subtype") in ("message_changed", "message_deleted"):
        return None
    if watch_channel_id and event.get("channel") != watch_channel_id:
        return None
    m = ORDER_REGEX.match((event.get("text") or "").strip())
    if not m:
        return None
    if not is_from_flowbot(event, flowbot_user_id):
        return None
    return m.group(1)


def handle_order_message(event: Dict, digits: str):
    code = f"C#{digits}"
    channel = event.get("channel")
    thread_ts = event.get("ts")
    try:
        record = _core().find_order(code)
    except NotFoundError as e:
        print(f"❌ {e}")
        post_thread_reply(channel, thread_ts, f"Order {code} not found in Shopify.")
        return

    customer = record.customer_name or "Unknown"
    post_thread_reply(
        channel,
        thread_ts,
        f"Order {code} Found - {customer}",
        blocks=[
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Order {code}* Found — *{customer}*"},
            },
            {
                "type": "actions",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "Update Metafields", "emoji": True},
                        "action_id": OPEN_MODAL_ACTION_ID,
                        "value": json.dumps({
                            "orderDigits": digits,
                            "orderId": record.id,
                            "channel": channel,
                            "thread_ts": thread_ts,
                        }),
                    }
                ],
            },
        ],
    )


@app.route('/slack/events', methods=['POST'])
def handle_events():
    body = request.get_json(silent=True) or {}
    if body.get("type") == "url_verification":
        return jsonify({"challenge": body.get("challenge")})

    event = body.get("event") or {}
    if event.get("type") == "message":
        settings = _settings()
        digits = match_order_message(event, settings.get("watch_channel_id", ""), settings.get("flowbot_user_id", ""))
        if digits:
            _dispatch(handle_order_message, event, digits)
    return jsonify({"status": "ok"})


def _selected_value(values: Dict, block_id: str, action_id: str) -> Optional[str]:
    option = ((values.get(block_id) or {}).get(action_id) or {}).get("selected_option") or {}
    return option.get("value")


def classification_from_view_state(values: Dict, invoice: Optional[InvoiceContext] = None) -> Classification:
    """モーダルの state.values から分類を作る"""
    selected = ((values.get("parts_block") or {}).get("parts_check") or {}).get("selected_options") or []
    other_text = ((values.get("parts_other_text") or {}).get("other_text") or {}).get("value") or ""
    set_aside_text = ((values.get("parts_set_aside_text") or {}).get("set_aside_text") or {}).get("value") or ""
    return Classification(
        parts=frozenset(o["value"] for o in selected),
        other_text=other_text,
        set_aside_text=set_aside_text,
        fulfillment=_selected_value(values, "fulfillment_block", "fulfillment_radio") or "ship",
        payment=_selected_value(values, "payment_block", "payment_radio") or "pif",
        invoice=invoice,
    )


def records_from_metadata(meta: Dict) -> List[RemoteRecord]:
    """private_metadata の注文（単体 or 請求書の複数注文）"""
    orders = meta.get("orders") or [{"orderDigits": meta.get("orderDigits"), "orderId": meta.get("orderId")}]
    records = []
    for order in orders:
        if not order.get("orderDigits"):
            continue
        order_id = order.get("orderId")
        records.append(RemoteRecord(code=f"C#{order['orderDigits']}", id=int(order_id) if order_id else None))
    return records


def apply_submission(records: List[RemoteRecord], classification: Classification, meta: Dict):
    results = _core().reconcile(records, [classification] * len(records))

    snapshot_dir = _settings().get("snapshot_dir")
    if snapshot_dir:
        for record, result in zip(records, results):
            if not result.ok:
                continue
            try:
                save_snapshot(snapshot_dir, RemoteRecord(code=result.record_code, id=result.record_id), classification)
            except OSError as e:
                print(f"⚠️ スナップショット保存に失敗: {record.code}: {e}")

    if meta.get("channel") and meta.get("thread_ts"):
        post_batch_summary(meta["channel"], meta["thread_ts"], results)


# モーダルのチェックボックス（通常パーツ + テキスト必須パーツ）
PART_OPTIONS = PART_LABELS + [(OTHER, "Other"), (SET_ASIDE, "Set Aside")]


def _option(value: str, label: str) -> Dict:
    return {"text": {"type": "plain_text", "text": label}, "value": value}


def _text_input(block_id: str, action_id: str, label: str, initial: str) -> Dict:
    element = {"type": "plain_text_input", "action_id": action_id}
    if initial:
        element["initial_value"] = initial
    return {"type": "input", "block_id": block_id, "optional": True,
            "label": {"type": "plain_text", "text": label}, "element": element}


def _radio_block(block_id: str, action_id: str, label: str, labels: Dict, selected: str) -> Dict:
    options = [_option(value, text) for value, text in labels.items()]
    element = {"type": "radio_buttons", "action_id": action_id, "options": options}
    if selected in labels:
        element["initial_option"] = _option(selected, labels[selected])
    return {"type": "input", "block_id": block_id,
            "label": {"type": "plain_text", "text": label}, "element": element}


def build_update_modal(code: str, classification: Classification, private_metadata: str) -> Dict:
    """現在の分類を初期値にした更新モーダル"""
    checkboxes = {"type": "checkboxes", "action_id": "parts_check",
                  "options": [_option(key, label) for key, label in PART_OPTIONS]}
    initial = [_option(key, label) for key, label in PART_OPTIONS if key in classification.parts]
    # 空の initial_options はSlackがエラーにする
    if initial:
        checkboxes["initial_options"] = initial

    return {
        "type": "modal",
        "callback_id": SUBMIT_CALLBACK_ID,
        "private_metadata": private_metadata,
        "title": {"type": "plain_text", "text": f"Update {code}"[:24]},
        "submit": {"type": "plain_text", "text": "Save"},
        "close": {"type": "plain_text", "text": "Cancel"},
        "blocks": [
            {"type": "input", "block_id": "parts_block", "optional": True,
             "label": {"type": "plain_text", "text": "Parts"}, "element": checkboxes},
            _text_input("parts_other_text", "other_text", "Other (describe)", classification.other_text),
            _text_input("parts_set_aside_text", "set_aside_text", "Set Aside (describe)", classification.set_aside_text),
            _radio_block("fulfillment_block", "fulfillment_radio", "Fulfillment",
                         FULFILLMENT_LABELS, classification.fulfillment),
            _radio_block("payment_block", "payment_radio", "Payment", PAYMENT_LABELS, classification.payment),
        ],
    }


def open_update_modal(payload: Dict, action: Dict):
    """「Update Metafields」ボタン → 既存メタフィールドを初期値にモーダルを開く"""
    value = action.get("value") or "{}"
    meta = json.loads(value)
    code = f"C#{meta.get('orderDigits')}"
    classification = Classification()
    if meta.get("orderId"):
        try:
            classification = _core().classify_from_existing_fields(int(meta["orderId"]))
        except OrderTaggingError as e:
            print(f"⚠️ 既存メタフィールドの取得に失敗（空の状態で開きます）: {code}: {e}")
    open_modal(payload["trigger_id"], build_update_modal(code, classification, value))


@app.route('/slack/interactive', methods=['POST'])
def handle_interactive():
    """Slackからのボタン押下 / モーダル送信を処理"""
    payload = json.loads(request.form['payload'])

    if payload.get("type") == "block_actions":
        action = (payload.get("actions") or [{}])[0]
        if action.get("action_id") != OPEN_MODAL_ACTION_ID:
            return jsonify({"status": "ignored"})
        # trigger_id は3秒で失効するので同期で開く
        open_update_modal(payload, action)
        return "", 200

    if payload.get("type") != "view_submission" or payload["view"].get("callback_id") != SUBMIT_CALLBACK_ID:
        return jsonify({"status": "ignored"})

    view = payload["view"]
    meta = json.loads(view.get("private_metadata") or "{}")
    invoice = meta.get("invoice")
    invoice = InvoiceContext(invoice["supplier"], invoice["date_label"]) if invoice else None

    try:
        classification = classification_from_view_state(view["state"]["values"], invoice)
    except ValueError as e:
        print(f"❌ モーダル入力エラー: {e}")
        return jsonify({"response_action": "errors", "errors": {"parts_block": str(e)}})

    errors = validate_classification(classification)
    if errors:
        return jsonify({"response_action": "errors", "errors": errors})

    records = records_from_metadata(meta)
    if records:
        _dispatch(apply_submission, records, classification, meta)
    return "", 200


@app.route('/slack/commands', methods=['POST'])
def handle_commands():
    """スラッシュコマンド（/ping で疎通確認）"""
    command = request.form.get("command")
    if command != "/ping":
        return jsonify({"text": f"Unknown command: {command}"})
    channel = request.form.get("channel_id")
    return jsonify({"text": f"pong ({f'<#{channel}>' if channel else 'here'})"})


if __name__ == "__main__":
    # main.py から起動してください（Shopify設定を読み込みます）
    from main import main
    main()
