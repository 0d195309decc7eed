import os
from typing import Dict, List, Optional

import requests

from order_models import BatchResult, summarize_results

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"
SLACK_VIEWS_OPEN_URL = "https://slack.com/api/views.open"


def _call_slack(url: str, payload: Dict, bot_token: Optional[str] = None) -> Dict:
    token = bot_token or os.getenv("SLACK_BOT_TOKEN")
    headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json; charset=utf-8"}
    resp = requests.post(url, headers=headers, json=payload)
    resp.raise_for_status()
    data = resp.json()
    if not data.get("ok"):
        raise RuntimeError(f"Slack error: {data}")
    return data


def post_thread_reply(channel: str, thread_ts: Optional[str], text: str,
                      blocks: Optional[List[Dict]] = None, bot_token: Optional[str] = None) -> str:
    payload = {"channel": channel, "text": text}
    if thread_ts:
        payload["thread_ts"] = thread_ts
    if blocks:
        payload["blocks"] = blocks
    return _call_slack(SLACK_POST_MESSAGE_URL, payload, bot_token).get("ts")


def open_modal(trigger_id: str, view: Dict, bot_token: Optional[str] = None) -> Dict:
    """trigger_id（発行から3秒有効）でモーダルを開く"""
    return _call_slack(SLACK_VIEWS_OPEN_URL, {"trigger_id": trigger_id, "view": view}, bot_token)


def format_batch_summary(results: List[BatchResult]) -> str:
    """バッチ結果をSlack表示用テキストにする（失敗は最大10件まで）"""
    summary = summarize_results(results)
    ok, failed = summary["ok"], summary["failed"]

    if len(results) == 1 and ok:
        return f"Updated selections for Order {ok[0]}: Parts / Fulfillment / Payment captured."

    lines = [f"Updated {len(ok)} of {len(results)} orders."]
    if ok:
        lines.append("✅ " + ", ".join(ok))
    if failed:
        lines.append(f"❌ Failed ({len(failed)}):")
        for code in failed[:10]:
            lines.append(f"• {code}: {summary['reasons'][code]}")
        if len(failed) > 10:
            lines.append(f"... and {len(failed) - 10} more")
    return "\n".join(lines)


def post_batch_summary(channel: str, thread_ts: Optional[str], results: List[BatchResult],
                       bot_token: Optional[str] = None) -> str:
    return post_thread_reply(channel, thread_ts, format_batch_summary(results), bot_token=bot_token)
