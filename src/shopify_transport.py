import time
from typing import Dict, Optional

import requests

from order_models import TransportError
from throttle import ThrottleGate


class ShopifyTransport:
    """Shopify Admin REST API の低レベル呼び出し（スロットル + リトライ）"""

    def __init__(self, domain: str, access_token: str, api_version: str = "2025-01",
                 gate: Optional[ThrottleGate] = None, max_attempts: int = 5,
                 base_delay: float = 2.0, max_delay: float = 10.0,
                 timeout: float = 30, session: Optional[requests.Session] = None,
                 sleep=time.sleep):
        self.base_url = f"https://{domain}/admin/api/{api_version}"
        self.headers = {
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
        }
        self.gate = gate or ThrottleGate()
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self.session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_config(cls, settings: Dict, config: Dict, **kwargs) -> "ShopifyTransport":
        gate = ThrottleGate(min_gap=config["throttle"]["min_gap_ms"] / 1000.0)
        return cls(
            settings["shopify_domain"],
            settings["shopify_admin_token"],
            settings.get("shopify_api_version", "2025-01"),
            gate=gate,
            max_attempts=config["retry"]["max_attempts"],
            base_delay=config["retry"]["base_delay_ms"] / 1000.0,
            max_delay=config["retry"]["max_delay_ms"] / 1000.0,
            timeout=config["http"]["timeout_seconds"],
            **kwargs,
        )

    def call(self, method: str, path: str, body: Optional[Dict] = None,
             params: Optional[Dict] = None) -> Dict:
        """APIを呼び出してJSONを返す（失敗時は TransportError）"""
        # リトライ中もゲートを保持し、待機中に他の呼び出しを通さない
        with self.gate:
            return self._call_with_retry(method, path, body, params)

    def _retry_delay(self, response: Optional[requests.Response], attempt: int) -> float:
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    return max(float(retry_after), 0.0)
                except ValueError:
                    pass
        return min(self.base_delay * attempt, self.max_delay)

    def _call_with_retry(self, method, path, body, params) -> Dict:
        url = f"{self.base_url}{path}"
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.session.request(
                    method, url, headers=self.headers, json=body,
                    params=params, timeout=self.timeout,
                )
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                if attempt >= self.max_attempts:
                    raise TransportError(0, f"Shopify {method} {path} failed: {e}") from e
                delay = self._retry_delay(None, attempt)
                print(f"⚠️ Shopify {method} {path} 通信エラー: {e} - {delay:.1f}秒後にリトライ (試行 {attempt}/{self.max_attempts})")
                self._sleep(delay)
                continue

            status = response.status_code
            if (status == 429 or 500 <= status < 600) and attempt < self.max_attempts:
                delay = self._retry_delay(response, attempt)
                print(f"⚠️ Shopify {status}. {delay:.1f}秒後にリトライ (試行 {attempt}/{self.max_attempts})")
                self._sleep(delay)
                continue

            if not 200 <= status < 300:
                text = response.text or ""
                raise TransportError(
                    status,
                    f"Shopify {method} {path} failed: {status} {response.reason} - {text[:500]}",
                    body=text,
                    status_text=response.reason or "",
                )

            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise TransportError(status, f"Shopify {method} {path} returned invalid JSON",
                                     body=response.text or "") from e

        # max_attempts < 1 の場合のみ到達
        raise TransportError(0, f"Shopify {method} {path} was not attempted")
