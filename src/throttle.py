"""
Shopify API 呼び出しのスロットル

レート制限はアクセストークン単位で共有されるため、プロセス内の全呼び出しを
1つのゲートで直列化する。呼び出し終了から min_gap 経過するまで次は通さない。
"""

import threading
import time


class ThrottleGate:
    """直列化された呼び出しゲート（acquire/release または with 文で使用）"""

    def __init__(self, min_gap: float = 0.4, clock=time.monotonic, sleep=time.sleep):
        """
        Args:
            min_gap: 呼び出し間の最小間隔（秒）
            clock: 単調時計（テスト用に差し替え可能）
            sleep: 待機関数（テスト用に差し替え可能）
        """
        self.min_gap = min_gap
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_at = 0.0

    def acquire(self):
        self._lock.acquire()
        try:
            wait = self._next_at - self._clock()
            if wait > 0:
                self._sleep(wait)
        except BaseException:
            self._lock.release()
            raise

    def release(self):
        # 成功・失敗に関わらず間隔を課す
        self._next_at = self._clock() + self.min_gap
        self._lock.release()

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
