from __future__ import annotations

import threading
import time
from datetime import datetime
from typing import Callable


class ReceiptNumberGenerator:
    """Issues receipt numbers shaped ``REC-YYYYMMDD-######``.

    The suffix is the microsecond part of a high-resolution timestamp. Stamps
    are forced to increase strictly, so two consecutive calls on the same
    generator never collide. Uniqueness across processes is enforced by the
    database, which rejects a reused number.
    """

    def __init__(self, clock_ns: Callable[[], int] = time.time_ns):
        self.clock_ns = clock_ns
        self._last_stamp = 0
        self._lock = threading.Lock()

    def generate(self) -> str:
        with self._lock:
            stamp = int(self.clock_ns()) // 1_000
            if stamp <= self._last_stamp:
                stamp = self._last_stamp + 1
            self._last_stamp = stamp

        day = datetime.fromtimestamp(stamp / 1_000_000).strftime("%Y%m%d")
        return f"REC-{day}-{stamp % 1_000_000:06d}"
