import threading
import time
from dataclasses import dataclass
from dataclasses import field


@dataclass
class ScanStats:
    components: int = 0
    identified: int = 0
    identifiers: int = 0
    findings: int = 0
    suppressed: int = 0
    merged: int = 0
    errors: int = 0
    start_time: float = field(default_factory=time.time)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def inc_identified(self, identifiers: int = 1):
        with self._lock:
            self.identified += 1
            self.identifiers += identifiers

    def inc_findings(self, count: int = 1):
        with self._lock:
            self.findings += count

    def inc_suppressed(self, count: int = 1):
        with self._lock:
            self.suppressed += count

    def inc_merged(self, count: int = 1):
        with self._lock:
            self.merged += count

    def inc_errors(self, count: int = 1):
        with self._lock:
            self.errors += count

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time
