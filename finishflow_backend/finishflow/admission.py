import threading


class AdmissionGate:
    """Single-flight gate around the pipeline body.

    Callers that cannot acquire are rejected immediately; there is no queue.
    """

    def __init__(self):
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def busy(self) -> bool:
        return self._lock.locked()
