from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
import logging
import threading

from study_guide.utils.io import ObjectStore, StorageWriteError, put_json

logger = logging.getLogger(__name__)


@dataclass
class StageAttempt:
    stage: str
    label: str
    model: str = ""
    input_chars: int = 0
    output_chars: int = 0
    outcome: str = "ok"
    repaired: bool = False
    failures: List[str] = field(default_factory=list)
    duration_s: float = 0.0


# Append-only trace of stage attempts for one run; never drives control flow
class DiagnosticsRecorder:

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.attempts: List[StageAttempt] = []
        self.events: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def record(self, attempt: StageAttempt) -> None:
        with self._lock:
            self.attempts.append(attempt)

    def event(self, stage: str, message: str, **data: Any) -> None:
        with self._lock:
            self.events.append({"stage": stage, "message": message, **data})

    def count(self, stage: str, label_prefix: Optional[str] = None) -> int:
        with self._lock:
            return sum(
                1 for a in self.attempts
                if a.stage == stage and (label_prefix is None or a.label.startswith(label_prefix))
            )

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "request_id": self.request_id,
                "attempts": [asdict(a) for a in self.attempts],
                "events": list(self.events),
            }

    @property
    def key(self) -> str:
        return f"diagnostics/{self.request_id}.json"

    # Diagnostics are best effort; a failed write is logged, not raised
    def save(self, store: ObjectStore) -> Optional[str]:
        try:
            put_json(store, self.key, self.to_dict())
        except StorageWriteError as err:
            logger.warning("[%s] Could not write diagnostics: %s", self.request_id, err)
            return None
        return self.key
