from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import logging
import threading

from study_guide.evaluation.coverage import STATUS_FAILED, STATUS_OK, STATUS_UNPROCESSED, RangeStatus
from study_guide.utils.chunking import split_range
from study_guide.utils.io import ObjectStore, get_json, put_json

logger = logging.getLogger(__name__)

ENTRY_OK = "ok"
ENTRY_FAILED = "failed"
ENTRY_PARTIAL = "partial"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class ManifestEntry:
    start: int
    end: int
    status: str
    stored_key: Optional[str] = None
    retries: int = 0
    error_kind: Optional[str] = None
    error_detail: Optional[str] = None
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManifestEntry":
        return cls(
            start=int(data["start"]),
            end=int(data["end"]),
            status=str(data["status"]),
            stored_key=data.get("stored_key"),
            retries=int(data.get("retries", 0)),
            error_kind=data.get("error_kind"),
            error_detail=data.get("error_detail"),
            updated_at=str(data.get("updated_at", "")),
        )


def stepa_prefix(doc_key: str, mode: str, prompt_version: str) -> str:
    return f"machine/study-guides/{doc_key}/{mode}/stepA/{prompt_version}"


def chunk_payload_key(prefix: str, start: int, end: int) -> str:
    return f"{prefix}/chunk_{start}_{end}.json"


# Durable ledger of chunk attempts for one (doc key, mode, prompt version)
class ChunkManifest:

    def __init__(self, store: ObjectStore, doc_key: str, mode: str, prompt_version: str):
        self.store = store
        self.doc_key = doc_key
        self.mode = mode
        self.prompt_version = prompt_version
        self.entries: Dict[Tuple[int, int], ManifestEntry] = {}
        self._lock = threading.Lock()

    @property
    def prefix(self) -> str:
        return stepa_prefix(self.doc_key, self.mode, self.prompt_version)

    @property
    def key(self) -> str:
        return f"{self.prefix}/manifest.json"

    def payload_key(self, start: int, end: int) -> str:
        return chunk_payload_key(self.prefix, start, end)

    @classmethod
    def load(cls, store: ObjectStore, doc_key: str, mode: str, prompt_version: str) -> "ChunkManifest":
        manifest = cls(store, doc_key, mode, prompt_version)
        data = get_json(store, manifest.key)
        if data is None:
            return manifest

        if not isinstance(data, dict) or data.get("prompt_version") != prompt_version:
            logger.warning("Ignoring unreadable manifest at %s", manifest.key)
            return manifest

        for raw in data.get("entries", []):
            try:
                entry = ManifestEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed manifest entry %r", raw)
                continue
            manifest.entries[(entry.start, entry.end)] = entry

        logger.info("Loaded manifest %s with %d entries", manifest.key, len(manifest.entries))
        return manifest

    def to_dict(self) -> Dict[str, Any]:
        ordered = sorted(self.entries.values(), key=lambda e: (e.start, e.end))
        return {
            "doc_key": self.doc_key,
            "mode": self.mode,
            "prompt_version": self.prompt_version,
            "entries": [asdict(e) for e in ordered],
        }

    def get(self, start: int, end: int) -> Optional[ManifestEntry]:
        with self._lock:
            return self.entries.get((start, end))

    # Replace the entry for a range and persist the whole manifest
    def record(self, entry: ManifestEntry) -> ManifestEntry:
        if not entry.updated_at:
            entry = ManifestEntry(**{**asdict(entry), "updated_at": utc_now()})
        with self._lock:
            self.entries[(entry.start, entry.end)] = entry
            put_json(self.store, self.key, self.to_dict())
        return entry

    # Gapless run of ok entries covering [start, end]; longer entries are tried first
    # and a dead end backtracks to the next shorter entry at an earlier cursor
    def ok_chain(self, start: int, end: int) -> Optional[List[ManifestEntry]]:
        with self._lock:
            candidates = [
                e for e in self.entries.values()
                if e.status == ENTRY_OK and start <= e.start and e.end <= end
            ]

        by_start: Dict[int, List[ManifestEntry]] = {}
        for e in sorted(candidates, key=lambda e: e.end, reverse=True):
            by_start.setdefault(e.start, []).append(e)

        dead_ends = set()
        chain: List[ManifestEntry] = []
        # One iterator per cursor on the current path
        stack = [iter(by_start.get(start, []))]
        while stack:
            entry = next(stack[-1], None)
            if entry is None:
                stack.pop()
                if chain:
                    dead_ends.add(chain.pop().end + 1)
                continue
            cursor = entry.end + 1
            if cursor in dead_ends:
                continue
            chain.append(entry)
            if cursor > end:
                return chain
            stack.append(iter(by_start.get(cursor, [])))

        if candidates:
            logger.debug("No gapless ok chain for %d-%d", start, end)
        return None

    # Reconstruct coverage of a range from manifest entries alone
    def resolve(self, start: int, end: int) -> List[RangeStatus]:
        out: List[RangeStatus] = []
        stack = [(start, end)]

        while stack:
            s, e = stack.pop()
            chain = self.ok_chain(s, e)
            if chain:
                out.extend(RangeStatus(c.start, c.end, STATUS_OK) for c in chain)
                continue

            entry = self.get(s, e)
            if entry is not None and entry.status == ENTRY_PARTIAL and e > s:
                left, right = split_range(s, e)
                stack.append(right)
                stack.append(left)
            elif entry is not None and entry.status == ENTRY_FAILED:
                out.append(RangeStatus(s, e, STATUS_FAILED, entry.error_kind, entry.error_detail))
            else:
                out.append(RangeStatus(s, e, STATUS_UNPROCESSED))

        return sorted(out, key=lambda r: r.start)
