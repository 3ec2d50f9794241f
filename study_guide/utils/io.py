import os
import json
import threading
from typing import Any, Dict, Optional
from pathlib import Path


class StorageWriteError(RuntimeError):
    pass


# Durable key/value store: get(key) -> bytes | None, put(key, bytes)
class ObjectStore:

    def get(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def put(self, key: str, data: bytes) -> None:
        raise NotImplementedError


# Files under a root directory, one per key
class LocalObjectStore(ObjectStore):

    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        parts = [p for p in key.split("/") if p not in ("", ".", "..")]
        return self.root.joinpath(*parts)

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.is_file():
            return None
        with open(path, "rb") as f:
            return f.read()

    # Write to a temp file then rename so readers never see a partial entry
    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        tmp = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except OSError as err:
            raise StorageWriteError(f"Failed to write {key}: {err}") from err


class MemoryObjectStore(ObjectStore):

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self.objects.get(key)

    def put(self, key: str, data: bytes) -> None:
        with self._lock:
            self.objects[key] = bytes(data)


def dumps_json(data: Any) -> bytes:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str).encode("utf-8")


def put_json(store: ObjectStore, key: str, data: Any) -> None:
    store.put(key, dumps_json(data))


# Parsed JSON at key, or None when absent/unreadable
def get_json(store: ObjectStore, key: str) -> Optional[Any]:
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None


def read_text(path: str) -> str:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


# Final Results JSON
def write_json(path: str, data: Dict[str, Any]):

    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, default=str)
