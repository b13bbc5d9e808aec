"""
Local persistence for the Visual Turing Test.

Three pieces:
- LocalStorage: key-value JSON store on local disk (one file per key)
- DebouncedWriter: coalesces bursts of state writes into one
- ExportArchive: collection folder of exported result documents

Layout:
    outputs/local_storage/
        userData.json
    collection/
        vtt_results_Dr_Ada.json
        vtt_results_Dr_Grace.json
        ...

Durability:
    Writes go through DebouncedWriter with a short quiet period. A process
    that dies inside that window loses the pending snapshot. Callers that
    need the final state on disk must call flush() (the Session Store does
    this on close()).
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from vtt.utils.helpers import generate_export_filename

logger = logging.getLogger(__name__)


class LocalStorage:
    """
    Key-value JSON storage.

    Each key is stored as <base_dir>/<key>.json and written atomically
    (temp file + os.replace), so readers never see a half-written value.
    """

    def __init__(self, base_dir: str = "outputs/local_storage"):
        """
        Initialize storage.

        Args:
            base_dir: Directory holding one JSON file per key
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"LocalStorage initialized: {self.base_dir}")

    def _path_for(self, key: str) -> Path:
        if not key or '/' in key or '\\' in key or key.startswith('.'):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.base_dir / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        """
        Read raw value for key.

        Returns:
            str contents, or None if key is absent
        """
        path = self._path_for(key)
        if not path.exists():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()

    def set_item(self, key: str, value: str) -> None:
        """Atomically replace the value stored under key."""
        path = self._path_for(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.base_dir, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug(f"LocalStorage: wrote {key} ({len(value)} bytes)")

    def remove_item(self, key: str) -> None:
        path = self._path_for(key)
        if path.exists():
            path.unlink()
            logger.info(f"LocalStorage: removed {key}")

    def load_json(self, key: str) -> Optional[Any]:
        """
        Read and parse the value under key.

        Unreadable files, bytes that are not UTF-8 and corrupt JSON are
        logged and reported as absent.

        Returns:
            Parsed value or None
        """
        try:
            raw = self.get_item(key)
            if raw is None:
                return None
            return json.loads(raw)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"LocalStorage: unreadable value under {key}: {e}")
            return None

    def save_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value, indent=2, ensure_ascii=False))


class DebouncedWriter:
    """
    Coalescing fire-and-forget writer.

    schedule() records the latest payload and (re)starts a quiet-period
    timer. When the timer fires, only the most recent payload is written.
    At most one write runs at a time.

    With delay_seconds == 0 every schedule() writes synchronously.
    """

    def __init__(self, write_fn: Callable[[Any], None], delay_seconds: float = 0.3):
        """
        Args:
            write_fn: Called with the payload to persist
            delay_seconds: Quiet period before writing
        """
        self.write_fn = write_fn
        self.delay_seconds = delay_seconds
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending: Any = None
        self._has_pending = False
        self._closed = False
        self.write_count = 0

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._has_pending

    def schedule(self, payload: Any) -> None:
        """
        Queue payload for writing, replacing any not-yet-written payload.

        Raises:
            RuntimeError: If the writer has been closed
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("DebouncedWriter is closed")
            self._pending = payload
            self._has_pending = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if self.delay_seconds > 0:
                self._timer = threading.Timer(self.delay_seconds, self._fire)
                self._timer.daemon = True
                self._timer.start()

        if self.delay_seconds == 0:
            self._write_pending()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self._write_pending()

    def _write_pending(self) -> None:
        with self._write_lock:
            with self._lock:
                if not self._has_pending:
                    return
                payload = self._pending
                self._pending = None
                self._has_pending = False
            try:
                self.write_fn(payload)
                self.write_count += 1
            except Exception as e:
                # Nobody awaits this write; log and keep the session running
                logger.error(f"Debounced write failed: {e}")

    def flush(self) -> None:
        """Write any pending payload now, on the calling thread."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self._write_pending()

    def cancel(self) -> None:
        """
        Drop any pending payload without writing it.

        Waits for a write already in flight, so nothing lands after return.
        """
        with self._write_lock:
            with self._lock:
                if self._timer is not None:
                    self._timer.cancel()
                    self._timer = None
                self._pending = None
                self._has_pending = False

    def close(self) -> None:
        """Flush and refuse further payloads."""
        self.flush()
        with self._lock:
            self._closed = True


class ExportArchive:
    """
    Folder of exported result documents (one JSON file per tester).

    Listing is partial-failure tolerant: a file that cannot be read or
    parsed is logged and skipped.
    """

    def __init__(self, collection_dir: str = "collection"):
        self.collection_dir = Path(collection_dir)

    def save_export(self, export_doc: Dict[str, Any]) -> str:
        """
        Write an export document.

        Filename is vtt_results_<tester>.json; an existing file for the
        same tester is replaced.

        Args:
            export_doc: Output of SessionStore.export_all()

        Returns:
            str: Absolute path of the written file
        """
        tester = export_doc.get('testerInfo', {}).get('tester', '')
        filename = generate_export_filename(tester).replace('/', '_').replace('\\', '_')

        self.collection_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.collection_dir / filename
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(export_doc, f, indent=2, ensure_ascii=False)

        logger.info(f"Saved export for '{tester}': {filename}")
        return str(filepath.absolute())

    def list_exports(self) -> List[Dict[str, Any]]:
        """
        Read every *.json document in the collection.

        Returns:
            list: Parsed documents in filename order (unparseable files skipped)

        Raises:
            FileNotFoundError: If the collection directory does not exist
        """
        if not self.collection_dir.is_dir():
            raise FileNotFoundError(f"Collection directory not found: {self.collection_dir}")

        documents = []
        for path in sorted(self.collection_dir.glob("*.json")):
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
                logger.error(f"Error parsing JSON from {path.name}: {e}")
                continue
            if not isinstance(data, dict):
                logger.error(f"Skipping {path.name}: top-level value is not an object")
                continue
            documents.append(data)

        logger.info(f"Loaded {len(documents)} export(s) from {self.collection_dir}")
        return documents
