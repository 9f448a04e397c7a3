"""String-keyed blob stores.

The persistence adapter only needs get/set/remove on strings, so anything
that offers those three can stand in for the on-disk store.
"""

import os
import re
import tempfile
from pathlib import Path

from pt.common.logger import log

_VALID_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


def _check_key(key):
    if not isinstance(key, str) or not _VALID_KEY.match(key) or key.startswith("."):
        raise ValueError(f"Invalid store key: {key!r}")
    return key


class MemoryStore:
    """In-process store.  Nothing survives the process."""

    def __init__(self, initial=None):
        self._data = dict(initial or {})

    def get(self, key):
        return self._data.get(_check_key(key))

    def set(self, key, value):
        self._data[_check_key(key)] = str(value)

    def remove(self, key):
        self._data.pop(_check_key(key), None)


class FileStore:
    """One ``<key>.json`` file per key inside ``directory``.

    Writes go to a temp file in the same directory and are swapped in with
    os.replace, so a crash mid-write never leaves a half-written blob.
    """

    def __init__(self, directory):
        self.directory = Path(directory)

    def _path(self, key):
        return self.directory / f"{_check_key(key)}.json"

    def get(self, key):
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key, value):
        path = self._path(key)
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.remove(tmp_name)
            except OSError:
                pass
            raise
        log.debug(f"Wrote {len(value)} chars to '{path}'")

    def remove(self, key):
        path = self._path(key)
        try:
            path.unlink()
            log.debug(f"Removed '{path}'")
        except FileNotFoundError:
            pass
