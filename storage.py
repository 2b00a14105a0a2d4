"""
ChatPilot — Snapshot Storage
Whole-file JSON snapshots written with temp-file-then-rename.
"""

import json
import logging
import os
import tempfile
from pathlib import Path

log = logging.getLogger("chatpilot.storage")


class StoreCorruptedError(ValueError):
    """Raised when a snapshot file exists but cannot be parsed."""


class PersistenceError(OSError):
    """Raised when a snapshot cannot be written to disk."""


def read_snapshot(path: str | Path) -> dict:
    """Read a JSON object snapshot.

    A missing or empty file yields an empty dict. Anything that is not a
    JSON object raises StoreCorruptedError.
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        log.info(f"Snapshot {path} does not exist, starting empty")
        return {}
    except OSError as e:
        raise StoreCorruptedError(f"failed to read snapshot {path}: {e}") from e

    if not raw.strip():
        log.info(f"Snapshot {path} is empty, starting empty")
        return {}

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StoreCorruptedError(f"malformed snapshot {path}: {e}") from e

    if not isinstance(data, dict):
        raise StoreCorruptedError(
            f"malformed snapshot {path}: expected object, got {type(data).__name__}"
        )
    return data


def atomic_write(path: str | Path, content: str):
    """Write content to path so readers only ever see the old or the new file.

    The temp file lives in the target directory so os.replace stays a
    same-filesystem rename.
    """
    path = Path(path)
    tmp_name = ""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
        )
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            except OSError as cleanup_err:
                log.warning(f"Could not remove temp snapshot {tmp_name}: {cleanup_err}")
        raise PersistenceError(f"failed to write snapshot {path}: {e}") from e


def parse_chat_id(raw_key: str) -> int:
    """Snapshot keys are chat ids rendered as strings."""
    try:
        return int(str(raw_key).strip())
    except ValueError as e:
        raise StoreCorruptedError(f"invalid chat id key: {raw_key!r}") from e
