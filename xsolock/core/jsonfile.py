from __future__ import annotations

import json
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Optional, Tuple


@dataclass(frozen=True)
class ReadResult:
    """
    Outcome of reading one JSON document.

    `error` is one of: "missing", "empty", "wrong_type", "corrupt_json:<detail>"
    or an OS error string. Missing and empty files are not corrupt; callers
    decide whether they mean "use defaults".
    """

    ok: bool
    data: Any
    error: Optional[str] = None

    @property
    def corrupt(self) -> bool:
        return not self.ok and self.error not in {"missing", "empty"}


def _stamp() -> str:
    # several writes per second are normal for the tokens file
    return time.strftime("%Y%m%d_%H%M%S", time.gmtime()) + f"_{time.time_ns() % 1_000_000:06d}"


def ensure_dirs(*dirs: str) -> None:
    for d in dirs:
        if d:
            os.makedirs(d, exist_ok=True)


def read_json(path: str, *, expect: type = dict) -> ReadResult:
    empty = expect()
    if not os.path.exists(path):
        return ReadResult(ok=False, data=empty, error="missing")
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except (OSError, UnicodeDecodeError) as e:
        return ReadResult(ok=False, data=empty, error=str(e))
    if not raw.strip():
        return ReadResult(ok=False, data=empty, error="empty")
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as e:
        return ReadResult(ok=False, data=empty, error=f"corrupt_json:{e}")
    if not isinstance(obj, expect):
        return ReadResult(ok=False, data=empty, error="wrong_type")
    return ReadResult(ok=True, data=obj)


def _prune(backups_dir: str, base: str, reason: str, keep: int) -> None:
    suffix = f".{reason}.json"
    try:
        items = [os.path.join(backups_dir, f) for f in os.listdir(backups_dir) if f.startswith(f"{base}.") and f.endswith(suffix)]
    except OSError:
        return
    items.sort(key=os.path.getmtime, reverse=True)
    for p in items[max(0, int(keep)) :]:
        try:
            os.remove(p)
        except OSError:
            pass


def backup_file(path: str, backups_dir: str, *, reason: str = "prewrite", keep: int = 10) -> Optional[str]:
    """Copy `path` to backups/<name>.<stamp>.<reason>.json, keeping the newest `keep` per reason."""
    if keep <= 0 or not os.path.exists(path):
        return None
    ensure_dirs(backups_dir)
    base = os.path.basename(path)
    out = os.path.join(backups_dir, f"{base}.{_stamp()}.{reason}.json")
    try:
        shutil.copy2(path, out)
    except OSError:
        return None
    _prune(backups_dir, base, reason, keep)
    return out


def atomic_write_json(path: str, data: Any, backups_dir: Optional[str] = None, *, keep: int = 10) -> None:
    """Write via temp file + os.replace. Raises OSError; the old file stays intact on failure."""
    directory = os.path.dirname(os.path.abspath(path))
    ensure_dirs(directory)
    if backups_dir:
        backup_file(path, backups_dir, reason="prewrite", keep=keep)
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        try:
            if os.path.exists(tmp):
                os.remove(tmp)
        except OSError:
            pass


def quarantine(path: str, backups_dir: Optional[str] = None) -> Optional[str]:
    """Move an unreadable file to <backups>/<name>.<stamp>.corrupt.json. Never pruned."""
    if not os.path.exists(path):
        return None
    target = backups_dir or os.path.dirname(os.path.abspath(path))
    ensure_dirs(target)
    dst = os.path.join(target, f"{os.path.basename(path)}.{_stamp()}.corrupt.json")
    try:
        shutil.move(path, dst)
    except OSError:
        return None
    return dst


def recover_from_corrupt(path: str, backups_dir: str, last_known_good_dir: str, *, keep: int = 10) -> Tuple[Any, bool]:
    """
    Quarantine a corrupt document and restore last_known_good/<name> if it reads.
    Returns (data, recovered).
    """
    ensure_dirs(backups_dir, last_known_good_dir)
    quarantine(path, backups_dir)
    rr = read_json(os.path.join(last_known_good_dir, os.path.basename(path)))
    if rr.ok:
        atomic_write_json(path, rr.data, backups_dir, keep=keep)
        return rr.data, True
    return {}, False


def snapshot_last_known_good(src_dir: str, last_known_good_dir: str) -> None:
    ensure_dirs(last_known_good_dir)
    for name in os.listdir(src_dir):
        src = os.path.join(src_dir, name)
        if not name.endswith(".json") or not os.path.isfile(src):
            continue
        try:
            shutil.copy2(src, os.path.join(last_known_good_dir, name))
        except OSError:
            pass
