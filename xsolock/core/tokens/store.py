from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from xsolock.core.errors import StorageError, ValidationError
from xsolock.core.jsonfile import atomic_write_json, quarantine, read_json
from xsolock.core.logger import get_logger
from xsolock.core.tokens.models import TokenRecord, TokenStatus


Predicate = Callable[[TokenRecord], bool]
Mutation = Callable[[TokenRecord], None]


class TokenStore:
    """
    In-memory token collection backed by one JSON document.

    Every change that alters at least one record rewrites the whole file
    atomically. A failed write is logged and reported; the in-memory state
    stays authoritative until the next successful save.

    A `read_only` store never touches the file: load only reads, and any
    save raises StorageError.
    """

    def __init__(
        self,
        path: str,
        *,
        backups_dir: Optional[str] = None,
        backup_keep: int = 20,
        logger=None,
        error_reporter: Any = None,
        read_only: bool = False,
    ) -> None:
        self.path = path
        self.backups_dir = backups_dir
        self.backup_keep = int(backup_keep)
        self.logger = logger or get_logger()
        self.error_reporter = error_reporter
        self.read_only = read_only
        self._lock = threading.RLock()
        self._records: List[TokenRecord] = []
        self._index: Dict[str, TokenRecord] = {}
        # entries that failed validation are carried through saves untouched
        self._unparsed: List[Any] = []
        self.last_save_error: Optional[str] = None

    # ---- lifecycle ----
    def load(self) -> int:
        """
        Read the tokens file into memory.

        Writable stores also rewrite the file here: a missing or empty file
        is replaced by `[]`, and an unreadable one is moved to the backups
        directory (`<name>.<stamp>.corrupt.json`) before `[]` is written in
        its place. Read-only stores only log the warning.
        """
        rr = read_json(self.path, expect=list)
        records: List[TokenRecord] = []
        unparsed: List[Any] = []
        if rr.corrupt:
            moved = None if self.read_only else quarantine(self.path, self.backups_dir)
            self.logger.warning(f"WARN: {self.path} invalid; using empty store. Reason: {rr.error} (moved to {moved})")
        seen: set[str] = set()
        for item in rr.data:
            try:
                rec = TokenRecord.model_validate(item)
            except PydanticValidationError as e:
                self.logger.warning(f"WARN: skipping invalid token record: {e.errors(include_url=False)[:1]}")
                unparsed.append(item)
                continue
            if rec.id in seen:
                self.logger.warning(f"WARN: duplicate token id {rec.id}; keeping first occurrence")
                unparsed.append(item)
                continue
            seen.add(rec.id)
            records.append(rec)
        with self._lock:
            self._records = records
            self._index = {r.id: r for r in records}
            self._unparsed = unparsed
        if not rr.ok and not self.read_only:
            self.save()
        return len(records)

    def save(self) -> bool:
        if self.read_only:
            raise StorageError("Token store is read-only.", path=self.path)
        with self._lock:
            items = [r.to_json() for r in self._records] + list(self._unparsed)
            try:
                atomic_write_json(self.path, items, self.backups_dir, keep=self.backup_keep)
            except OSError as e:
                self.last_save_error = str(e)
                self.logger.error(f"ERROR: Failed to save {self.path}: {e}")
                if self.error_reporter is not None:
                    self.error_reporter.write_error(StorageError(path=self.path, error=str(e)), trace_id="store", subsystem="token_store")
                return False
            self.last_save_error = None
            return True

    # ---- lookups (return copies; callers change records through mutate) ----
    def find_by_id(self, token_id: str) -> Optional[TokenRecord]:
        with self._lock:
            rec = self._index.get(str(token_id))
            return rec.model_copy() if rec is not None else None

    def find_by_id_and_batch(self, token_id: str, batch_id: str) -> Optional[TokenRecord]:
        rec = self.find_by_id(token_id)
        if rec is None or rec.batch_id != batch_id:
            return None
        return rec

    def filter(self, predicate: Optional[Predicate] = None) -> List[TokenRecord]:
        with self._lock:
            return [r.model_copy() for r in self._records if predicate is None or predicate(r)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def batches(self) -> List[str]:
        with self._lock:
            return sorted({r.batch_id for r in self._records})

    def counts(self, batch: Optional[str] = None) -> Dict[str, int]:
        out = {s.value: 0 for s in TokenStatus}
        with self._lock:
            for r in self._records:
                if batch is not None and r.batch_id != batch:
                    continue
                out[r.status.value] += 1
        return out

    # ---- mutations ----
    def mutate(self, token_id: str, fn: Mutation) -> bool:
        with self._lock:
            rec = self._index.get(str(token_id))
            if rec is None:
                return False
            if not self._apply(rec, fn):
                return False
            self.save()
            return True

    def mutate_many(self, predicate: Predicate, fn: Mutation) -> List[str]:
        changed: List[str] = []
        with self._lock:
            for rec in self._records:
                if predicate(rec) and self._apply(rec, fn):
                    changed.append(rec.id)
            if changed:
                self.save()
        return changed

    def add(self, records: Iterable[TokenRecord]) -> int:
        new = list(records)
        with self._lock:
            ids = [r.id for r in new]
            if len(set(ids)) != len(ids) or any(i in self._index for i in ids):
                raise ValidationError("Token ids must be unique.", count=len(ids))
            for r in new:
                self._records.append(r)
                self._index[r.id] = r
            if new:
                self.save()
        return len(new)

    def replace_all(self, records: Iterable[TokenRecord]) -> int:
        """Issuance reset: swap the whole collection and save."""
        new = list(records)
        if len({r.id for r in new}) != len(new):
            raise ValidationError("Token ids must be unique.", count=len(new))
        with self._lock:
            self._records = new
            self._index = {r.id: r for r in new}
            self._unparsed = []
            self.save()
        return len(new)

    def reconcile_orphans(self) -> int:
        """IN_USE records left by a crash can never be finalized; cancel them."""
        changed = self.mutate_many(lambda r: r.status == TokenStatus.IN_USE, _cancel_orphan)
        if changed:
            self.logger.info(f"Orphan recovery: cancelled {len(changed)} token(s) left IN_USE")
        return len(changed)

    @staticmethod
    def _apply(rec: TokenRecord, fn: Mutation) -> bool:
        before = rec.model_dump()
        work = rec.model_copy()
        fn(work)
        after = work.model_dump()
        if after == before:
            return False
        for key, value in after.items():
            setattr(rec, key, value)
        return True


def _cancel_orphan(rec: TokenRecord) -> None:
    rec.status = TokenStatus.CANCELLED
    rec.completed_at = None
