"""Key-value repositories behind the entity store.

Every entity type lives in its own map keyed by entity id. Two engines are
provided:

* ``MemoryRepository`` keeps the maps in process memory and snapshots each
  map to ``<data_dir>/<kind>.json`` after writes (configurable).
* ``SqlRepository`` keeps the maps in a single Flask-SQLAlchemy table of JSON
  payloads, so any database SQLAlchemy speaks can back the portal.

Transient kinds (OTP records) are never written to disk or to the database.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from models import ENTITY_TYPES, TRANSIENT_KINDS, Entity, StoredEntity

logger = logging.getLogger(__name__)


class Repository(ABC):
    """get/put/delete/list capability per entity kind."""

    @abstractmethod
    def get(self, kind: str, entity_id: str) -> Optional[Entity]:
        ...

    @abstractmethod
    def put(self, kind: str, entity: Entity) -> None:
        ...

    @abstractmethod
    def delete(self, kind: str, entity_id: str) -> bool:
        """Remove one entity; returns whether it existed."""

    @abstractmethod
    def list(self, kind: str) -> List[Entity]:
        ...

    def count(self, kind: str) -> int:
        return len(self.list(kind))

    @abstractmethod
    def clear(self) -> None:
        ...

    def flush(self) -> None:
        """Force persistence of everything held by the repository."""


class MemoryRepository(Repository):
    def __init__(
        self,
        data_dir: Optional[str] = None,
        snapshot_on_write: bool = True,
        transient_kinds: Iterable[str] = TRANSIENT_KINDS,
    ) -> None:
        self.data_dir = data_dir
        self.snapshot_on_write = snapshot_on_write
        self.transient_kinds = frozenset(transient_kinds)
        self._maps: Dict[str, Dict[str, Entity]] = {kind: {} for kind in ENTITY_TYPES}
        self._lock = threading.RLock()
        if data_dir:
            self.load_snapshot()

    def get(self, kind: str, entity_id: str) -> Optional[Entity]:
        with self._lock:
            entity = self._maps[kind].get(entity_id)
            return entity.clone() if entity is not None else None

    def put(self, kind: str, entity: Entity) -> None:
        with self._lock:
            self._maps[kind][entity.id] = entity.clone()
            if self.snapshot_on_write:
                self._save_kind(kind)

    def delete(self, kind: str, entity_id: str) -> bool:
        with self._lock:
            removed = self._maps[kind].pop(entity_id, None) is not None
            if removed and self.snapshot_on_write:
                self._save_kind(kind)
            return removed

    def list(self, kind: str) -> List[Entity]:
        with self._lock:
            return [entity.clone() for entity in self._maps[kind].values()]

    def count(self, kind: str) -> int:
        with self._lock:
            return len(self._maps[kind])

    def clear(self) -> None:
        with self._lock:
            for entries in self._maps.values():
                entries.clear()

    def flush(self) -> None:
        self.save_snapshot()

    def _path(self, kind: str) -> str:
        return os.path.join(self.data_dir, f"{kind}.json")

    def _save_kind(self, kind: str) -> None:
        if not self.data_dir or kind in self.transient_kinds:
            return
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            payload = {entity_id: entity.to_dict() for entity_id, entity in self._maps[kind].items()}
            target = self._path(kind)
            tmp_path = f"{target}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_path, target)
        except OSError:
            # The in-memory copy stays authoritative; the next write retries the snapshot.
            logger.exception("Snapshot write failed", extra={"kind": kind, "data_dir": self.data_dir})

    def save_snapshot(self) -> None:
        with self._lock:
            for kind in self._maps:
                self._save_kind(kind)

    def load_snapshot(self) -> None:
        if not self.data_dir or not os.path.isdir(self.data_dir):
            logger.info("No persisted data found, starting fresh", extra={"data_dir": self.data_dir})
            return
        with self._lock:
            for kind, entity_cls in ENTITY_TYPES.items():
                if kind in self.transient_kinds:
                    continue
                path = self._path(kind)
                if not os.path.isfile(path):
                    continue
                try:
                    with open(path, "r", encoding="utf-8") as handle:
                        raw = json.load(handle)
                except (OSError, ValueError):
                    logger.exception("Snapshot read failed", extra={"path": path})
                    continue
                self._maps[kind] = {key: entity_cls.from_dict(value) for key, value in raw.items()}
                logger.info("Snapshot loaded", extra={"kind": kind, "count": len(self._maps[kind])})


class SqlRepository(Repository):
    """Entity maps stored as JSON payload rows; requires an application context."""

    def __init__(self, db, transient_kinds: Iterable[str] = TRANSIENT_KINDS) -> None:
        self.db = db
        self.transient_kinds = frozenset(transient_kinds)
        self._transient = MemoryRepository(data_dir=None, snapshot_on_write=False)
        self._lock = threading.RLock()

    def _row(self, kind: str, entity_id: str) -> Optional[StoredEntity]:
        return StoredEntity.query.filter_by(kind=kind, entity_id=entity_id).first()

    def get(self, kind: str, entity_id: str) -> Optional[Entity]:
        if kind in self.transient_kinds:
            return self._transient.get(kind, entity_id)
        row = self._row(kind, entity_id)
        if row is None:
            return None
        return ENTITY_TYPES[kind].from_dict(row.payload)

    def put(self, kind: str, entity: Entity) -> None:
        if kind in self.transient_kinds:
            self._transient.put(kind, entity)
            return
        with self._lock:
            try:
                row = self._row(kind, entity.id)
                if row is None:
                    row = StoredEntity(kind=kind, entity_id=entity.id, payload=entity.to_dict())
                    self.db.session.add(row)
                else:
                    row.payload = entity.to_dict()
                self.db.session.commit()
            except SQLAlchemyError:
                self.db.session.rollback()
                raise

    def delete(self, kind: str, entity_id: str) -> bool:
        if kind in self.transient_kinds:
            return self._transient.delete(kind, entity_id)
        with self._lock:
            try:
                row = self._row(kind, entity_id)
                if row is None:
                    return False
                self.db.session.delete(row)
                self.db.session.commit()
                return True
            except SQLAlchemyError:
                self.db.session.rollback()
                raise

    def list(self, kind: str) -> List[Entity]:
        if kind in self.transient_kinds:
            return self._transient.list(kind)
        entity_cls = ENTITY_TYPES[kind]
        rows = StoredEntity.query.filter_by(kind=kind).order_by(StoredEntity.seq.asc()).all()
        return [entity_cls.from_dict(row.payload) for row in rows]

    def count(self, kind: str) -> int:
        if kind in self.transient_kinds:
            return self._transient.count(kind)
        return StoredEntity.query.filter_by(kind=kind).count()

    def clear(self) -> None:
        self._transient.clear()
        StoredEntity.query.delete()
        self.db.session.commit()

    def flush(self) -> None:
        self.db.session.commit()
