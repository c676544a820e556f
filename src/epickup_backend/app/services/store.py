# src/epickup_backend/app/services/store.py
# Document key-value stores. One instance per collection.
from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from epickup_backend.app.core.errors import UpstreamUnavailable

log = logging.getLogger(__name__)

T = TypeVar("T")
Record = Dict[str, Any]


class RecordStore:
    """
    Async document store keyed by a string id.

    ``create`` is create-if-absent and reports whether this call wrote the
    document; everything else is plain get/set/update. ``query`` is an
    equality match on a single field.
    """

    name: str = "records"

    async def get(self, key: str) -> Optional[Record]:
        raise NotImplementedError

    async def set(self, key: str, record: Record) -> None:
        raise NotImplementedError

    async def update(self, key: str, partial: Record) -> None:
        raise NotImplementedError

    async def create(self, key: str, record: Record) -> bool:
        raise NotImplementedError

    async def query(self, field: str, value: Any) -> List[Tuple[str, Record]]:
        raise NotImplementedError


class MemoryRecordStore(RecordStore):
    """Process-local store for development and tests. Copies on the way in and out."""

    def __init__(self, name: str = "records"):
        self.name = name
        self._docs: Dict[str, Record] = {}

    async def get(self, key: str) -> Optional[Record]:
        doc = self._docs.get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, key: str, record: Record) -> None:
        self._docs[key] = copy.deepcopy(record)

    async def update(self, key: str, partial: Record) -> None:
        if key not in self._docs:
            raise KeyError(f"{self.name}/{key} does not exist")
        self._docs[key].update(copy.deepcopy(partial))

    async def create(self, key: str, record: Record) -> bool:
        # no await between check and write: atomic on the event loop
        if key in self._docs:
            return False
        self._docs[key] = copy.deepcopy(record)
        return True

    async def query(self, field: str, value: Any) -> List[Tuple[str, Record]]:
        return [(k, copy.deepcopy(d)) for k, d in self._docs.items() if d.get(field) == value]

    def __len__(self) -> int:
        return len(self._docs)


class FirestoreRecordStore(RecordStore):
    """
    Firestore collection behind the RecordStore contract. The SDK is blocking,
    so every call runs in a worker thread bounded by ``timeout``; timeouts and
    Google API errors surface as UpstreamUnavailable.
    """

    def __init__(self, client: Any, collection: str, *, timeout: float = 10.0):
        self.name = collection
        self._col = client.collection(collection)
        self._timeout = timeout

    async def _run(self, op: str, fn: Callable[[], T]) -> T:
        from google.api_core import exceptions as gexc

        try:
            return await asyncio.wait_for(asyncio.to_thread(fn), timeout=self._timeout)
        except asyncio.TimeoutError:
            log.error("firestore %s on %s timed out after %.1fs", op, self.name, self._timeout)
            raise UpstreamUnavailable(details=f"firestore {op} timeout") from None
        except gexc.GoogleAPIError as ex:
            log.error("firestore %s on %s failed: %s", op, self.name, ex)
            raise UpstreamUnavailable(details=f"firestore {op} failed") from ex

    async def get(self, key: str) -> Optional[Record]:
        snap = await self._run("get", self._col.document(key).get)
        return snap.to_dict() if snap.exists else None

    async def set(self, key: str, record: Record) -> None:
        await self._run("set", lambda: self._col.document(key).set(record))

    async def update(self, key: str, partial: Record) -> None:
        await self._run("update", lambda: self._col.document(key).update(partial))

    async def create(self, key: str, record: Record) -> bool:
        from google.api_core.exceptions import AlreadyExists

        def _create() -> bool:
            try:
                self._col.document(key).create(record)
                return True
            except AlreadyExists:
                return False

        return await self._run("create", _create)

    async def query(self, field: str, value: Any) -> List[Tuple[str, Record]]:
        from google.cloud.firestore_v1.base_query import FieldFilter

        def _query() -> List[Tuple[str, Record]]:
            q = self._col.where(filter=FieldFilter(field, "==", value))
            return [(snap.id, snap.to_dict() or {}) for snap in q.stream()]

        return await self._run("query", _query)
