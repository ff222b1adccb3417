"""Async document stores: an SQLite backend and an in-memory fake with the same semantics."""

import asyncio
import copy
import json
import logging
import os
import re
import sqlite3
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from catalog.errors import InvalidIdentifier, StoreUnavailable

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Filter = Dict[str, Any]
Sort = Sequence[Tuple[str, int]]

ASCENDING = 1
DESCENDING = -1

_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")
_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def new_id() -> str:
    """Generate a 24 hex character identifier from 12 random bytes."""
    return os.urandom(12).hex()


def is_valid_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_ID_RE.match(value))


def check_id(value: Any) -> str:
    """Pre-check run before any by-id lookup; returns the normalised identifier."""
    if not is_valid_id(value):
        raise InvalidIdentifier(value)
    return value.lower()


def _fold(value: Any) -> Any:
    return value.casefold() if isinstance(value, str) else value


def _check_field(name: str) -> str:
    if not _FIELD_RE.match(name):
        raise ValueError(f"Unsupported field name: {name!r}")
    return name


def matches(doc: Document, filter: Optional[Filter], case_insensitive: bool = False) -> bool:
    """Equality filter; a list field matches when it contains the value."""
    for field, expected in (filter or {}).items():
        actual = doc.get(field)
        if case_insensitive:
            expected = _fold(expected)
            actual = [_fold(a) for a in actual] if isinstance(actual, list) else _fold(actual)
        if isinstance(actual, list):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


def project(doc: Document, projection: Optional[Sequence[str]]) -> Document:
    if not projection:
        return doc
    return {key: doc[key] for key in ("_id", *projection) if key in doc}


class DocumentStore(ABC):
    """Async document store holding one collection per entity kind.

    Identifiers are generated by the store on insert. References between
    documents are plain identifiers; nothing here enforces that they resolve.
    """

    @abstractmethod
    async def find_all(
        self,
        collection: str,
        filter: Optional[Filter] = None,
        sort: Optional[Sort] = None,
        projection: Optional[Sequence[str]] = None,
    ) -> List[Document]:
        ...

    @abstractmethod
    async def find_by_id(self, collection: str, doc_id: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def find_one(
        self, collection: str, match: Filter, case_insensitive: bool = False
    ) -> Optional[Document]:
        ...

    @abstractmethod
    async def insert(self, collection: str, doc: Document) -> Document:
        ...

    @abstractmethod
    async def update_by_id(self, collection: str, doc_id: str, doc: Document) -> Optional[Document]:
        ...

    @abstractmethod
    async def delete_by_id(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    async def count(self, collection: str, filter: Optional[Filter] = None) -> int:
        ...

    async def ping(self) -> bool:
        return True

    def close(self) -> None:
        return None


class MemoryDocumentStore(DocumentStore):
    """Dict-backed store with the same semantics as the SQLite one.

    Every call suspends once, like a real store round trip, so concurrent
    requests interleave at the same points they would against a database.
    """

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Document]] = {}

    def _coll(self, collection: str) -> Dict[str, Document]:
        return self._collections.setdefault(collection, {})

    async def find_all(self, collection, filter=None, sort=None, projection=None):
        await asyncio.sleep(0)
        docs = [copy.deepcopy(d) for d in self._coll(collection).values() if matches(d, filter)]
        # Stable sorts applied from the least significant key up; missing values first, as in SQLite.
        for field, direction in reversed(list(sort or [])):
            docs.sort(
                key=lambda d, f=field: (d.get(f) is not None, d.get(f) if d.get(f) is not None else ""),
                reverse=direction == DESCENDING,
            )
        return [project(d, projection) for d in docs]

    async def find_by_id(self, collection, doc_id):
        doc_id = check_id(doc_id)
        await asyncio.sleep(0)
        doc = self._coll(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def find_one(self, collection, match, case_insensitive=False):
        await asyncio.sleep(0)
        for doc in self._coll(collection).values():
            if matches(doc, match, case_insensitive):
                return copy.deepcopy(doc)
        return None

    async def insert(self, collection, doc):
        await asyncio.sleep(0)
        stored = copy.deepcopy(doc)
        stored["_id"] = check_id(stored["_id"]) if stored.get("_id") else new_id()
        self._coll(collection)[stored["_id"]] = stored
        return copy.deepcopy(stored)

    async def update_by_id(self, collection, doc_id, doc):
        doc_id = check_id(doc_id)
        await asyncio.sleep(0)
        coll = self._coll(collection)
        if doc_id not in coll:
            return None
        stored = copy.deepcopy(doc)
        stored["_id"] = doc_id
        coll[doc_id] = stored
        return copy.deepcopy(stored)

    async def delete_by_id(self, collection, doc_id):
        doc_id = check_id(doc_id)
        await asyncio.sleep(0)
        self._coll(collection).pop(doc_id, None)

    async def count(self, collection, filter=None):
        await asyncio.sleep(0)
        return sum(1 for d in self._coll(collection).values() if matches(d, filter))


class SQLiteDocumentStore(DocumentStore):
    """Documents kept as JSON bodies in a single SQLite table.

    A fresh connection is opened per operation inside a worker thread, so the
    event loop never blocks on disk I/O.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        try:
            self._create_tables()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open catalog database {path}: {exc}") from exc
        logger.info("Document store ready at %s", path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        conn.create_function("casefold", 1, _fold, deterministic=True)
        return conn

    def _create_tables(self) -> None:
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    body TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, id)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)")
            conn.commit()
        finally:
            conn.close()

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            logger.exception("SQLite operation %s failed", func.__name__)
            raise StoreUnavailable(str(exc)) from exc

    @staticmethod
    def _row_to_doc(row: sqlite3.Row) -> Document:
        doc = json.loads(row["body"])
        doc["_id"] = row["id"]
        return doc

    @staticmethod
    def _encode(doc: Document) -> str:
        body = {k: v for k, v in doc.items() if k != "_id"}
        return json.dumps(body, ensure_ascii=False)

    @staticmethod
    def _where(collection: str, filter: Optional[Filter], case_insensitive: bool = False) -> Tuple[str, List[Any]]:
        clauses = ["collection = ?"]
        params: List[Any] = [collection]
        for field, value in (filter or {}).items():
            if field == "_id":
                clauses.append("id = ?")
                params.append(value)
                continue
            path = f"$.{_check_field(field)}"
            # json_each yields the scalar itself or every element of a list.
            if case_insensitive:
                clauses.append("EXISTS (SELECT 1 FROM json_each(body, ?) WHERE casefold(json_each.value) = ?)")
                params.extend([path, _fold(value)])
            else:
                clauses.append("EXISTS (SELECT 1 FROM json_each(body, ?) WHERE json_each.value = ?)")
                params.extend([path, value])
        return " AND ".join(clauses), params

    # ------------------------- Reads ------------------------- #
    def _find_all(self, collection, filter, sort, projection):
        where, params = self._where(collection, filter)
        order = []
        for field, direction in sort or []:
            order.append(f"json_extract(body, ?) {'DESC' if direction == DESCENDING else 'ASC'}")
            params.append(f"$.{_check_field(field)}")
        order.append("rowid")
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT id, body FROM documents WHERE {where} ORDER BY {', '.join(order)}",
                params,
            ).fetchall()
            return [project(self._row_to_doc(row), projection) for row in rows]
        finally:
            conn.close()

    async def find_all(self, collection, filter=None, sort=None, projection=None):
        return await self._run(self._find_all, collection, filter, sort, projection)

    def _find_one(self, collection, filter, case_insensitive):
        where, params = self._where(collection, filter, case_insensitive)
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT id, body FROM documents WHERE {where} ORDER BY rowid LIMIT 1", params
            ).fetchone()
            return self._row_to_doc(row) if row else None
        finally:
            conn.close()

    async def find_by_id(self, collection, doc_id):
        doc_id = check_id(doc_id)
        return await self._run(self._find_one, collection, {"_id": doc_id}, False)

    async def find_one(self, collection, match, case_insensitive=False):
        return await self._run(self._find_one, collection, match, case_insensitive)

    def _count(self, collection, filter):
        where, params = self._where(collection, filter)
        conn = self._connect()
        try:
            return conn.execute(f"SELECT COUNT(*) FROM documents WHERE {where}", params).fetchone()[0]
        finally:
            conn.close()

    async def count(self, collection, filter=None):
        return await self._run(self._count, collection, filter)

    # ------------------------- Writes ------------------------- #
    def _insert(self, collection, doc):
        doc_id = check_id(doc["_id"]) if doc.get("_id") else new_id()
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO documents (collection, id, body) VALUES (?, ?, ?)",
                (collection, doc_id, self._encode(doc)),
            )
            conn.commit()
        finally:
            conn.close()
        stored = dict(doc)
        stored["_id"] = doc_id
        return stored

    async def insert(self, collection, doc):
        return await self._run(self._insert, collection, doc)

    def _update(self, collection, doc_id, doc):
        conn = self._connect()
        try:
            cursor = conn.execute(
                "UPDATE documents SET body = ? WHERE collection = ? AND id = ?",
                (self._encode(doc), collection, doc_id),
            )
            conn.commit()
            if cursor.rowcount == 0:
                return None
        finally:
            conn.close()
        stored = dict(doc)
        stored["_id"] = doc_id
        return stored

    async def update_by_id(self, collection, doc_id, doc):
        doc_id = check_id(doc_id)
        return await self._run(self._update, collection, doc_id, doc)

    def _delete(self, collection, doc_id):
        conn = self._connect()
        try:
            conn.execute("DELETE FROM documents WHERE collection = ? AND id = ?", (collection, doc_id))
            conn.commit()
        finally:
            conn.close()

    async def delete_by_id(self, collection, doc_id):
        doc_id = check_id(doc_id)
        await self._run(self._delete, collection, doc_id)

    def _ping(self):
        conn = self._connect()
        try:
            conn.execute("SELECT 1")
            return True
        finally:
            conn.close()

    async def ping(self):
        try:
            return await self._run(self._ping)
        except StoreUnavailable:
            return False
