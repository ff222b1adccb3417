"""Duplicate resolution for authors and genres, and the delete guard.

Both are check-then-act sequences over the store with no locking: two
concurrent requests can both pass the check before either acts.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from catalog.database import DocumentStore, check_id
from catalog.errors import IntegrityBlocked, NotFound
from catalog.models import KINDS, Author, Book, BookInstance, Genre, display_name
from catalog.references import load_entity

logger = logging.getLogger(__name__)

# Fields that define identity for the kinds with soft uniqueness.
MATCH_FIELDS: Dict[str, Tuple[str, ...]] = {
    Author.kind: ("first_name", "family_name"),
    Genre.kind: ("name",),
}

# kind -> (dependent entity class, reference field on the dependent)
DEPENDENTS: Dict[str, Tuple[Type[Any], str]] = {
    Author.kind: (Book, "author"),
    Genre.kind: (Book, "genre"),
    Book.kind: (BookInstance, "book"),
}


@dataclass
class Resolution:
    entity: Any
    created: bool


@dataclass
class DeleteCheck:
    kind: str
    target: Optional[Any]
    dependents: List[Any] = field(default_factory=list)

    @property
    def allowed(self) -> bool:
        return not self.dependents

    def raise_if_blocked(self) -> None:
        if not self.allowed:
            raise IntegrityBlocked(self.kind, self.target.id, self.dependents)


async def save(store: DocumentStore, entity: Any) -> Any:
    """Insert a new entity, or replace in place when it carries an identifier."""
    cls = type(entity)
    doc = entity.to_document()
    if entity.id:
        stored = await store.update_by_id(cls.collection, entity.id, doc)
        if stored is None:
            raise NotFound(f"{cls.__name__} not found")
        logger.info("Updated %s %s", cls.kind, stored["_id"])
    else:
        stored = await store.insert(cls.collection, doc)
        logger.info("Created %s %s", cls.kind, stored["_id"])
    return cls.from_document(stored)


async def resolve_or_create(store: DocumentStore, candidate: Any, match_fields: Sequence[str]) -> Resolution:
    """Return an existing case-insensitive match, or persist the candidate.

    A match wins even on update, including when it is a different record
    than the one being edited; the candidate is then discarded.
    """
    cls = type(candidate)
    doc = candidate.to_document()
    match = {name: doc[name] for name in match_fields}
    existing = await store.find_one(cls.collection, match, case_insensitive=True)
    if existing is not None:
        entity = cls.from_document(existing)
        if candidate.id and candidate.id != entity.id:
            logger.warning(
                "Update of %s %s collides with %s %r; redirecting to it",
                cls.kind, candidate.id, entity.id, display_name(entity),
            )
        else:
            logger.info("%s %r already exists as %s", cls.kind, display_name(entity), entity.id)
        return Resolution(entity=entity, created=False)
    return Resolution(entity=await save(store, candidate), created=True)


async def can_delete(store: DocumentStore, kind: str, doc_id: str) -> DeleteCheck:
    """Look up the target and everything that references it, concurrently."""
    cls = KINDS[kind]
    doc_id = check_id(doc_id)
    if kind not in DEPENDENTS:
        return DeleteCheck(kind=kind, target=await load_entity(store, cls, doc_id))

    dependent_cls, ref_field = DEPENDENTS[kind]
    target, docs = await asyncio.gather(
        load_entity(store, cls, doc_id),
        store.find_all(dependent_cls.collection, {ref_field: doc_id}),
    )
    if target is None:
        return DeleteCheck(kind=kind, target=None)
    return DeleteCheck(kind=kind, target=target, dependents=[dependent_cls.from_document(d) for d in docs])


async def delete_entity(store: DocumentStore, kind: str, doc_id: str) -> DeleteCheck:
    """Delete unless dependents exist; a missing target is a no-op."""
    check = await can_delete(store, kind, doc_id)
    if check.target is None:
        logger.info("%s %s already absent; nothing to delete", kind, doc_id)
    elif not check.allowed:
        logger.info("Refusing to delete %s %s: %d dependent(s)", kind, doc_id, len(check.dependents))
    else:
        await store.delete_by_id(KINDS[kind].collection, check.target.id)
        logger.info("Deleted %s %s", kind, check.target.id)
    return check
