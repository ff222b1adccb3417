"""Reference resolution ("populate") between stored entities."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Type, TypeVar

from catalog.database import DocumentStore, is_valid_id
from catalog.models import KINDS, Author, Book, BookInstance, Genre, Ref

E = TypeVar("E")


@dataclass
class PopulatedBook:
    book: Book
    author: Optional[Author] = None
    genres: List[Genre] = field(default_factory=list)


@dataclass
class PopulatedInstance:
    instance: BookInstance
    book: Optional[Book] = None


def _class_for(ref: Ref) -> Type[Any]:
    for cls in KINDS.values():
        if cls.collection == ref.collection:
            return cls
    raise KeyError(ref.collection)


async def load_entity(store: DocumentStore, cls: Type[E], doc_id: str) -> Optional[E]:
    """Fetch one entity by identifier; raises InvalidIdentifier when malformed."""
    doc = await store.find_by_id(cls.collection, doc_id)  # type: ignore[attr-defined]
    return cls.from_document(doc) if doc is not None else None  # type: ignore[attr-defined]


async def resolve(store: DocumentStore, ref: Optional[Ref]) -> Optional[Any]:
    if ref is None:
        return None
    return await load_entity(store, _class_for(ref), ref.id)


async def resolve_many(store: DocumentStore, refs: Sequence[Ref]) -> List[Any]:
    """Resolve concurrently, keep reference order, drop dangling references."""
    resolved = await asyncio.gather(*(resolve(store, ref) for ref in refs))
    return [entity for entity in resolved if entity is not None]


async def missing_refs(store: DocumentStore, refs: Sequence[Ref]) -> List[Ref]:
    """References whose identifier is malformed or points at nothing."""
    async def _exists(ref: Ref) -> bool:
        if not is_valid_id(ref.id):
            return False
        return await resolve(store, ref) is not None

    found = await asyncio.gather(*(_exists(ref) for ref in refs))
    return [ref for ref, ok in zip(refs, found) if not ok]


async def populate_book(store: DocumentStore, book: Book) -> PopulatedBook:
    author, genres = await asyncio.gather(resolve(store, book.author), resolve_many(store, book.genre))
    return PopulatedBook(book=book, author=author, genres=genres)


async def populate_instance(store: DocumentStore, instance: BookInstance) -> PopulatedInstance:
    return PopulatedInstance(instance=instance, book=await resolve(store, instance.book))
