"""Page data for the home page, list pages and detail pages.

Independent lookups for one page are issued together and awaited jointly.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

from catalog.database import ASCENDING, DocumentStore, check_id
from catalog.errors import NotFound
from catalog.models import KINDS, Author, Book, BookInstance, Genre
from catalog.references import load_entity, populate_book, populate_instance


async def load_index(store: DocumentStore) -> Dict[str, Any]:
    books, instances, available, authors, genres = await asyncio.gather(
        store.count(Book.collection),
        store.count(BookInstance.collection),
        store.count(BookInstance.collection, {"status": "Available"}),
        store.count(Author.collection),
        store.count(Genre.collection),
    )
    return {
        "title": "Local Library Home",
        "book_count": books,
        "book_instance_count": instances,
        "book_instance_available_count": available,
        "author_count": authors,
        "genre_count": genres,
    }


async def load_list(store: DocumentStore, kind: str) -> Dict[str, Any]:
    if kind == Author.kind:
        docs = await store.find_all(Author.collection, sort=[("family_name", ASCENDING)])
        return {"title": "Author List", "items": [Author.from_document(d) for d in docs]}
    if kind == Genre.kind:
        docs = await store.find_all(Genre.collection, sort=[("name", ASCENDING)])
        return {"title": "Genre List", "items": [Genre.from_document(d) for d in docs]}
    if kind == Book.kind:
        docs = await store.find_all(Book.collection, sort=[("title", ASCENDING)], projection=["title", "author"])
        books = [Book.from_document(d) for d in docs]
        items = await asyncio.gather(*(populate_book(store, b) for b in books))
        return {"title": "Book List", "items": list(items)}
    if kind == BookInstance.kind:
        docs = await store.find_all(BookInstance.collection, sort=[("status", ASCENDING)])
        instances = [BookInstance.from_document(d) for d in docs]
        items = await asyncio.gather(*(populate_instance(store, i) for i in instances))
        return {"title": "Book Instance List", "items": list(items)}
    raise KeyError(kind)


async def _books_by(store: DocumentStore, field: str, doc_id: str) -> List[Book]:
    docs = await store.find_all(Book.collection, {field: doc_id}, projection=["title", "summary"])
    return [Book.from_document(d) for d in docs]


async def _instances_of(store: DocumentStore, book_id: str) -> List[BookInstance]:
    docs = await store.find_all(BookInstance.collection, {"book": book_id})
    return [BookInstance.from_document(d) for d in docs]


async def load_detail(store: DocumentStore, kind: str, doc_id: str) -> Dict[str, Any]:
    """Entity plus its dependents.

    Raises BadRequest for a malformed identifier and NotFound when the
    primary entity is missing; an empty dependent list is a normal result.
    """
    cls = KINDS[kind]
    doc_id = check_id(doc_id)

    if kind == Author.kind:
        author, books = await asyncio.gather(load_entity(store, Author, doc_id), _books_by(store, "author", doc_id))
        if author is None:
            raise NotFound("Author not found")
        return {"title": "Author Detail", "author": author, "books": books}

    if kind == Genre.kind:
        genre, books = await asyncio.gather(load_entity(store, Genre, doc_id), _books_by(store, "genre", doc_id))
        if genre is None:
            raise NotFound("Genre not found")
        return {"title": "Genre Detail", "genre": genre, "books": books}

    if kind == Book.kind:
        book, instances = await asyncio.gather(load_entity(store, Book, doc_id), _instances_of(store, doc_id))
        if book is None:
            raise NotFound("Book not found")
        return {"title": book.title, "detail": await populate_book(store, book), "instances": instances}

    instance = await load_entity(store, cls, doc_id)
    if instance is None:
        raise NotFound("Book instance not found")
    return {"title": f"Copy: {instance.imprint}", "detail": await populate_instance(store, instance)}
