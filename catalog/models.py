"""Catalog entities, the reference type between them, and values derived from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, ClassVar, Dict, List, Optional, Type, Union

URL_PREFIX = "/catalog"

# Loan states of a physical copy, in the order forms offer them.
STATUSES = ("Available", "Maintenance", "Loaned", "Reserved")
DEFAULT_STATUS = "Maintenance"


@dataclass(frozen=True)
class Ref:
    """Reference to another document by identifier.

    Stored as the bare identifier; nothing checks that the target exists.
    """

    collection: str
    id: str

    def __str__(self) -> str:
        return self.id


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _date_to_str(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _ref(collection: str, value: Any) -> Optional[Ref]:
    return Ref(collection, str(value)) if value else None


@dataclass
class Author:
    collection: ClassVar[str] = "authors"
    kind: ClassVar[str] = "author"

    first_name: str = ""
    family_name: str = ""
    date_of_birth: Optional[date] = None
    date_of_death: Optional[date] = None
    id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "first_name": self.first_name,
            "family_name": self.family_name,
            "date_of_birth": _date_to_str(self.date_of_birth),
            "date_of_death": _date_to_str(self.date_of_death),
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Author":
        return cls(
            first_name=doc.get("first_name", ""),
            family_name=doc.get("family_name", ""),
            date_of_birth=_parse_date(doc.get("date_of_birth")),
            date_of_death=_parse_date(doc.get("date_of_death")),
            id=doc.get("_id"),
        )


@dataclass
class Genre:
    collection: ClassVar[str] = "genres"
    kind: ClassVar[str] = "genre"

    name: str = ""
    id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {"name": self.name}

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Genre":
        return cls(name=doc.get("name", ""), id=doc.get("_id"))


@dataclass
class Book:
    collection: ClassVar[str] = "books"
    kind: ClassVar[str] = "book"

    title: str = ""
    author: Optional[Ref] = None
    summary: str = ""
    isbn: str = ""
    genre: List[Ref] = field(default_factory=list)
    id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "author": self.author.id if self.author else None,
            "summary": self.summary,
            "isbn": self.isbn,
            "genre": [g.id for g in self.genre],
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Book":
        return cls(
            title=doc.get("title", ""),
            author=_ref(Author.collection, doc.get("author")),
            summary=doc.get("summary", ""),
            isbn=doc.get("isbn", ""),
            genre=[Ref(Genre.collection, str(g)) for g in doc.get("genre") or []],
            id=doc.get("_id"),
        )


@dataclass
class BookInstance:
    collection: ClassVar[str] = "bookinstances"
    kind: ClassVar[str] = "bookinstance"

    book: Optional[Ref] = None
    imprint: str = ""
    status: str = DEFAULT_STATUS
    due_back: Optional[date] = None
    id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "book": self.book.id if self.book else None,
            "imprint": self.imprint,
            "status": self.status,
            "due_back": _date_to_str(self.due_back),
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "BookInstance":
        return cls(
            book=_ref(Book.collection, doc.get("book")),
            imprint=doc.get("imprint", ""),
            status=doc.get("status") or DEFAULT_STATUS,
            due_back=_parse_date(doc.get("due_back")),
            id=doc.get("_id"),
        )


Entity = Union[Author, Genre, Book, BookInstance]

KINDS: Dict[str, Type[Any]] = {
    Author.kind: Author,
    Genre.kind: Genre,
    Book.kind: Book,
    BookInstance.kind: BookInstance,
}


# ------------------------- Derived values ------------------------- #
def author_name(author: Author) -> str:
    """"family_name, first_name", or "" when either part is missing."""
    if author.first_name and author.family_name:
        return f"{author.family_name}, {author.first_name}"
    return ""


def format_date(value: Optional[date]) -> str:
    """Medium date format, e.g. "Oct 14, 1983"."""
    if not value:
        return ""
    return f"{value:%b} {value.day}, {value.year}"


def iso_date(value: Optional[date]) -> str:
    return value.isoformat() if value else ""


def author_lifespan(author: Author) -> str:
    birth = format_date(author.date_of_birth) or "Birth unknown"
    death = format_date(author.date_of_death)
    return f"({birth} - {death})"


def due_back_formatted(instance: BookInstance) -> str:
    return format_date(instance.due_back)


def entity_url(entity: Entity) -> str:
    """Canonical detail-page URL of a stored entity."""
    return f"{URL_PREFIX}/{entity.kind}/{entity.id}"


def list_url(kind: str) -> str:
    return f"{URL_PREFIX}/{kind}s"


def display_name(entity: Entity) -> str:
    if isinstance(entity, Author):
        return author_name(entity)
    if isinstance(entity, Genre):
        return entity.name
    if isinstance(entity, Book):
        return entity.title
    if isinstance(entity, BookInstance):
        return entity.imprint
    return str(entity)
