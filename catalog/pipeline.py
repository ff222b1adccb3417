"""Create/update/delete workflows behind the HTML forms.

A submission runs through an ordered list of async steps over a
``FormContext``. A step returns ``None`` to continue or an ``Outcome`` to stop:
``Redirect`` after a successful write, ``Render`` to show a page again.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type, Union

from pydantic import BaseModel

from catalog.database import ASCENDING, DocumentStore, check_id
from catalog.errors import NotFound, ValidationFailed
from catalog.models import (
    KINDS,
    STATUSES,
    Author,
    Book,
    BookInstance,
    Genre,
    Ref,
    author_name,
    entity_url,
    iso_date,
    list_url,
)
from catalog.policies import MATCH_FIELDS, DeleteCheck, can_delete, delete_entity, resolve_or_create, save
from catalog.references import load_entity, missing_refs, populate_book, populate_instance
from catalog.validators import AuthorForm, BookForm, BookInstanceForm, FieldError, GenreForm, check_form

logger = logging.getLogger(__name__)


@dataclass
class Redirect:
    url: str


@dataclass
class Render:
    view: str
    context: Dict[str, Any]
    status_code: int = 200


Outcome = Union[Redirect, Render]


@dataclass
class Option:
    """One entry of a select list or checkbox group."""

    value: str
    label: str
    selected: bool = False


@dataclass(frozen=True)
class FormSpec:
    kind: str
    label: str
    form_cls: Type[BaseModel]
    fields: Tuple[str, ...]
    build: Callable[[Any, Optional[str]], Any]
    to_values: Callable[[Any], Dict[str, Any]]
    multi_fields: Tuple[str, ...] = ()
    references: Callable[[Any], List[Tuple[str, Ref]]] = lambda model: []

    @property
    def view(self) -> str:
        return f"{self.kind}_form"


# ------------------------- Per-kind form definitions ------------------------- #
def _build_author(model: AuthorForm, entity_id: Optional[str]) -> Author:
    return Author(
        first_name=model.first_name,
        family_name=model.family_name,
        date_of_birth=model.date_of_birth,
        date_of_death=model.date_of_death,
        id=entity_id,
    )


def _author_values(author: Author) -> Dict[str, Any]:
    return {
        "first_name": author.first_name,
        "family_name": author.family_name,
        "date_of_birth": iso_date(author.date_of_birth),
        "date_of_death": iso_date(author.date_of_death),
    }


def _build_book(model: BookForm, entity_id: Optional[str]) -> Book:
    return Book(
        title=model.title,
        author=Ref(Author.collection, model.author),
        summary=model.summary,
        isbn=model.isbn,
        genre=[Ref(Genre.collection, g) for g in model.genre],
        id=entity_id,
    )


def _book_values(book: Book) -> Dict[str, Any]:
    return {
        "title": book.title,
        "author": book.author.id if book.author else "",
        "summary": book.summary,
        "isbn": book.isbn,
        "genre": [g.id for g in book.genre],
    }


def _build_instance(model: BookInstanceForm, entity_id: Optional[str]) -> BookInstance:
    return BookInstance(
        book=Ref(Book.collection, model.book),
        imprint=model.imprint,
        status=model.status,
        due_back=model.due_back,
        id=entity_id,
    )


def _instance_values(instance: BookInstance) -> Dict[str, Any]:
    return {
        "book": instance.book.id if instance.book else "",
        "imprint": instance.imprint,
        "status": instance.status,
        "due_back": iso_date(instance.due_back),
    }


FORMS: Dict[str, FormSpec] = {
    Author.kind: FormSpec(
        kind=Author.kind,
        label="Author",
        form_cls=AuthorForm,
        fields=("first_name", "family_name", "date_of_birth", "date_of_death"),
        build=_build_author,
        to_values=_author_values,
    ),
    Genre.kind: FormSpec(
        kind=Genre.kind,
        label="Genre",
        form_cls=GenreForm,
        fields=("name",),
        build=lambda model, entity_id: Genre(name=model.name, id=entity_id),
        to_values=lambda genre: {"name": genre.name},
    ),
    Book.kind: FormSpec(
        kind=Book.kind,
        label="Book",
        form_cls=BookForm,
        fields=("title", "author", "summary", "isbn", "genre"),
        multi_fields=("genre",),
        build=_build_book,
        to_values=_book_values,
        references=lambda model: [("author", Ref(Author.collection, model.author))]
        + [("genre", Ref(Genre.collection, g)) for g in model.genre],
    ),
    BookInstance.kind: FormSpec(
        kind=BookInstance.kind,
        label="Book Instance",
        form_cls=BookInstanceForm,
        fields=("book", "imprint", "status", "due_back"),
        build=_build_instance,
        to_values=_instance_values,
        references=lambda model: [("book", Ref(Book.collection, model.book))],
    ),
}

MISSING_REFERENCE_MESSAGES = {
    "author": "Selected author does not exist.",
    "genre": "Selected genre does not exist.",
    "book": "Selected book does not exist.",
}


async def _form_options(store: DocumentStore, kind: str, values: Mapping[str, Any]) -> Dict[str, Any]:
    """Select lists for the form, with the submitted choices marked."""
    if kind == Book.kind:
        author_docs, genre_docs = await asyncio.gather(
            store.find_all(Author.collection, sort=[("family_name", ASCENDING)]),
            store.find_all(Genre.collection, sort=[("name", ASCENDING)]),
        )
        chosen = set(values.get("genre") or [])
        authors = [Author.from_document(d) for d in author_docs]
        genres = [Genre.from_document(d) for d in genre_docs]
        return {
            "authors": [Option(a.id, author_name(a), a.id == values.get("author")) for a in authors],
            "genres": [Option(g.id, g.name, g.id in chosen) for g in genres],
        }
    if kind == BookInstance.kind:
        book_docs = await store.find_all(Book.collection, sort=[("title", ASCENDING)], projection=["title"])
        return {
            "books": [Option(d["_id"], d.get("title", ""), d["_id"] == values.get("book")) for d in book_docs],
            "statuses": [Option(s, s, s == values.get("status")) for s in STATUSES],
        }
    return {}


async def render_form(
    store: DocumentStore,
    kind: str,
    values: Mapping[str, Any],
    entity_id: Optional[str] = None,
    errors: Sequence[FieldError] = (),
) -> Render:
    spec = FORMS[kind]
    context: Dict[str, Any] = {
        "title": f"{'Update' if entity_id else 'Create'} {spec.label}",
        "kind": kind,
        "entity_id": entity_id,
        "values": dict(values),
        "errors": list(errors),
    }
    context.update(await _form_options(store, kind, values))
    return Render(spec.view, context)


async def form_page(store: DocumentStore, kind: str, entity_id: Optional[str] = None) -> Render:
    """GET side of create and update; update pre-fills from the stored entity."""
    spec = FORMS[kind]
    if entity_id is None:
        defaults: Dict[str, Any] = {name: "" for name in spec.fields}
        for name in spec.multi_fields:
            defaults[name] = []
        if kind == BookInstance.kind:
            defaults["status"] = BookInstance().status
        return await render_form(store, kind, defaults)

    entity_id = check_id(entity_id)
    entity = await load_entity(store, KINDS[kind], entity_id)
    if entity is None:
        raise NotFound(f"{spec.label} not found")
    return await render_form(store, kind, spec.to_values(entity), entity_id)


# ------------------------- Submission pipeline ------------------------- #
@dataclass
class FormContext:
    store: DocumentStore
    kind: str
    form: Mapping[str, Any]
    entity_id: Optional[str] = None
    values: Dict[str, Any] = field(default_factory=dict)
    model: Optional[BaseModel] = None
    errors: List[FieldError] = field(default_factory=list)
    entity: Any = None

    @property
    def spec(self) -> FormSpec:
        return FORMS[self.kind]


Step = Callable[[FormContext], Awaitable[Optional[Outcome]]]


def as_list(value: Any) -> List[Any]:
    """Zero, one or many submitted values as an ordered list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


async def check_target(ctx: FormContext) -> Optional[Outcome]:
    """On update the edited entity must exist before anything else runs."""
    if ctx.entity_id is None:
        return None
    ctx.entity_id = check_id(ctx.entity_id)
    if await load_entity(ctx.store, KINDS[ctx.kind], ctx.entity_id) is None:
        raise NotFound(f"{ctx.spec.label} not found")
    return None


async def normalize(ctx: FormContext) -> Optional[Outcome]:
    values: Dict[str, Any] = {}
    for name in ctx.spec.fields:
        submitted = [str(v).strip() for v in as_list(ctx.form.get(name))]
        if name in ctx.spec.multi_fields:
            values[name] = [v for v in submitted if v]
        else:
            values[name] = submitted[0] if submitted else ""
    ctx.values = values
    return None


async def validate(ctx: FormContext) -> Optional[Outcome]:
    try:
        ctx.model = check_form(ctx.spec.form_cls, ctx.values)
    except ValidationFailed as exc:
        ctx.errors = list(exc.errors)
    return None


async def check_references(ctx: FormContext) -> Optional[Outcome]:
    if ctx.model is None:
        return None
    refs = ctx.spec.references(ctx.model)
    missing = await missing_refs(ctx.store, [ref for _, ref in refs])
    reported = set()
    for name, ref in refs:
        if ref in missing and name not in reported:
            ctx.errors.append(FieldError(name, MISSING_REFERENCE_MESSAGES[name]))
            reported.add(name)
    return None


async def branch_on_errors(ctx: FormContext) -> Optional[Outcome]:
    if not ctx.errors:
        return None
    logger.info("%s form rejected with %d error(s)", ctx.kind, len(ctx.errors))
    return await render_form(ctx.store, ctx.kind, ctx.values, ctx.entity_id, ctx.errors)


async def persist(ctx: FormContext) -> Optional[Outcome]:
    candidate = ctx.spec.build(ctx.model, ctx.entity_id)
    if ctx.kind in MATCH_FIELDS:
        ctx.entity = (await resolve_or_create(ctx.store, candidate, MATCH_FIELDS[ctx.kind])).entity
    else:
        ctx.entity = await save(ctx.store, candidate)
    return Redirect(entity_url(ctx.entity))


PIPELINE: Tuple[Step, ...] = (check_target, normalize, validate, check_references, branch_on_errors, persist)


async def run(ctx: FormContext, steps: Sequence[Step] = PIPELINE) -> Outcome:
    for step in steps:
        outcome = await step(ctx)
        if outcome is not None:
            return outcome
    raise RuntimeError(f"{ctx.kind} pipeline finished without an outcome")


async def submit_form(
    store: DocumentStore, kind: str, form: Mapping[str, Any], entity_id: Optional[str] = None
) -> Outcome:
    return await run(FormContext(store=store, kind=kind, form=form, entity_id=entity_id))


# ------------------------- Delete ------------------------- #
async def _delete_context(store: DocumentStore, check: DeleteCheck) -> Dict[str, Any]:
    context: Dict[str, Any] = {
        "title": f"Delete {FORMS[check.kind].label}",
        "kind": check.kind,
        "entity": check.target,
        "dependents": check.dependents,
        "blocked": not check.allowed,
    }
    if check.kind == Book.kind:
        context["detail"] = await populate_book(store, check.target)
    elif check.kind == BookInstance.kind:
        context["detail"] = await populate_instance(store, check.target)
    return context


async def delete_page(store: DocumentStore, kind: str, entity_id: str) -> Outcome:
    check = await can_delete(store, kind, entity_id)
    if check.target is None:
        return Redirect(list_url(kind))
    return Render(f"{kind}_delete", await _delete_context(store, check))


async def delete_submit(store: DocumentStore, kind: str, entity_id: str) -> Outcome:
    """Re-runs the guard: state may have changed since the confirmation page."""
    check = await delete_entity(store, kind, entity_id)
    if check.target is not None and not check.allowed:
        return Render(f"{kind}_delete", await _delete_context(store, check))
    return Redirect(list_url(kind))
