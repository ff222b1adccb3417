import asyncio

import pytest

from catalog.database import new_id
from catalog.errors import IntegrityBlocked, InvalidIdentifier, NotFound
from catalog.models import Author, Book, BookInstance, Genre, Ref
from catalog.pipeline import Redirect, submit_form
from catalog.policies import MATCH_FIELDS, can_delete, delete_entity, resolve_or_create, save


def _genre(store, name):
    return asyncio.run(save(store, Genre(name=name)))


def _book(store, author=None, genres=()):
    return asyncio.run(
        save(
            store,
            Book(
                title="Foundation",
                author=Ref(Author.collection, author.id) if author else None,
                summary="Psychohistory",
                isbn="9780553293357",
                genre=[Ref(Genre.collection, g.id) for g in genres],
            ),
        )
    )


def test_save_inserts_then_updates(store):
    genre = _genre(store, "Poetry")
    assert genre.id

    renamed = asyncio.run(save(store, Genre(name="Verse", id=genre.id)))
    assert renamed.id == genre.id
    assert asyncio.run(store.count(Genre.collection)) == 1


def test_save_update_of_missing_entity_raises(store):
    with pytest.raises(NotFound):
        asyncio.run(save(store, Genre(name="Ghost", id=new_id())))


def test_resolve_or_create_matches_case_insensitively(store):
    first = asyncio.run(resolve_or_create(store, Genre(name="Fantasy"), MATCH_FIELDS["genre"]))
    second = asyncio.run(resolve_or_create(store, Genre(name="fantasy"), MATCH_FIELDS["genre"]))

    assert first.created is True
    assert second.created is False
    assert second.entity.id == first.entity.id
    assert second.entity.name == "Fantasy"
    assert asyncio.run(store.count(Genre.collection)) == 1


def test_resolve_or_create_authors_match_on_both_names(sqlite_store):
    fields = MATCH_FIELDS["author"]
    asimov = asyncio.run(resolve_or_create(sqlite_store, Author(first_name="Isaac", family_name="Asimov"), fields))
    again = asyncio.run(resolve_or_create(sqlite_store, Author(first_name="ISAAC", family_name="asimov"), fields))
    other = asyncio.run(resolve_or_create(sqlite_store, Author(first_name="Janet", family_name="Asimov"), fields))

    assert again.entity.id == asimov.entity.id
    assert other.created is True
    assert asyncio.run(sqlite_store.count(Author.collection)) == 2


def test_update_colliding_with_another_record_returns_that_record(store):
    fantasy = _genre(store, "Fantasy")
    poetry = _genre(store, "Poetry")

    result = asyncio.run(
        resolve_or_create(store, Genre(name="FANTASY", id=poetry.id), MATCH_FIELDS["genre"])
    )
    assert result.created is False
    assert result.entity.id == fantasy.id
    # The edited record is left untouched
    assert asyncio.run(store.find_by_id(Genre.collection, poetry.id))["name"] == "Poetry"


def test_concurrent_creates_can_both_pass_the_duplicate_check(store):
    async def race():
        return await asyncio.gather(
            resolve_or_create(store, Genre(name="Horror"), MATCH_FIELDS["genre"]),
            resolve_or_create(store, Genre(name="horror"), MATCH_FIELDS["genre"]),
        )

    first, second = asyncio.run(race())
    assert first.created and second.created
    assert first.entity.id != second.entity.id
    assert asyncio.run(store.count(Genre.collection)) == 2


def test_can_delete_reports_dependents(store):
    author = asyncio.run(save(store, Author(first_name="Isaac", family_name="Asimov")))
    genre = _genre(store, "Science Fiction")
    book = _book(store, author, [genre])
    asyncio.run(save(store, BookInstance(book=Ref(Book.collection, book.id), imprint="Bantam")))

    for kind, target in (("author", author), ("genre", genre), ("book", book)):
        check = asyncio.run(can_delete(store, kind, target.id))
        assert check.target.id == target.id
        assert not check.allowed
        assert len(check.dependents) == 1
        with pytest.raises(IntegrityBlocked):
            check.raise_if_blocked()


def test_can_delete_missing_target(store):
    check = asyncio.run(can_delete(store, "genre", new_id()))
    assert check.target is None
    assert check.allowed


def test_can_delete_malformed_id(store):
    with pytest.raises(InvalidIdentifier):
        asyncio.run(can_delete(store, "author", "12"))


def test_delete_entity_refuses_while_referenced_then_succeeds(store):
    author = asyncio.run(save(store, Author(first_name="Isaac", family_name="Asimov")))
    book = _book(store, author)

    blocked = asyncio.run(delete_entity(store, "author", author.id))
    assert not blocked.allowed
    assert asyncio.run(store.find_by_id(Author.collection, author.id)) is not None

    asyncio.run(delete_entity(store, "book", book.id))
    done = asyncio.run(delete_entity(store, "author", author.id))
    assert done.allowed
    assert asyncio.run(store.find_by_id(Author.collection, author.id)) is None


def test_book_instances_have_no_dependents(store):
    book = _book(store)
    copy = asyncio.run(save(store, BookInstance(book=Ref(Book.collection, book.id), imprint="Bantam")))
    check = asyncio.run(delete_entity(store, "bookinstance", copy.id))
    assert check.allowed
    assert asyncio.run(store.count(BookInstance.collection)) == 0


def test_concurrent_delete_and_reference_can_leave_dangling_ref(store):
    author = asyncio.run(save(store, Author(first_name="Isaac", family_name="Asimov")))
    form = {"title": "Foundation", "author": author.id, "summary": "Psychohistory", "isbn": "9780553293357"}

    async def race():
        return await asyncio.gather(
            delete_entity(store, "author", author.id),
            submit_form(store, "book", form),
        )

    check, outcome = asyncio.run(race())
    assert check.allowed
    assert isinstance(outcome, Redirect)
    assert asyncio.run(store.find_by_id(Author.collection, author.id)) is None
    books = asyncio.run(store.find_all(Book.collection, {"author": author.id}))
    assert len(books) == 1


@pytest.mark.parametrize("kind", ["author", "genre", "book"])
def test_blocked_delete_leaves_store_unchanged(store, kind):
    author = asyncio.run(save(store, Author(first_name="Isaac", family_name="Asimov")))
    genre = _genre(store, "Science Fiction")
    book = _book(store, author, [genre])
    copy = asyncio.run(save(store, BookInstance(book=Ref(Book.collection, book.id), imprint="Bantam")))
    targets = {"author": author, "genre": genre, "book": book}
    expected_dependent = copy.id if kind == "book" else book.id

    def counts():
        return tuple(
            asyncio.run(store.count(cls.collection)) for cls in (Author, Genre, Book, BookInstance)
        )

    before = counts()
    check = asyncio.run(delete_entity(store, kind, targets[kind].id))

    assert not check.allowed
    assert [d.id for d in check.dependents] == [expected_dependent]
    assert counts() == before == (1, 1, 1, 1)
