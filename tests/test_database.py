import asyncio
import sqlite3

import pytest

from catalog.database import (
    ASCENDING,
    DESCENDING,
    SQLiteDocumentStore,
    check_id,
    is_valid_id,
    matches,
    new_id,
    project,
)
from catalog.errors import BadRequest, InvalidIdentifier, StoreUnavailable


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request):
    # Both backends must behave the same way
    name = "store" if request.param == "memory" else "sqlite_store"
    return request.getfixturevalue(name)


def test_new_id_is_24_hex_characters():
    doc_id = new_id()
    assert len(doc_id) == 24
    assert is_valid_id(doc_id)
    assert new_id() != doc_id


@pytest.mark.parametrize("value", ["", "abc", "z" * 24, "0" * 23, "0" * 25, None, 42])
def test_is_valid_id_rejects_malformed(value):
    assert not is_valid_id(value)


def test_check_id_normalises_case():
    assert check_id("ABCDEF0123456789ABCDEF01") == "abcdef0123456789abcdef01"


def test_check_id_raises_bad_request():
    with pytest.raises(InvalidIdentifier) as exc_info:
        check_id("not-an-id")
    assert isinstance(exc_info.value, BadRequest)
    assert exc_info.value.status_code == 400


def test_matches_list_field_contains_value():
    doc = {"genre": ["a", "b"], "name": "Fantasy"}
    assert matches(doc, {"genre": "b"})
    assert not matches(doc, {"genre": "c"})
    assert matches(doc, {"name": "fantasy"}, case_insensitive=True)
    assert not matches(doc, {"name": "fantasy"})


def test_project_keeps_id_and_named_fields():
    doc = {"_id": "x", "title": "T", "summary": "S", "isbn": "1"}
    assert project(doc, ["title"]) == {"_id": "x", "title": "T"}
    assert project(doc, None) is doc


def test_insert_assigns_id_and_find_by_id(any_store):
    stored = asyncio.run(any_store.insert("genres", {"name": "Poetry"}))
    assert is_valid_id(stored["_id"])

    found = asyncio.run(any_store.find_by_id("genres", stored["_id"]))
    assert found == {"_id": stored["_id"], "name": "Poetry"}


def test_find_by_id_missing_returns_none(any_store):
    assert asyncio.run(any_store.find_by_id("genres", new_id())) is None


def test_find_by_id_malformed_raises(any_store):
    with pytest.raises(InvalidIdentifier):
        asyncio.run(any_store.find_by_id("genres", "nope"))


def test_find_all_filters_and_sorts(any_store):
    async def scenario():
        await any_store.insert("authors", {"first_name": "Isaac", "family_name": "Asimov"})
        await any_store.insert("authors", {"first_name": "Ben", "family_name": "Bova"})
        await any_store.insert("authors", {"first_name": "Bob", "family_name": "Billings"})
        ascending = await any_store.find_all("authors", sort=[("family_name", ASCENDING)])
        descending = await any_store.find_all("authors", sort=[("family_name", DESCENDING)])
        bens = await any_store.find_all("authors", {"first_name": "Ben"})
        return ascending, descending, bens

    ascending, descending, bens = asyncio.run(scenario())
    assert [d["family_name"] for d in ascending] == ["Asimov", "Billings", "Bova"]
    assert [d["family_name"] for d in descending] == ["Bova", "Billings", "Asimov"]
    assert [d["family_name"] for d in bens] == ["Bova"]


def test_find_all_matches_inside_lists_and_projects(any_store):
    async def scenario():
        await any_store.insert("books", {"title": "A", "summary": "s", "genre": ["g1", "g2"]})
        await any_store.insert("books", {"title": "B", "summary": "s", "genre": ["g2"]})
        await any_store.insert("books", {"title": "C", "summary": "s", "genre": []})
        return await any_store.find_all("books", {"genre": "g2"}, sort=[("title", ASCENDING)], projection=["title"])

    docs = asyncio.run(scenario())
    assert [d["title"] for d in docs] == ["A", "B"]
    assert all(set(d) == {"_id", "title"} for d in docs)


def test_find_one_case_insensitive(any_store):
    async def scenario():
        await any_store.insert("genres", {"name": "Science Fiction"})
        exact = await any_store.find_one("genres", {"name": "science fiction"})
        folded = await any_store.find_one("genres", {"name": "SCIENCE fiction"}, case_insensitive=True)
        return exact, folded

    exact, folded = asyncio.run(scenario())
    assert exact is None
    assert folded["name"] == "Science Fiction"


def test_update_by_id_replaces_document(any_store):
    async def scenario():
        stored = await any_store.insert("genres", {"name": "Poetry"})
        updated = await any_store.update_by_id("genres", stored["_id"], {"name": "Verse"})
        missing = await any_store.update_by_id("genres", new_id(), {"name": "Nothing"})
        return stored, updated, missing, await any_store.find_by_id("genres", stored["_id"])

    stored, updated, missing, found = asyncio.run(scenario())
    assert updated == {"_id": stored["_id"], "name": "Verse"}
    assert missing is None
    assert found["name"] == "Verse"


def test_delete_by_id_and_count(any_store):
    async def scenario():
        first = await any_store.insert("bookinstances", {"imprint": "1", "status": "Available"})
        await any_store.insert("bookinstances", {"imprint": "2", "status": "Loaned"})
        before = await any_store.count("bookinstances"), await any_store.count("bookinstances", {"status": "Available"})
        await any_store.delete_by_id("bookinstances", first["_id"])
        # Deleting something already gone is not an error
        await any_store.delete_by_id("bookinstances", first["_id"])
        after = await any_store.count("bookinstances"), await any_store.count("bookinstances", {"status": "Available"})
        return before, after

    before, after = asyncio.run(scenario())
    assert before == (2, 1)
    assert after == (1, 0)


def test_collections_are_separate(any_store):
    async def scenario():
        await any_store.insert("genres", {"name": "Poetry"})
        return await any_store.count("authors"), await any_store.find_all("authors")

    assert asyncio.run(scenario()) == (0, [])


def test_ping(any_store):
    assert asyncio.run(any_store.ping()) is True


def test_sqlite_store_persists_across_instances(tmp_path):
    db_file = str(tmp_path / "catalog.db")
    stored = asyncio.run(SQLiteDocumentStore(db_file).insert("genres", {"name": "Poetry"}))
    found = asyncio.run(SQLiteDocumentStore(db_file).find_by_id("genres", stored["_id"]))
    assert found["name"] == "Poetry"


def test_sqlite_failure_surfaces_as_store_unavailable(sqlite_store, monkeypatch):
    def broken_connect():
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(sqlite_store, "_connect", broken_connect)
    with pytest.raises(StoreUnavailable):
        asyncio.run(sqlite_store.count("genres"))
    assert asyncio.run(sqlite_store.ping()) is False
