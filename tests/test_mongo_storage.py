"""MongoStorage query shapes, checked against a mocked motor client."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from kdp_studio.models import BookCreate, BookUpdate
from kdp_studio.storage import MongoStorage


def _cursor(docs):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.to_list = AsyncMock(return_value=docs)
    return cursor


@pytest.fixture
def db():
    db = MagicMock()
    db.__getitem__.side_effect = lambda name: getattr(db, name)
    for name in ("books", "chapters", "covers", "users"):
        collection = getattr(db, name)
        collection.find_one = AsyncMock(return_value=None)
        collection.insert_one = AsyncMock()
        collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
        collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
        collection.delete_many = AsyncMock()
        collection.find.return_value = _cursor([])
    return db


@pytest.fixture
def storage(db):
    client = MagicMock()
    client.__getitem__.return_value = db
    return MongoStorage(db_name="kdp_test", client=client)


BOOK_DOC = {"id": "b1", "title": "T", "author": "A", "genre": "G", "status": "draft"}


class TestMongoStorage:
    @pytest.mark.asyncio
    async def test_get_book_projects_out_id(self, storage, db):
        db.books.find_one.return_value = dict(BOOK_DOC)
        book = await storage.get_book("b1")
        assert book.title == "T"
        db.books.find_one.assert_awaited_once_with({"id": "b1"}, {"_id": 0})

    @pytest.mark.asyncio
    async def test_get_books_sorted_newest_first(self, storage, db):
        db.books.find.return_value = _cursor([dict(BOOK_DOC)])
        books = await storage.get_books()
        assert [b.id for b in books] == ["b1"]
        db.books.find.return_value.sort.assert_called_once_with("created_at", -1)

    @pytest.mark.asyncio
    async def test_create_book_inserts_snake_case(self, storage, db):
        book = await storage.create_book(BookCreate(title="T", author="A", genre="G", target_length="Long"))
        doc = db.books.insert_one.await_args.args[0]
        assert doc["id"] == book.id
        assert doc["target_length"] == "Long"

    @pytest.mark.asyncio
    async def test_delete_cascades(self, storage, db):
        db.books.find_one.return_value = {"id": "b1"}
        assert await storage.delete_book("b1") is True
        db.chapters.delete_many.assert_awaited_once_with({"book_id": "b1"})
        db.covers.delete_many.assert_awaited_once_with({"book_id": "b1"})

    @pytest.mark.asyncio
    async def test_delete_unknown_touches_nothing(self, storage, db):
        assert await storage.delete_book("nope") is False
        db.chapters.delete_many.assert_not_awaited()
        db.books.delete_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_unknown_returns_none(self, storage, db):
        assert await storage.update_book("nope", BookUpdate(title="x")) is None
        db.books.update_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_sets_changes(self, storage, db):
        db.books.find_one.return_value = dict(BOOK_DOC)
        await storage.update_book("b1", BookUpdate(status="published"))
        query, update = db.books.update_one.await_args.args
        assert query == {"id": "b1"}
        assert update["$set"]["status"] == "published"
        assert "updated_at" in update["$set"]
        assert "title" not in update["$set"]

    @pytest.mark.asyncio
    async def test_update_skips_null_fields(self, storage, db):
        db.books.find_one.return_value = dict(BOOK_DOC)
        await storage.update_book("b1", BookUpdate.model_validate({"title": None, "genre": "Poetry"}))
        _, update = db.books.update_one.await_args.args
        assert "title" not in update["$set"]
        assert update["$set"]["genre"] == "Poetry"

    @pytest.mark.asyncio
    async def test_stats(self, storage, db):
        db.books.find.return_value = _cursor([{"status": "draft"}, {"status": "published"}])
        db.chapters.find.return_value = _cursor([{"word_count": 100}, {"word_count": 250}, {}])
        stats = await storage.get_book_stats()
        assert (stats.books_in_progress, stats.published_books, stats.ai_words_generated) == (1, 1, 350)

    @pytest.mark.asyncio
    async def test_close(self, storage):
        await storage.close()
        storage.client.close.assert_called_once()
