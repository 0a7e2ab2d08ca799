import logging
from abc import ABC, abstractmethod
from datetime import timezone
from typing import Dict, List, Optional

from .models import (
    Book, BookCreate, BookStats, BookUpdate, Chapter, ChapterCreate, ChapterUpdate,
    Cover, CoverCreate, CoverUpdate, User, UserCreate, utcnow,
)

logger = logging.getLogger(__name__)

IN_PROGRESS_STATUSES = ("draft", "in-progress")
PUBLISHED_STATUS = "published"
MONTHLY_REVENUE_PLACEHOLDER = "$0"


class DuplicateUsernameError(Exception):
    """Raised when a user is created with a username that already exists."""


def _changes(update) -> dict:
    # explicit nulls mean "leave unchanged"
    changes = update.model_dump(exclude_unset=True, by_alias=False)
    return {k: v for k, v in changes.items() if v is not None}


def _touched(created_at):
    # updated_at never precedes created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return max(utcnow(), created_at)


def _merge(existing, changes):
    return type(existing).model_validate({**existing.model_dump(), **changes})


class Repository(ABC):
    """Keyed storage for books, chapters, covers and users."""

    # ---- Books ----

    @abstractmethod
    async def get_book(self, book_id: str) -> Optional[Book]: ...

    @abstractmethod
    async def get_books(self) -> List[Book]: ...

    @abstractmethod
    async def create_book(self, data: BookCreate) -> Book: ...

    @abstractmethod
    async def update_book(self, book_id: str, data: BookUpdate) -> Optional[Book]: ...

    @abstractmethod
    async def delete_book(self, book_id: str) -> bool: ...

    # ---- Chapters ----

    @abstractmethod
    async def get_chapter(self, chapter_id: str) -> Optional[Chapter]: ...

    @abstractmethod
    async def get_chapters_by_book_id(self, book_id: str) -> List[Chapter]: ...

    @abstractmethod
    async def create_chapter(self, book_id: str, data: ChapterCreate) -> Chapter: ...

    @abstractmethod
    async def update_chapter(self, chapter_id: str, data: ChapterUpdate) -> Optional[Chapter]: ...

    @abstractmethod
    async def delete_chapter(self, chapter_id: str) -> bool: ...

    # ---- Covers ----

    @abstractmethod
    async def get_cover(self, cover_id: str) -> Optional[Cover]: ...

    @abstractmethod
    async def get_covers_by_book_id(self, book_id: str) -> List[Cover]: ...

    @abstractmethod
    async def create_cover(self, book_id: str, data: CoverCreate) -> Cover: ...

    @abstractmethod
    async def update_cover(self, cover_id: str, data: CoverUpdate) -> Optional[Cover]: ...

    @abstractmethod
    async def delete_cover(self, cover_id: str) -> bool: ...

    # ---- Users ----

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[User]: ...

    @abstractmethod
    async def get_users(self) -> List[User]: ...

    @abstractmethod
    async def create_user(self, data: UserCreate) -> User: ...

    @abstractmethod
    async def update_user(self, user_id: str, data: dict) -> Optional[User]: ...

    # ---- Stats ----

    @abstractmethod
    async def get_book_stats(self) -> BookStats: ...

    async def close(self):
        pass


def compute_stats(books: List[Book], chapters: List[Chapter]) -> BookStats:
    return BookStats(
        books_in_progress=sum(1 for b in books if b.status in IN_PROGRESS_STATUSES),
        published_books=sum(1 for b in books if b.status == PUBLISHED_STATUS),
        ai_words_generated=sum(c.word_count or 0 for c in chapters),
        monthly_revenue=MONTHLY_REVENUE_PLACEHOLDER,
    )


class MemStorage(Repository):
    """In-process dict-backed repository. Not safe for multi-process access."""

    def __init__(self):
        self.books: Dict[str, Book] = {}
        self.chapters: Dict[str, Chapter] = {}
        self.covers: Dict[str, Cover] = {}
        self.users: Dict[str, User] = {}

    # ---- Books ----

    async def get_book(self, book_id):
        return self.books.get(book_id)

    async def get_books(self):
        return sorted(self.books.values(), key=lambda b: b.created_at, reverse=True)

    async def create_book(self, data):
        book = Book(**data.model_dump(by_alias=False))
        self.books[book.id] = book
        return book

    async def update_book(self, book_id, data):
        existing = self.books.get(book_id)
        if not existing:
            return None
        changes = _changes(data)
        changes["updated_at"] = _touched(existing.created_at)
        updated = _merge(existing, changes)
        self.books[book_id] = updated
        return updated

    async def delete_book(self, book_id):
        if book_id not in self.books:
            return False
        for chapter_id in [c.id for c in self.chapters.values() if c.book_id == book_id]:
            del self.chapters[chapter_id]
        for cover_id in [c.id for c in self.covers.values() if c.book_id == book_id]:
            del self.covers[cover_id]
        del self.books[book_id]
        return True

    # ---- Chapters ----

    async def get_chapter(self, chapter_id):
        return self.chapters.get(chapter_id)

    async def get_chapters_by_book_id(self, book_id):
        chapters = [c for c in self.chapters.values() if c.book_id == book_id]
        return sorted(chapters, key=lambda c: c.order)

    async def create_chapter(self, book_id, data):
        chapter = Chapter(book_id=book_id, **data.model_dump(by_alias=False))
        self.chapters[chapter.id] = chapter
        return chapter

    async def update_chapter(self, chapter_id, data):
        existing = self.chapters.get(chapter_id)
        if not existing:
            return None
        changes = _changes(data)
        changes["updated_at"] = _touched(existing.created_at)
        updated = _merge(existing, changes)
        self.chapters[chapter_id] = updated
        return updated

    async def delete_chapter(self, chapter_id):
        return self.chapters.pop(chapter_id, None) is not None

    # ---- Covers ----

    async def get_cover(self, cover_id):
        return self.covers.get(cover_id)

    async def get_covers_by_book_id(self, book_id):
        covers = [c for c in self.covers.values() if c.book_id == book_id]
        return sorted(covers, key=lambda c: c.created_at, reverse=True)

    async def create_cover(self, book_id, data):
        cover = Cover(book_id=book_id, **data.model_dump(by_alias=False))
        self.covers[cover.id] = cover
        return cover

    async def update_cover(self, cover_id, data):
        existing = self.covers.get(cover_id)
        if not existing:
            return None
        updated = _merge(existing, _changes(data))
        self.covers[cover_id] = updated
        return updated

    async def delete_cover(self, cover_id):
        return self.covers.pop(cover_id, None) is not None

    # ---- Users ----

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def get_user_by_username(self, username):
        for user in self.users.values():
            if user.username == username:
                return user
        return None

    async def get_users(self):
        return list(self.users.values())

    async def create_user(self, data):
        if await self.get_user_by_username(data.username):
            raise DuplicateUsernameError(data.username)
        user = User(**data.model_dump(by_alias=False))
        self.users[user.id] = user
        return user

    async def update_user(self, user_id, data):
        existing = self.users.get(user_id)
        if not existing:
            return None
        updated = _merge(existing, dict(data))
        self.users[user_id] = updated
        return updated

    # ---- Stats ----

    async def get_book_stats(self):
        return compute_stats(list(self.books.values()), list(self.chapters.values()))


class MongoStorage(Repository):
    """Repository over MongoDB via motor; documents keep snake_case keys and no `_id`."""

    def __init__(self, mongo_url=None, db_name="kdp_studio", client=None):
        if client is None:
            from motor.motor_asyncio import AsyncIOMotorClient
            client = AsyncIOMotorClient(mongo_url, tz_aware=True)
        self.client = client
        self.db = client[db_name]

    async def _find_one(self, collection, query, model):
        doc = await self.db[collection].find_one(query, {"_id": 0})
        return model(**doc) if doc else None

    async def _find(self, collection, query, model, sort_key, direction):
        docs = await self.db[collection].find(query, {"_id": 0}).sort(sort_key, direction).to_list(None)
        return [model(**d) for d in docs]

    async def _update(self, collection, record_id, changes, model):
        result = await self.db[collection].update_one({"id": record_id}, {"$set": changes})
        if result.matched_count == 0:
            return None
        return await self._find_one(collection, {"id": record_id}, model)

    # ---- Books ----

    async def get_book(self, book_id):
        return await self._find_one("books", {"id": book_id}, Book)

    async def get_books(self):
        return await self._find("books", {}, Book, "created_at", -1)

    async def create_book(self, data):
        book = Book(**data.model_dump(by_alias=False))
        await self.db.books.insert_one(book.model_dump())
        return book

    async def update_book(self, book_id, data):
        existing = await self.get_book(book_id)
        if not existing:
            return None
        changes = _changes(data)
        changes["updated_at"] = _touched(existing.created_at)
        return await self._update("books", book_id, changes, Book)

    async def delete_book(self, book_id):
        if not await self.db.books.find_one({"id": book_id}, {"_id": 0, "id": 1}):
            return False
        await self.db.chapters.delete_many({"book_id": book_id})
        await self.db.covers.delete_many({"book_id": book_id})
        result = await self.db.books.delete_one({"id": book_id})
        return result.deleted_count > 0

    # ---- Chapters ----

    async def get_chapter(self, chapter_id):
        return await self._find_one("chapters", {"id": chapter_id}, Chapter)

    async def get_chapters_by_book_id(self, book_id):
        return await self._find("chapters", {"book_id": book_id}, Chapter, "order", 1)

    async def create_chapter(self, book_id, data):
        chapter = Chapter(book_id=book_id, **data.model_dump(by_alias=False))
        await self.db.chapters.insert_one(chapter.model_dump())
        return chapter

    async def update_chapter(self, chapter_id, data):
        existing = await self.get_chapter(chapter_id)
        if not existing:
            return None
        changes = _changes(data)
        changes["updated_at"] = _touched(existing.created_at)
        return await self._update("chapters", chapter_id, changes, Chapter)

    async def delete_chapter(self, chapter_id):
        result = await self.db.chapters.delete_one({"id": chapter_id})
        return result.deleted_count > 0

    # ---- Covers ----

    async def get_cover(self, cover_id):
        return await self._find_one("covers", {"id": cover_id}, Cover)

    async def get_covers_by_book_id(self, book_id):
        return await self._find("covers", {"book_id": book_id}, Cover, "created_at", -1)

    async def create_cover(self, book_id, data):
        cover = Cover(book_id=book_id, **data.model_dump(by_alias=False))
        await self.db.covers.insert_one(cover.model_dump())
        return cover

    async def update_cover(self, cover_id, data):
        return await self._update("covers", cover_id, _changes(data), Cover)

    async def delete_cover(self, cover_id):
        result = await self.db.covers.delete_one({"id": cover_id})
        return result.deleted_count > 0

    # ---- Users ----

    async def get_user(self, user_id):
        return await self._find_one("users", {"id": user_id}, User)

    async def get_user_by_username(self, username):
        return await self._find_one("users", {"username": username}, User)

    async def get_users(self):
        docs = await self.db.users.find({}, {"_id": 0}).to_list(None)
        return [User(**d) for d in docs]

    async def create_user(self, data):
        if await self.get_user_by_username(data.username):
            raise DuplicateUsernameError(data.username)
        user = User(**data.model_dump(by_alias=False))
        await self.db.users.insert_one(user.model_dump())
        return user

    async def update_user(self, user_id, data):
        return await self._update("users", user_id, dict(data), User)

    # ---- Stats ----

    async def get_book_stats(self):
        books = await self.db.books.find({}, {"_id": 0, "status": 1}).to_list(None)
        chapters = await self.db.chapters.find({}, {"_id": 0, "word_count": 1}).to_list(None)
        return BookStats(
            books_in_progress=sum(1 for b in books if b.get("status") in IN_PROGRESS_STATUSES),
            published_books=sum(1 for b in books if b.get("status") == PUBLISHED_STATUS),
            ai_words_generated=sum(c.get("word_count") or 0 for c in chapters),
            monthly_revenue=MONTHLY_REVENUE_PLACEHOLDER,
        )

    async def close(self):
        self.client.close()


def create_repository(settings) -> Repository:
    if settings.storage_backend == "mongo":
        logger.info(f"Using MongoDB storage (db={settings.db_name})")
        return MongoStorage(settings.mongo_url, settings.db_name)
    logger.info("Using in-memory storage")
    return MemStorage()
