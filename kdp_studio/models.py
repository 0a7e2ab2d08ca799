import uuid
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow():
    return datetime.now(timezone.utc)


def new_id():
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    """Base for records exchanged with the UI: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ====== CONTENT MODEL ======

class BookImage(CamelModel):
    name: str
    url: str


class BookChapter(CamelModel):
    title: str
    content: str = ""
    order: int = 0
    word_count: int = 0


class Book(CamelModel):
    id: str = Field(default_factory=new_id)
    title: str
    author: str
    genre: str
    description: Optional[str] = None
    keywords: Optional[List[str]] = None
    content: Optional[List[BookChapter]] = None
    cover_url: Optional[str] = None
    images: Optional[List[BookImage]] = None
    source_file: Optional[str] = None
    target_length: Optional[str] = None
    writing_style: Optional[str] = None
    progress: int = 0
    status: str = "draft"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Chapter(CamelModel):
    id: str = Field(default_factory=new_id)
    book_id: str
    title: str
    content: str
    order: int
    word_count: int = 0
    status: str = "draft"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Cover(CamelModel):
    id: str = Field(default_factory=new_id)
    book_id: str
    image_url: str
    style: str
    color_scheme: str
    is_selected: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class User(CamelModel):
    id: str = Field(default_factory=new_id)
    username: str
    password: str  # bcrypt hash
    email: Optional[str] = None
    api_key: Optional[str] = None


class PublicUser(CamelModel):
    id: str
    username: str
    email: Optional[str] = None
    api_key: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(id=user.id, username=user.username, email=user.email, api_key=user.api_key)


class BookStats(CamelModel):
    books_in_progress: int
    published_books: int
    ai_words_generated: int
    monthly_revenue: str


# ====== CREATE / UPDATE PAYLOADS ======

class BookCreate(CamelModel):
    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    genre: str = Field(..., min_length=1)
    description: Optional[str] = None
    keywords: Optional[List[str]] = None
    content: Optional[List[BookChapter]] = None
    cover_url: Optional[str] = None
    images: Optional[List[BookImage]] = None
    source_file: Optional[str] = None
    target_length: Optional[str] = None
    writing_style: Optional[str] = None
    progress: int = Field(0, ge=0, le=100)
    status: str = "draft"


class BookUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1)
    author: Optional[str] = Field(None, min_length=1)
    genre: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    keywords: Optional[List[str]] = None
    content: Optional[List[BookChapter]] = None
    cover_url: Optional[str] = None
    images: Optional[List[BookImage]] = None
    source_file: Optional[str] = None
    target_length: Optional[str] = None
    writing_style: Optional[str] = None
    progress: Optional[int] = Field(None, ge=0, le=100)
    status: Optional[str] = None


class ChapterCreate(CamelModel):
    title: str = Field(..., min_length=1)
    content: str
    order: int
    word_count: int = 0
    status: str = "draft"


class ChapterUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = None
    order: Optional[int] = None
    word_count: Optional[int] = None
    status: Optional[str] = None


class CoverCreate(CamelModel):
    image_url: str = Field(..., min_length=1)
    style: str
    color_scheme: str
    is_selected: bool = False


class CoverUpdate(CamelModel):
    image_url: Optional[str] = None
    style: Optional[str] = None
    color_scheme: Optional[str] = None
    is_selected: Optional[bool] = None


class UserCreate(CamelModel):
    username: str
    password: str
    email: Optional[str] = None
    api_key: Optional[str] = None


# ====== AUTH ======

class RegisterRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


# ====== GENERATION ======

class GenerationRequest(CamelModel):
    genre: str = Field(..., min_length=1)
    topic: str = Field(..., min_length=1)
    target_length: str = Field(..., min_length=1)
    writing_style: str = Field(..., min_length=1)


class OutlineChapter(CamelModel):
    title: str
    description: str = ""


class BookOutline(CamelModel):
    chapters: List[OutlineChapter] = []


class ChapterGenerateRequest(CamelModel):
    chapter_title: str = Field(..., min_length=1)
    chapter_description: str = Field(..., min_length=1)
    book_context: str = Field(..., min_length=1)
    writing_style: str = Field(..., min_length=1)
    target_word_count: Optional[int] = Field(None, gt=0)


class DescriptionRequest(CamelModel):
    title: str = Field(..., min_length=1)
    genre: str = Field(..., min_length=1)
    outline: BookOutline


class KeywordsRequest(CamelModel):
    title: str = Field(..., min_length=1)
    genre: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)


class CoverRequest(CamelModel):
    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    genre: str = Field(..., min_length=1)
    style: str = Field(..., min_length=1)


# ====== EXPORT ======

ExportFormat = Literal["kindle", "epub", "pdf", "docx", "print-ready"]
PaperSize = Literal["us-trade", "us-letter", "a4", "custom"]


class Margins(BaseModel):
    top: float = 1
    bottom: float = 1
    left: float = 1
    right: float = 1


class ExportOptions(CamelModel):
    format: ExportFormat
    include_images: bool = True
    paper_size: Optional[PaperSize] = None
    margins: Optional[Margins] = None
    font_size: Optional[float] = None
    font_family: Optional[str] = None
    line_spacing: Optional[float] = None
