"""Shared pytest fixtures for the kdp_studio test suite."""

import pytest
from unittest.mock import MagicMock, AsyncMock


# ---------------------------------------------------------------------------
# Settings / storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    """Return Settings that never touch Mongo or the network."""
    from kdp_studio.config import Settings
    return Settings(
        storage_backend="memory",
        openai_api_key="test-key",
        pdf_renderer="reportlab",
        session_ttl_minutes=30,
        session_cookie_secure=False,
        cors_origins=["*"],
    )


@pytest.fixture
def repo():
    """Return a fresh in-memory repository."""
    from kdp_studio.storage import MemStorage
    return MemStorage()


# ---------------------------------------------------------------------------
# Book fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_book():
    """The 'Test Title!' book with one two-paragraph chapter."""
    from kdp_studio.models import Book, BookChapter
    return Book(
        title="Test Title!",
        author="A. Author",
        genre="Fiction",
        content=[BookChapter(title="Ch 1", content="Para one.\n\nPara two.", order=0, word_count=4)],
    )


@pytest.fixture
def long_book():
    """A book with three chapters and awkward characters in its metadata."""
    from kdp_studio.models import Book, BookChapter
    return Book(
        title="Tom & Jerry's <Guide>",
        author="O'Brien \"Ace\"",
        genre="Non-Fiction",
        description="Cats & mice",
        content=[
            BookChapter(title=f"Chapter {i}", content=f"Body of chapter {i}.", order=i)
            for i in range(1, 4)
        ],
    )


# ---------------------------------------------------------------------------
# Collaborator mocks
# ---------------------------------------------------------------------------

@pytest.fixture
def blocked_renderer():
    """A PDF renderer that behaves as if printing were unavailable."""
    from kdp_studio.rendering import PdfRenderer
    return PdfRenderer(enabled=False)


@pytest.fixture
def mock_generator():
    """Return a MagicMock standing in for GenerationService."""
    from kdp_studio.models import BookOutline, OutlineChapter
    gen = MagicMock()
    gen.generate_book_outline = AsyncMock(return_value=BookOutline(chapters=[
        OutlineChapter(title="The Beginning", description="Where it starts"),
        OutlineChapter(title="The End", description="Where it ends"),
    ]))
    gen.generate_chapter_content = AsyncMock(return_value="It was a dark and stormy night.")
    gen.generate_book_description = AsyncMock(return_value="A gripping tale.")
    gen.generate_keywords = AsyncMock(return_value=["mystery", "storm"])
    gen.generate_book_cover = AsyncMock(return_value={"url": "https://img.example/cover.png"})
    gen.analyze_document = AsyncMock(
        side_effect=lambda text, filename: {"text": text, "summary": f"Summary of {filename}"}
    )
    return gen


@pytest.fixture
def app(settings, repo, mock_generator, blocked_renderer):
    from kdp_studio.server import create_app
    return create_app(settings, repository=repo, generator=mock_generator, renderer=blocked_renderer)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
