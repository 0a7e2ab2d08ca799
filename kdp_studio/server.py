import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Request, Response, UploadFile, status
from starlette.concurrency import run_in_threadpool
from starlette.middleware.cors import CORSMiddleware

from . import __version__
from .auth import MIN_PASSWORD_LENGTH, SessionStore, current_user, hash_password, verify_password
from .config import get_settings
from .documents import ProcessedDocument, UnsupportedFileTypeError, calculate_word_count, process_document, validate_file_type
from .exporter import KDP_PRESETS, BookExporter, ExportError
from .generation import GenerationError, GenerationService
from .models import (
    Book, BookCreate, BookOutline, BookStats, BookUpdate, Chapter, ChapterCreate, ChapterGenerateRequest,
    ChapterUpdate, Cover, CoverCreate, CoverRequest, CoverUpdate, DescriptionRequest, ExportOptions,
    GenerationRequest, KeywordsRequest, LoginRequest, PublicUser, RegisterRequest, User, UserCreate,
)
from .rendering import PdfRenderer
from .storage import DuplicateUsernameError, create_repository

# Configure logging
logging.basicConfig(level=get_settings().log_level.upper(), format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

api_router = APIRouter(prefix="/api")

DEFAULT_CHAPTER_WORDS = 2000


# ====== DEPENDENCIES ======

def get_repository(request: Request):
    return request.app.state.repository


def get_generator(request: Request) -> GenerationService:
    return request.app.state.generator


def get_exporter(request: Request) -> BookExporter:
    return request.app.state.exporter


async def require_book(book_id: str, repo=Depends(get_repository)) -> Book:
    book = await repo.get_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


# ====== ROOT ======

@api_router.get("/")
async def root():
    return {"message": "KDP Studio API", "version": __version__}


@api_router.get("/health")
async def health():
    return {"status": "ok"}


# ====== BOOKS ======

@api_router.get("/books", response_model=List[Book])
async def list_books(repo=Depends(get_repository)):
    return await repo.get_books()


@api_router.get("/books/{book_id}", response_model=Book)
async def get_book(book: Book = Depends(require_book)):
    return book


@api_router.post("/books", response_model=Book, status_code=status.HTTP_201_CREATED)
async def create_book(data: BookCreate, repo=Depends(get_repository)):
    return await repo.create_book(data)


@api_router.patch("/books/{book_id}", response_model=Book)
async def update_book(book_id: str, data: BookUpdate, repo=Depends(get_repository)):
    book = await repo.update_book(book_id, data)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


@api_router.delete("/books/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_book(book_id: str, repo=Depends(get_repository)):
    if not await repo.delete_book(book_id):
        raise HTTPException(status_code=404, detail="Book not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ====== CHAPTERS ======

async def _book_chapter(repo, book_id, chapter_id) -> Chapter:
    chapter = await repo.get_chapter(chapter_id)
    if not chapter or chapter.book_id != book_id:
        raise HTTPException(status_code=404, detail="Chapter not found")
    return chapter


@api_router.get("/books/{book_id}/chapters", response_model=List[Chapter])
async def list_chapters(book_id: str, repo=Depends(get_repository)):
    return await repo.get_chapters_by_book_id(book_id)


@api_router.post("/books/{book_id}/chapters", response_model=Chapter, status_code=status.HTTP_201_CREATED)
async def create_chapter(data: ChapterCreate, book: Book = Depends(require_book), repo=Depends(get_repository)):
    return await repo.create_chapter(book.id, data)


@api_router.patch("/books/{book_id}/chapters/{chapter_id}", response_model=Chapter)
async def update_chapter(book_id: str, chapter_id: str, data: ChapterUpdate, repo=Depends(get_repository)):
    await _book_chapter(repo, book_id, chapter_id)
    return await repo.update_chapter(chapter_id, data)


@api_router.delete("/books/{book_id}/chapters/{chapter_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chapter(book_id: str, chapter_id: str, repo=Depends(get_repository)):
    await _book_chapter(repo, book_id, chapter_id)
    await repo.delete_chapter(chapter_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ====== COVERS ======

@api_router.get("/books/{book_id}/covers", response_model=List[Cover])
async def list_covers(book_id: str, repo=Depends(get_repository)):
    return await repo.get_covers_by_book_id(book_id)


@api_router.post("/books/{book_id}/covers", response_model=Cover, status_code=status.HTTP_201_CREATED)
async def create_cover(data: CoverCreate, book: Book = Depends(require_book), repo=Depends(get_repository)):
    return await repo.create_cover(book.id, data)


@api_router.patch("/books/{book_id}/covers/{cover_id}", response_model=Cover)
async def update_cover(cover_id: str, data: CoverUpdate, book: Book = Depends(require_book),
                       repo=Depends(get_repository)):
    cover = await repo.get_cover(cover_id)
    if not cover or cover.book_id != book.id:
        raise HTTPException(status_code=404, detail="Cover not found")

    updated = await repo.update_cover(cover_id, data)
    if data.is_selected:
        # Only one selected cover per book
        for other in await repo.get_covers_by_book_id(book.id):
            if other.id != cover_id and other.is_selected:
                await repo.update_cover(other.id, CoverUpdate(is_selected=False))
        await repo.update_book(book.id, BookUpdate(cover_url=updated.image_url))
    return updated


# ====== STATS ======

@api_router.get("/stats", response_model=BookStats)
async def get_stats(repo=Depends(get_repository)):
    return await repo.get_book_stats()


# ====== GENERATION ======

@api_router.post("/generate/outline", response_model=BookOutline)
async def generate_outline(req: GenerationRequest, generator=Depends(get_generator)):
    try:
        return await generator.generate_book_outline(req)
    except GenerationError as e:
        raise HTTPException(status_code=500, detail=str(e))


@api_router.post("/generate/chapter")
async def generate_chapter(req: ChapterGenerateRequest, generator=Depends(get_generator)):
    try:
        content = await generator.generate_chapter_content(
            req.chapter_title,
            req.chapter_description,
            req.book_context,
            req.writing_style,
            req.target_word_count or DEFAULT_CHAPTER_WORDS,
        )
    except GenerationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"content": content, "wordCount": calculate_word_count(content)}


@api_router.post("/generate/description")
async def generate_description(req: DescriptionRequest, generator=Depends(get_generator)):
    try:
        description = await generator.generate_book_description(req.title, req.genre, req.outline)
    except GenerationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"description": description}


@api_router.post("/generate/keywords")
async def generate_keywords(req: KeywordsRequest, generator=Depends(get_generator)):
    try:
        keywords = await generator.generate_keywords(req.title, req.genre, req.description)
    except GenerationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"keywords": keywords}


@api_router.post("/generate/cover")
async def generate_cover(req: CoverRequest, generator=Depends(get_generator)):
    try:
        return await generator.generate_book_cover(req.title, req.author, req.genre, req.style)
    except GenerationError as e:
        raise HTTPException(status_code=500, detail=str(e))


# ====== UPLOAD ======

@api_router.post("/upload", response_model=ProcessedDocument)
async def upload_document(file: Optional[UploadFile] = File(None), generator=Depends(get_generator)):
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if not validate_file_type(file.filename):
        raise HTTPException(status_code=400, detail="Unsupported file type")

    data = await file.read()
    try:
        processed = await run_in_threadpool(process_document, data, file.filename)
    except UnsupportedFileTypeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info(f"Processed upload {file.filename}: {processed.word_count} words")

    analysis = await generator.analyze_document(processed.text, file.filename)
    return processed.model_copy(update={
        "text": analysis["text"],
        "summary": analysis["summary"],
        "word_count": calculate_word_count(analysis["text"]),
    })


# ====== EXPORT ======

async def _export_response(exporter, book, options) -> Response:
    try:
        artifact = await exporter.export(book, options)
    except ExportError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
    )


@api_router.post("/books/{book_id}/export")
async def export_book(options: ExportOptions, book: Book = Depends(require_book), exporter=Depends(get_exporter)):
    return await _export_response(exporter, book, options)


@api_router.post("/books/{book_id}/export/{preset}")
async def export_book_preset(preset: str, book: Book = Depends(require_book), exporter=Depends(get_exporter)):
    options = KDP_PRESETS.get(preset)
    if options is None:
        raise HTTPException(status_code=404, detail=f"Unknown export preset: {preset}")
    return await _export_response(exporter, book, options)


# ====== AUTH ======

@api_router.post("/auth/register", response_model=PublicUser, status_code=status.HTTP_201_CREATED)
async def register(req: RegisterRequest, repo=Depends(get_repository)):
    if not req.username or not req.password:
        raise HTTPException(status_code=400, detail="Username and password are required")
    if len(req.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
        )

    try:
        user = await repo.create_user(UserCreate(
            username=req.username,
            email=req.email or None,
            password=hash_password(req.password),
        ))
    except DuplicateUsernameError:
        raise HTTPException(status_code=409, detail="Username already exists")
    logger.info(f"Registered user {user.username}")
    return PublicUser.from_user(user)


@api_router.post("/auth/login", response_model=PublicUser)
async def login(req: LoginRequest, request: Request, response: Response, repo=Depends(get_repository)):
    if not req.username or not req.password:
        raise HTTPException(status_code=400, detail="Username and password are required")

    user = await repo.get_user_by_username(req.username)
    if not user or not verify_password(req.password, user.password):
        logger.warning(f"Failed login for {req.username}")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    settings = request.app.state.settings
    token = request.app.state.sessions.create(user.id)
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_ttl_minutes * 60,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )
    logger.info(f"User {user.username} logged in")
    return PublicUser.from_user(user)


@api_router.post("/auth/logout")
async def logout(request: Request, response: Response):
    settings = request.app.state.settings
    if request.app.state.sessions.delete(request.cookies.get(settings.session_cookie_name)):
        logger.info("Session closed")
    response.delete_cookie(settings.session_cookie_name, path="/")
    return {"message": "Logged out successfully"}


@api_router.get("/auth/me", response_model=PublicUser)
async def me(user: User = Depends(current_user)):
    return PublicUser.from_user(user)


# ====== APP ======

def create_app(settings=None, repository=None, generator=None, renderer=None, exporter=None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title="KDP Studio API", version=__version__)
    app.state.settings = settings
    app.state.repository = repository or create_repository(settings)
    app.state.generator = generator or GenerationService(settings=settings)
    app.state.sessions = SessionStore(settings.session_ttl_minutes)
    if exporter is None:
        if renderer is None:
            renderer = PdfRenderer(enabled=settings.pdf_renderer != "none")
        exporter = BookExporter(
            renderer=renderer,
            cover_timeout=settings.cover_fetch_timeout,
            cover_retries=settings.cover_fetch_retries,
        )
    app.state.exporter = exporter

    app.include_router(api_router)

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("shutdown")
    async def shutdown_repository():
        await app.state.repository.close()

    return app


app = create_app()
