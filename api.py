import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from catalog import aggregator, pipeline
from catalog.database import DocumentStore, SQLiteDocumentStore
from catalog.errors import CatalogError, StoreUnavailable
from catalog.models import (
    URL_PREFIX,
    author_lifespan,
    author_name,
    display_name,
    due_back_formatted,
    entity_url,
    format_date,
    list_url,
)
from config import settings

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "catalog" / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.globals.update(
    app_name=settings.app_name,
    entity_url=entity_url,
    list_url=list_url,
    display_name=display_name,
    author_name=author_name,
    author_lifespan=author_lifespan,
    due_back_formatted=due_back_formatted,
    format_date=format_date,
)


class Kind(str, Enum):
    author = "author"
    genre = "genre"
    book = "book"
    bookinstance = "bookinstance"


class Listing(str, Enum):
    authors = "authors"
    genres = "genres"
    books = "books"
    bookinstances = "bookinstances"


def get_store(request: Request) -> DocumentStore:
    """Dependency handing the application's store to each request."""
    return request.app.state.store


def _respond(request: Request, outcome: pipeline.Outcome) -> Response:
    if isinstance(outcome, pipeline.Redirect):
        return RedirectResponse(outcome.url, status_code=303)
    return templates.TemplateResponse(
        request, f"{outcome.view}.html", outcome.context, status_code=outcome.status_code
    )


async def _form_data(request: Request) -> Dict[str, Any]:
    """Every submitted key with all of its values, in submission order."""
    form = await request.form()
    return {key: form.getlist(key) for key in form.keys()}


# --- Catalog ---
catalog_router = APIRouter(prefix=URL_PREFIX)


@catalog_router.get("")
async def index(request: Request, store: DocumentStore = Depends(get_store)):
    return templates.TemplateResponse(request, "index.html", await aggregator.load_index(store))


@catalog_router.get("/{listing}")
async def entity_list(listing: Listing, request: Request, store: DocumentStore = Depends(get_store)):
    kind = listing.value[:-1]
    data = await aggregator.load_list(store, kind)
    return templates.TemplateResponse(request, f"{kind}_list.html", data)


@catalog_router.get("/{kind}/create")
async def create_form(kind: Kind, request: Request, store: DocumentStore = Depends(get_store)):
    return _respond(request, await pipeline.form_page(store, kind.value))


@catalog_router.post("/{kind}/create")
async def create_submit(kind: Kind, request: Request, store: DocumentStore = Depends(get_store)):
    form = await _form_data(request)
    return _respond(request, await pipeline.submit_form(store, kind.value, form))


@catalog_router.get("/{kind}/{entity_id}")
async def entity_detail(kind: Kind, entity_id: str, request: Request, store: DocumentStore = Depends(get_store)):
    data = await aggregator.load_detail(store, kind.value, entity_id)
    return templates.TemplateResponse(request, f"{kind.value}_detail.html", data)


@catalog_router.get("/{kind}/{entity_id}/update")
async def update_form(kind: Kind, entity_id: str, request: Request, store: DocumentStore = Depends(get_store)):
    return _respond(request, await pipeline.form_page(store, kind.value, entity_id))


@catalog_router.post("/{kind}/{entity_id}/update")
async def update_submit(kind: Kind, entity_id: str, request: Request, store: DocumentStore = Depends(get_store)):
    form = await _form_data(request)
    return _respond(request, await pipeline.submit_form(store, kind.value, form, entity_id))


@catalog_router.get("/{kind}/{entity_id}/delete")
async def delete_form(kind: Kind, entity_id: str, request: Request, store: DocumentStore = Depends(get_store)):
    return _respond(request, await pipeline.delete_page(store, kind.value, entity_id))


@catalog_router.post("/{kind}/{entity_id}/delete")
async def delete_submit(kind: Kind, entity_id: str, request: Request, store: DocumentStore = Depends(get_store)):
    return _respond(request, await pipeline.delete_submit(store, kind.value, entity_id))


# --- Users (placeholder routes) ---
users_router = APIRouter(prefix="/users")


@users_router.get("")
def users_index():
    return PlainTextResponse("respond with a resource")


@users_router.get("/cool")
def users_cool():
    return PlainTextResponse("You are so Cooool!")


@users_router.get("/{user_id}")
def users_detail(user_id: str):
    return {"user_id": user_id}


# --- Application ---
async def catalog_error_handler(request: Request, exc: CatalogError):
    if isinstance(exc, StoreUnavailable):
        logger.error("Store unavailable while serving %s: %s", request.url.path, exc.message)
        message = "The catalog is temporarily unavailable."
    else:
        message = exc.message or "Request failed"
    return templates.TemplateResponse(
        request,
        "error.html",
        {"title": "Error", "message": message, "status_code": exc.status_code},
        status_code=exc.status_code,
    )


def create_app(store: Optional[DocumentStore] = None) -> FastAPI:
    """Build the application; without a store one is opened from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.store is None:
            app.state.store = SQLiteDocumentStore(settings.database_file)
        try:
            yield
        finally:
            app.state.store.close()

    app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)
    app.state.store = store
    app.include_router(catalog_router)
    app.include_router(users_router)
    app.add_exception_handler(CatalogError, catalog_error_handler)

    @app.get("/")
    def root():
        return RedirectResponse(URL_PREFIX)

    @app.get("/health")
    async def health(request: Request):
        """Lightweight health endpoint: store reachability and a timestamp."""
        now_iso = datetime.now(timezone.utc).isoformat()
        db_ok = await request.app.state.store.ping() if request.app.state.store else False
        return JSONResponse({"status": "healthy" if db_ok else "degraded", "timestamp": now_iso, "db": db_ok})

    return app


app = create_app()
