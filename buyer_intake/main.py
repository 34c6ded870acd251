"""FastAPI application for buyer lead intake."""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any

import logfire
from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError
from sqlalchemy.orm import Session

from . import auth, buyers
from .buyers import transaction
from .config import CORS_ORIGINS, LOGFIRE_TOKEN, MAX_IMPORT_BYTES
from .csv_export import buyers_for_export, export_filename, iter_csv
from .csv_import import decode_upload, import_csv
from .database import get_db, init_db
from .errors import LeadIntakeError, RateLimitExceeded
from .models import User
from .rate_limit import SlidingWindowRateLimiter
from .schemas import (
    BuyerDetailResponse,
    BuyerListResponse,
    BuyerQuery,
    BuyerRead,
    MagicLinkRequest,
    SessionResponse,
    UserRead,
)
from .storage import MAX_IMAGE_BYTES, LocalFileStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield


app = FastAPI(
    title="Buyer Leads API",
    description="Lead intake for real-estate buyers: CRUD, search, CSV import/export, change history",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.rate_limiter = SlidingWindowRateLimiter()
app.state.file_store = LocalFileStore()

# Configure Logfire for observability (after app creation)
if LOGFIRE_TOKEN:
    logfire.configure()
    logfire.instrument_fastapi(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)


# =============================================================================
# Error handling
# =============================================================================


@app.exception_handler(LeadIntakeError)
async def lead_intake_error_handler(request: Request, exc: LeadIntakeError):
    headers = exc.headers if isinstance(exc, RateLimitExceeded) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=headers)


def _parameter_details(errors: list[dict[str, Any]]) -> list[dict[str, str]]:
    details = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ())]
        if loc and loc[0] in ("query", "path", "body"):
            loc = loc[1:]
        details.append({"field": ".".join(loc), "message": error.get("msg", "")})
    return details


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid parameters", "details": _parameter_details(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# =============================================================================
# Dependencies
# =============================================================================

security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer session token to a signed-in user."""
    return auth.resolve_session(db, credentials.credentials if credentials else None)


def get_rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    return request.app.state.rate_limiter


def get_file_store(request: Request) -> LocalFileStore:
    return request.app.state.file_store


def get_buyer_query(request: Request) -> BuyerQuery:
    """Listing parameters from the query string, camelCase names."""
    try:
        return BuyerQuery.model_validate(dict(request.query_params))
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc


# =============================================================================
# Health & auth
# =============================================================================


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Buyer Leads API"}


@app.post("/api/auth/magic-link")
async def request_magic_link(body: MagicLinkRequest, db: Session = Depends(get_db)):
    """Send a sign-in link to the given email."""
    auth.request_magic_link(db, body.email)
    return {"success": True, "message": "Check your email for a sign-in link"}


@app.get("/api/auth/callback/email")
async def magic_link_callback(token: str, email: str, db: Session = Depends(get_db)) -> SessionResponse:
    """Exchange a magic-link token for a bearer session token."""
    user_session = auth.verify_magic_link(db, email, token)
    return SessionResponse(
        token=user_session.session_token,
        expires_at=user_session.expires,
        user=UserRead.model_validate(user_session.user),
    )


@app.post("/api/auth/signout")
async def sign_out(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    auth.revoke_session(db, credentials.credentials)
    return {"success": True}


# =============================================================================
# Buyers
# =============================================================================


@app.get("/api/buyers")
async def list_buyers(
    params: BuyerQuery = Depends(get_buyer_query),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> BuyerListResponse:
    """Search, filter, sort and paginate buyers."""
    rows, pagination = buyers.list_buyers(db, params)
    return BuyerListResponse(
        data=[BuyerRead.model_validate(buyer) for buyer in rows],
        pagination=pagination,
    )


@app.post("/api/buyers", status_code=201)
async def create_buyer(
    payload: dict[str, Any],
    user: User = Depends(get_current_user),
    limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
    db: Session = Depends(get_db),
) -> BuyerRead:
    limiter.hit("create_buyer", str(user.id))
    buyer = buyers.create_buyer(db, user, payload)
    return BuyerRead.model_validate(buyer)


@app.get("/api/buyers/export")
async def export_buyers(
    params: BuyerQuery = Depends(get_buyer_query),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Download every buyer matching the listing filters as CSV."""
    rows = buyers_for_export(db, params)
    return StreamingResponse(
        iter_csv(rows),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{export_filename()}"',
            "Cache-Control": "no-store",
        },
    )


@app.post("/api/buyers/import")
async def import_buyers(
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
    db: Session = Depends(get_db),
):
    """Bulk import buyers from a CSV upload; 207 when some rows failed."""
    limiter.hit("import_csv", str(user.id))
    content = await file.read(MAX_IMPORT_BYTES + 1)
    text = decode_upload(file.filename, file.content_type, content)
    result = import_csv(db, user, text)
    return JSONResponse(
        status_code=200 if result.success else 207,
        content=result.model_dump(by_alias=True, mode="json"),
    )


@app.get("/api/buyers/{buyer_id}")
async def get_buyer(
    buyer_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> BuyerDetailResponse:
    """A buyer with its five most recent history entries."""
    buyer = buyers.get_buyer(db, buyer_id)
    return BuyerDetailResponse(
        buyer=BuyerRead.model_validate(buyer),
        history=buyers.recent_history(db, buyer_id),
    )


@app.put("/api/buyers/{buyer_id}")
async def update_buyer(
    buyer_id: uuid.UUID,
    payload: dict[str, Any],
    user: User = Depends(get_current_user),
    limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
    db: Session = Depends(get_db),
) -> BuyerRead:
    """Replace a buyer's fields; the body must echo the last-seen updatedAt."""
    limiter.hit("update_buyer", str(user.id))
    buyer = buyers.update_buyer(db, buyer_id, user, payload)
    return BuyerRead.model_validate(buyer)


@app.delete("/api/buyers/{buyer_id}")
async def delete_buyer(
    buyer_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    buyers.delete_buyer(db, buyer_id, user)
    return {"success": True}


# =============================================================================
# Profile & uploads
# =============================================================================


@app.get("/api/profile")
async def get_profile(user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(user)


@app.post("/api/profile")
async def update_profile(
    name: str = Form(..., min_length=1, max_length=255),
    image: UploadFile | None = File(None),
    user: User = Depends(get_current_user),
    store: LocalFileStore = Depends(get_file_store),
    db: Session = Depends(get_db),
) -> UserRead:
    """Update the display name and, optionally, the avatar image."""
    key = None
    if image is not None and image.filename:
        key = store.save_image(await image.read(MAX_IMAGE_BYTES + 1), image.content_type)

    with transaction(db):
        user.name = name.strip()
        if key:
            user.image = store.url_for(key)
    db.refresh(user)
    logger.info(f"Profile updated for {user.id}")
    return UserRead.model_validate(user)


@app.get("/api/uploads/{key}")
async def get_upload(key: str, store: LocalFileStore = Depends(get_file_store)):
    """Serve a stored avatar image."""
    return FileResponse(
        store.path_for(key),
        media_type=store.media_type(key),
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )
