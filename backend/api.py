"""
REST API for the volleyball statistics backend.
Thin wrappers around persistence: payload validation and status-code mapping.
"""
from __future__ import annotations

import logging
import re
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, Any, AsyncGenerator

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StringConstraints, field_validator, model_validator
from pydantic.alias_generators import to_camel

from backend.auth import create_access_token, decode_token, hash_password, verify_password
from backend.config import get_settings
from backend.models import DeleteFailure, DownloadTokenStatus, RequestUser, TeamHistoryEntry
from backend.observability import log_event, mask_email, setup_logging
from backend.persistence import (
    DownloadTokenRepository,
    DuplicateMatchReportError,
    EmailAlreadyRegisteredError,
    MatchReportRepository,
    StoreError,
    UserRepository,
    get_documents,
    get_store,
)
from backend.services.media import (
    CHUNK_SIZE_BYTES,
    build_user_scoped_key,
    get_media,
    part_count_for,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 9
_DATE_RE = r"^\d{4}-\d{2}-\d{2}$"
_TIME_RE = r"^([01]\d|2[0-3]):([0-5]\d)$"
_PLAYER_NUMBER_RE = re.compile(r"^\d{1,3}$")

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


# ---------- Lifespan ----------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging(get_settings().log_level)
    get_store()
    yield


# ---------- FastAPI app ----------
app = FastAPI(
    title="Volleyball Stats API",
    description="Accounts, video uploads and match statistics reports",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["Content-Disposition"],
    max_age=86400,
)


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "Invalid payload", "errors": errors})


# ---------- Request/Response models ----------


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _parse_iso_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _normalize_player_number(value: Any) -> str | None:
    if value is None:
        return None
    trimmed = str(value).strip()
    if not trimmed:
        return None
    if not _PLAYER_NUMBER_RE.match(trimmed):
        raise ValueError("playerNumber must contain only digits and be up to 3 characters long")
    return trimmed


class PlayerPayload(CamelModel):
    number: int = Field(..., ge=0, le=999)
    name: NonEmptyStr
    stats: dict[str, str | int | float]

    @field_validator("stats")
    @classmethod
    def _non_empty_keys(cls, v: dict[str, Any]) -> dict[str, Any]:
        if any(not k for k in v):
            raise ValueError("stat names must be non-empty")
        return v


class TeamPayload(CamelModel):
    team: NonEmptyStr
    players: list[PlayerPayload] = Field(..., min_length=1)


class MatchReportRequest(CamelModel):
    generated_at: str
    set_columns: int = Field(..., gt=0)
    column_labels: list[NonEmptyStr] = Field(..., min_length=1)
    match_date: str | None = Field(None, pattern=_DATE_RE)
    match_time: str | None = Field(None, pattern=_TIME_RE)
    teams: list[TeamPayload] = Field(..., min_length=1)

    @field_validator("generated_at")
    @classmethod
    def _iso_datetime(cls, v: str) -> str:
        try:
            _parse_iso_datetime(v)
        except ValueError:
            raise ValueError("generatedAt must be an ISO date-time string") from None
        return v

    @model_validator(mode="after")
    def _labels_cover_columns(self) -> MatchReportRequest:
        if len(self.column_labels) < self.set_columns:
            raise ValueError("columnLabels must include at least setColumns entries")
        return self


class TeamHistoryPayload(CamelModel):
    team_name: NonEmptyStr
    team_country: NonEmptyStr = Field(..., validation_alias=AliasChoices("teamCountry", "country"))
    season_start: str = Field(..., validation_alias=AliasChoices("seasonStart", "startDate"))
    season_end: str = Field(..., validation_alias=AliasChoices("seasonEnd", "endDate"))
    player_number: str | int = Field(..., validation_alias=AliasChoices("playerNumber", "jerseyNumber"))

    @field_validator("season_start", "season_end")
    @classmethod
    def _valid_date(cls, v: str) -> str:
        try:
            _parse_iso_datetime(v)
        except ValueError:
            raise ValueError("must be a valid date") from None
        return v

    @field_validator("player_number")
    @classmethod
    def _valid_number(cls, v: str | int) -> str:
        number = _normalize_player_number(v)
        if number is None:
            raise ValueError("playerNumber is required")
        return number

    @model_validator(mode="after")
    def _ordered_seasons(self) -> TeamHistoryPayload:
        if _parse_iso_datetime(self.season_end) < _parse_iso_datetime(self.season_start):
            raise ValueError("seasonEnd must be after seasonStart")
        return self

    def to_entry(self) -> TeamHistoryEntry:
        return TeamHistoryEntry(
            team_name=self.team_name,
            team_country=self.team_country,
            season_start=_parse_iso_datetime(self.season_start),
            season_end=_parse_iso_datetime(self.season_end),
            player_number=str(self.player_number),
        )


class RegisterRequest(CamelModel):
    name: NonEmptyStr
    email: NonEmptyStr
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    age: int | None = Field(None, ge=10, le=100)
    country: str | None = None
    current_team: str | None = None
    current_team_country: str | None = None
    years_as_a_professional: int | None = None
    player_number: str | int | None = None
    team_history: list[TeamHistoryPayload] | None = None

    @field_validator("email")
    @classmethod
    def _email_shape(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("Valid email is required")
        return v.lower()

    @field_validator("country", "current_team", "current_team_country")
    @classmethod
    def _blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None

    @field_validator("years_as_a_professional")
    @classmethod
    def _starting_year(cls, v: int | None) -> int | None:
        current_year = datetime.now(timezone.utc).year
        if v is not None and not (1950 <= v <= current_year):
            raise ValueError(f"Starting year must be between 1950 and {current_year}")
        return v

    @field_validator("player_number")
    @classmethod
    def _player_number(cls, v: str | int | None) -> str | None:
        return _normalize_player_number(v)


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class MultipartStartRequest(CamelModel):
    file_name: str | None = None
    content_type: str | None = None
    parts: int | None = None
    file_size_bytes: float | None = None


class UploadPart(BaseModel):
    etag: str = Field(..., min_length=1, validation_alias=AliasChoices("ETag", "etag"))
    part_number: int = Field(..., validation_alias=AliasChoices("partNumber", "PartNumber"))


class MultipartCompleteRequest(CamelModel):
    file_name: str | None = None
    file_key: str | None = None
    upload_id: str
    parts: list[UploadPart] = Field(..., min_length=1)


class MultipartCancelRequest(CamelModel):
    file_name: str | None = None
    file_key: str | None = None
    upload_id: str | None = None


class DownloadRequest(CamelModel):
    file_name: str | None = None


# ---------- Auth dependencies ----------

security = HTTPBearer(auto_error=False)


def _get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> RequestUser | None:
    """Caller identity from the bearer token, or None if no/invalid token."""
    if credentials is None:
        return None
    return decode_token(credentials.credentials)


def _require_user(user: RequestUser | None = Depends(_get_current_user)) -> RequestUser:
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def _require_uuid(match_id: str) -> str:
    try:
        uuid.UUID(match_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="matchId must be a valid UUID") from None
    return match_id


# ---------- Health ----------


@app.get("/health")
def health() -> dict[str, Any]:
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


# ---------- Auth ----------


@app.post("/auth/register", status_code=201)
def register(req: RegisterRequest) -> dict[str, Any]:
    """Create an account. Passwords hashed, never stored plain."""
    docs = get_documents()
    user_repo = UserRepository()
    try:
        user = user_repo.create(
            docs,
            name=req.name,
            email=req.email,
            password_hash=hash_password(req.password),
            age=req.age,
            country=req.country,
            current_team=req.current_team,
            current_team_country=req.current_team_country,
            years_as_a_professional=req.years_as_a_professional,
            player_number=req.player_number,
            team_history=[h.to_entry() for h in req.team_history or []],
        )
    except EmailAlreadyRegisteredError:
        raise HTTPException(status_code=409, detail="Email is already registered") from None
    log_event(logger, "auth.register", user_id=user.id, email=mask_email(user.email))
    return {"user": user.to_dict(), "accessToken": create_access_token(user)}


@app.post("/auth/login")
def login(req: LoginRequest) -> dict[str, Any]:
    email = req.email.strip().lower()
    if not email or not req.password:
        raise HTTPException(status_code=400, detail="Email and password are required")
    user = UserRepository().get_by_email(get_documents(), email)
    if user is None or not verify_password(req.password, user.password_hash):
        log_event(logger, "auth.login_failed", email=mask_email(email))
        raise HTTPException(status_code=401, detail="Invalid email or password")
    log_event(logger, "auth.login", user_id=user.id)
    return {"user": user.to_dict(), "accessToken": create_access_token(user)}


@app.get("/auth/me")
def me(current: RequestUser = Depends(_require_user)) -> dict[str, Any]:
    user = UserRepository().get(get_documents(), current.id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": user.to_dict()}


# ---------- Uploads ----------


@app.post("/upload/multipart", status_code=201)
def start_multipart_upload(
    req: MultipartStartRequest, current: RequestUser = Depends(_require_user)
) -> dict[str, Any]:
    try:
        part_count = part_count_for(req.parts, req.file_size_bytes)
        file_key = build_user_scoped_key(current.id, req.file_name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    result = get_media().start_multipart(file_key, req.content_type, part_count, current.id)
    return {
        **result,
        "partCount": part_count,
        "chunkSizeBytes": CHUNK_SIZE_BYTES,
        "fileKey": file_key,
        "originalFileName": req.file_name,
    }


@app.post("/upload/multipart/complete")
def complete_multipart_upload(
    req: MultipartCompleteRequest, current: RequestUser = Depends(_require_user)
) -> dict[str, Any]:
    try:
        scoped_key = build_user_scoped_key(current.id, req.file_key or req.file_name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    parts = [{"ETag": p.etag, "partNumber": p.part_number} for p in req.parts]
    result = get_media().complete_multipart(scoped_key, req.upload_id, parts)
    return {
        "message": "Upload finalized successfully",
        **result,
        "fileName": scoped_key,
        "ownerId": current.id,
    }


def _cancel(current: RequestUser, file_key: str | None, upload_id: str | None) -> Response:
    if not file_key:
        raise HTTPException(status_code=400, detail="fileName or fileKey is required")
    if not upload_id:
        raise HTTPException(status_code=400, detail="uploadId is required")
    try:
        scoped_key = build_user_scoped_key(current.id, file_key)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    get_media().abort_multipart(scoped_key, upload_id)
    return Response(status_code=204)


@app.post("/upload/multipart/cancel", status_code=204)
def cancel_multipart_upload(
    req: MultipartCancelRequest, current: RequestUser = Depends(_require_user)
) -> Response:
    return _cancel(current, req.file_key or req.file_name, req.upload_id)


@app.delete("/upload/multipart/pending/{upload_id}", status_code=204)
def cancel_pending_upload(
    upload_id: str,
    file_key: str | None = Query(None, alias="fileKey"),
    current: RequestUser = Depends(_require_user),
) -> Response:
    return _cancel(current, file_key, upload_id)


@app.get("/upload/multipart/pending")
def list_pending_uploads(
    limit: int | None = Query(None, ge=1),
    current: RequestUser = Depends(_require_user),
) -> dict[str, Any]:
    return {"uploads": get_media().list_incomplete(current.id, limit)}


@app.get("/upload/multipart/completed")
def list_completed_uploads(
    limit: int | None = Query(None, ge=1),
    continuation_token: str | None = Query(None, alias="continuationToken"),
    current: RequestUser = Depends(_require_user),
) -> dict[str, Any]:
    return get_media().list_completed(current.id, limit, continuation_token)


# ---------- Downloads ----------


@app.post("/download/generate", status_code=201)
def generate_download_link(
    req: DownloadRequest, current: RequestUser = Depends(_require_user)
) -> dict[str, Any]:
    if not req.file_name or not req.file_name.strip():
        raise HTTPException(status_code=400, detail="fileName is required")
    ttl = get_settings().download_token_ttl_seconds
    file_key = build_user_scoped_key(current.id, req.file_name)
    media = get_media()
    if not media.object_exists(file_key):
        raise HTTPException(status_code=404, detail="File not found")
    presigned_url = media.presigned_download(file_key, ttl)
    token = DownloadTokenRepository().create(get_documents(), current.id, file_key, presigned_url, ttl)
    return {"url": f"/download/use/{token.token}", "expiresInSeconds": ttl}


@app.get("/download/use/{token}")
def use_download_link(token: str) -> RedirectResponse:
    status, record = DownloadTokenRepository().consume(get_documents(), token)
    if status == DownloadTokenStatus.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Token not found")
    if status == DownloadTokenStatus.ALREADY_USED:
        raise HTTPException(status_code=409, detail="Token already used")
    if status == DownloadTokenStatus.EXPIRED:
        raise HTTPException(status_code=410, detail="Token expired")
    return RedirectResponse(record.presigned_url, status_code=307)


# ---------- Match reports ----------


@app.post("/stats/match-report", status_code=201)
def create_match_report(
    req: MatchReportRequest, current: RequestUser = Depends(_require_user)
) -> dict[str, Any]:
    try:
        report = MatchReportRepository().create(get_documents(), req.model_dump(by_alias=True), current.id)
    except DuplicateMatchReportError as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "message": "A match report already exists for this date and team combination",
                "matchId": exc.match_id,
            },
        ) from None
    except StoreError:
        logger.exception("Failed to create match report")
        raise HTTPException(status_code=500, detail="Failed to create match report") from None
    return {"matchId": report.match_id, "ownerId": report.owner_id}


@app.get("/stats/match-report/{match_id}")
def get_match_report(match_id: str) -> dict[str, Any]:
    _require_uuid(match_id)
    report = MatchReportRepository().find_by_match_id(get_documents(), match_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Match report not found")
    return report.to_dict()


@app.get("/stats/match-report")
def list_match_reports(
    limit: int = Query(default=50, ge=1, le=200),
    owner_id: str | None = Query(None, alias="ownerId", min_length=1),
) -> dict[str, Any]:
    if owner_id is not None:
        owner_id = owner_id.strip()
        if not owner_id:
            raise HTTPException(status_code=400, detail="ownerId must not be blank")
    reports = MatchReportRepository().list(get_documents(), limit=limit, owner_id=owner_id)
    return {"items": [r.to_dict() for r in reports]}


@app.delete("/stats/match-report/{match_id}")
def delete_match_report(match_id: str, current: RequestUser = Depends(_require_user)) -> dict[str, Any]:
    _require_uuid(match_id)
    result = MatchReportRepository().delete(get_documents(), match_id, current.id)
    if not result.ok:
        if result.code == DeleteFailure.FORBIDDEN:
            raise HTTPException(status_code=403, detail="You cannot delete this match report")
        raise HTTPException(status_code=404, detail="Match report not found")
    return {"message": "Match report deleted"}


# ---------- Run with: uvicorn backend.api:app --reload ----------
