"""
Repositories for users and download tokens.
One document per record; lookups by secondary fields go through index keys
that are claimed with write-if-absent.
"""
from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from backend.models import DownloadToken, DownloadTokenStatus, TeamHistoryEntry, User

from .json_store import JsonDocumentStore
from .object_store import PreconditionFailedError

logger = logging.getLogger(__name__)

USER_PREFIX = "users/by-id"
USER_EMAIL_INDEX_PREFIX = "users/by-email"
DOWNLOAD_TOKEN_PREFIX = "downloadTokens"
DOWNLOAD_TOKEN_USED_PREFIX = "downloadTokens/used"


def _parse_datetime(s: str | None) -> datetime:
    if s is None:
        raise ValueError("expected datetime string")
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------- UserRepository ----------


class EmailAlreadyRegisteredError(ValueError):
    """Another account already owns this email."""


def _user_key(user_id: str) -> str:
    return f"{USER_PREFIX}/{user_id}.json"


def _email_key(email: str) -> str:
    digest = hashlib.sha256(normalize_email(email).encode("utf-8")).hexdigest()
    return f"{USER_EMAIL_INDEX_PREFIX}/{digest}.json"


def _history_from_doc(doc: Mapping[str, Any]) -> TeamHistoryEntry:
    return TeamHistoryEntry(
        team_name=doc["teamName"],
        team_country=doc["teamCountry"],
        season_start=_parse_datetime(doc["seasonStart"]),
        season_end=_parse_datetime(doc["seasonEnd"]),
        player_number=str(doc["playerNumber"]),
    )


def _user_to_doc(user: User) -> dict[str, Any]:
    doc = user.to_dict()
    doc["passwordHash"] = user.password_hash
    return doc


def _user_from_doc(doc: Mapping[str, Any]) -> User:
    return User(
        id=doc["id"],
        name=doc["name"],
        email=doc["email"],
        password_hash=doc.get("passwordHash") or "",
        created_at=_parse_datetime(doc["createdAt"]),
        age=doc.get("age"),
        country=doc.get("country"),
        current_team=doc.get("currentTeam"),
        current_team_country=doc.get("currentTeamCountry"),
        years_as_a_professional=doc.get("yearsAsAProfessional"),
        player_number=doc.get("playerNumber"),
        team_history=[_history_from_doc(h) for h in doc.get("teamHistory") or []],
    )


class UserRepository:
    """Accounts keyed by id, with an email -> id index for login."""

    def create(
        self,
        docs: JsonDocumentStore,
        name: str,
        email: str,
        password_hash: str,
        **profile: Any,
    ) -> User:
        """
        Claim the email index first, then write the record.
        Raises EmailAlreadyRegisteredError if the email is taken.
        """
        user = User(
            id=str(uuid.uuid4()),
            name=name,
            email=normalize_email(email),
            password_hash=password_hash,
            created_at=_utcnow(),
            **profile,
        )
        email_key = _email_key(user.email)
        try:
            docs.write(email_key, {"id": user.id}, if_absent=True)
        except PreconditionFailedError:
            raise EmailAlreadyRegisteredError("Email is already registered") from None
        try:
            docs.write(_user_key(user.id), _user_to_doc(user))
        except Exception:
            try:
                docs.delete(email_key)
            except Exception:  # noqa: BLE001
                logger.warning("Failed to release email index %s", email_key, exc_info=True)
            raise
        return user

    def get(self, docs: JsonDocumentStore, user_id: str) -> User | None:
        doc = docs.read(_user_key(user_id))
        if not isinstance(doc, Mapping):
            return None
        return _user_from_doc(doc)

    def get_by_email(self, docs: JsonDocumentStore, email: str) -> User | None:
        index = docs.read(_email_key(email))
        if not isinstance(index, Mapping) or not index.get("id"):
            return None
        return self.get(docs, index["id"])


# ---------- DownloadTokenRepository ----------


def _token_key(token: str) -> str:
    return f"{DOWNLOAD_TOKEN_PREFIX}/{token}.json"


def _token_used_key(token: str) -> str:
    return f"{DOWNLOAD_TOKEN_USED_PREFIX}/{token}.json"


class DownloadTokenRepository:
    """Single-use, expiring download tokens. Use is claimed with a write-if-absent marker."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or _utcnow

    def create(
        self,
        docs: JsonDocumentStore,
        user_id: str,
        file_name: str,
        presigned_url: str,
        ttl_seconds: int,
    ) -> DownloadToken:
        created_at = self._clock()
        record = DownloadToken(
            token=secrets.token_urlsafe(24),
            user_id=user_id,
            file_name=file_name,
            presigned_url=presigned_url,
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=ttl_seconds),
        )
        docs.write(_token_key(record.token), record.to_dict())
        return record

    def consume(
        self, docs: JsonDocumentStore, token: str
    ) -> tuple[DownloadTokenStatus, DownloadToken | None]:
        doc = docs.read(_token_key(token))
        if not isinstance(doc, Mapping):
            return DownloadTokenStatus.NOT_FOUND, None
        record = DownloadToken(
            token=doc["token"],
            user_id=doc["userId"],
            file_name=doc["fileName"],
            presigned_url=doc["presignedUrl"],
            created_at=_parse_datetime(doc["createdAt"]),
            expires_at=_parse_datetime(doc["expiresAt"]),
        )
        now = self._clock()
        if record.expires_at <= now:
            return DownloadTokenStatus.EXPIRED, record
        try:
            docs.write(_token_used_key(token), {"usedAt": now.isoformat()}, if_absent=True)
        except PreconditionFailedError:
            return DownloadTokenStatus.ALREADY_USED, record
        return DownloadTokenStatus.OK, record
