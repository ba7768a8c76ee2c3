"""
Data models for the volleyball statistics backend.
Domain objects only; no persistence or API logic.

Stored documents and API payloads share the same camelCase field names;
to_dict() produces that shape.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


# ---------- Delete outcome ----------
class DeleteFailure(str, Enum):
    NOT_FOUND = "not-found"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class DeleteResult:
    ok: bool
    code: DeleteFailure | None = None


# ---------- Match report ----------
@dataclass
class ReportPlayer:
    """One player row. Stats values are always strings once normalized."""
    number: int
    name: str
    stats: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"number": self.number, "name": self.name, "stats": dict(self.stats)}


@dataclass
class ReportTeam:
    team: str
    players: list[ReportPlayer] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"team": self.team, "players": [p.to_dict() for p in self.players]}


@dataclass
class MatchReport:
    """
    A finalized statistics record for one match.
    match_id, created_at and owner_id are assigned by the store and never change.
    match_date / match_time describe the real-world match, not storage.
    """
    match_id: str
    generated_at: datetime | None
    match_date: date | None
    match_time: str | None
    set_columns: int
    column_labels: list[str]
    teams: list[ReportTeam]
    created_at: datetime | None
    owner_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.match_id,
            "matchId": self.match_id,
            "generatedAt": _iso(self.generated_at),
            "matchDate": _iso(self.match_date),
            "matchTime": self.match_time,
            "setColumns": self.set_columns,
            "columnLabels": list(self.column_labels),
            "teams": [t.to_dict() for t in self.teams],
            "createdAt": _iso(self.created_at),
            "ownerId": self.owner_id,
        }


# ---------- User ----------
@dataclass
class TeamHistoryEntry:
    team_name: str
    team_country: str
    season_start: datetime
    season_end: datetime
    player_number: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "teamName": self.team_name,
            "teamCountry": self.team_country,
            "seasonStart": self.season_start.isoformat(),
            "seasonEnd": self.season_end.isoformat(),
            "playerNumber": self.player_number,
        }


@dataclass
class User:
    """
    An account. email is unique (lowercased); password_hash never leaves the server.
    """
    id: str
    name: str
    email: str
    password_hash: str
    created_at: datetime
    age: int | None = None
    country: str | None = None
    current_team: str | None = None
    current_team_country: str | None = None
    years_as_a_professional: int | None = None
    player_number: str | None = None
    team_history: list[TeamHistoryEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Public shape (no password hash)."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "age": self.age,
            "country": self.country,
            "currentTeam": self.current_team,
            "currentTeamCountry": self.current_team_country,
            "yearsAsAProfessional": self.years_as_a_professional,
            "playerNumber": self.player_number,
            "teamHistory": [h.to_dict() for h in self.team_history],
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class RequestUser:
    """Verified caller identity taken from an access token."""
    id: str
    email: str
    name: str


# ---------- Download token ----------
class DownloadTokenStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    EXPIRED = "expired"


@dataclass
class DownloadToken:
    token: str
    user_id: str
    file_name: str
    presigned_url: str
    created_at: datetime
    expires_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "userId": self.user_id,
            "fileName": self.file_name,
            "presignedUrl": self.presigned_url,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
        }
