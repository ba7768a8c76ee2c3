"""
Match report store on a flat object store.

Three key families:
  data       matchReports/data/{MAX_TIMESTAMP - created_ms:013d}_{matchId}.json  full report
  index      matchReports/by-match-id/{matchId}.json                            {"key": dataKey}
  signature  matchReports/by-signature/{sha256(signature)}.json                 {"key", "matchId", "signature"}

Data keys sort newest-first. The signature key is the uniqueness gate: it is only
ever created with a write-if-absent, and only removed on rollback or delete.
"""
from __future__ import annotations

import hashlib
import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import date, datetime, timedelta, timezone
from typing import Any

from backend.models import DeleteFailure, DeleteResult, MatchReport, ReportPlayer, ReportTeam
from backend.observability import log_event

from .json_store import JsonDocumentStore
from .object_store import PreconditionFailedError

logger = logging.getLogger(__name__)

MATCH_REPORT_DATA_PREFIX = "matchReports/data"
MATCH_REPORT_DATA_FOLDER = f"{MATCH_REPORT_DATA_PREFIX}/"
MATCH_REPORT_INDEX_PREFIX = "matchReports/by-match-id"
MATCH_REPORT_SIGNATURE_PREFIX = "matchReports/by-signature"
MAX_TIMESTAMP = 9999999999999
TIMESTAMP_WIDTH = 13

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class DuplicateMatchReportError(ValueError):
    """A report already exists for this date and team combination."""

    def __init__(self, match_id: str | None) -> None:
        super().__init__("Match report already exists for this date and team combination")
        self.match_id = match_id


# ---------- Key layout ----------


def _epoch_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH) // timedelta(milliseconds=1)


def build_data_key(created_at: datetime, match_id: str) -> str:
    inverted = str(MAX_TIMESTAMP - _epoch_millis(created_at)).zfill(TIMESTAMP_WIDTH)
    return f"{MATCH_REPORT_DATA_FOLDER}{inverted}_{match_id}.json"


def build_index_key(match_id: str) -> str:
    return f"{MATCH_REPORT_INDEX_PREFIX}/{match_id}.json"


def build_signature_key(signature: str) -> str:
    """Fixed-length key; team names are unbounded. The readable signature lives in the body."""
    digest = hashlib.sha256(signature.encode("utf-8")).hexdigest()
    return f"{MATCH_REPORT_SIGNATURE_PREFIX}/{digest}.json"


# ---------- Normalization ----------


def _parse_datetime(s: str) -> datetime:
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def parse_stored_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return _parse_datetime(str(value))
    except ValueError:
        return None


def normalize_match_date(value: Any) -> date | None:
    """Day of the match. Datetimes are truncated to their UTC day; junk becomes None."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return value
    else:
        text = str(value).strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            parsed = _parse_datetime(text)
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def _normalize_owner_id(owner_id: Any) -> str | None:
    if owner_id is None:
        return None
    normalized = str(owner_id).strip()
    return normalized or None


def _stat_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def normalize_stats(stats: Mapping[str, Any] | None) -> dict[str, str]:
    return {str(k): _stat_text(v) for k, v in (stats or {}).items()}


def normalize_teams(teams: list[Mapping[str, Any]] | None) -> list[ReportTeam]:
    """Field-by-field copy; anything beyond team/number/name/stats is dropped."""
    return [
        ReportTeam(
            team=str(team.get("team") or ""),
            players=[
                ReportPlayer(
                    number=int(player.get("number")),
                    name=str(player.get("name")),
                    stats=normalize_stats(player.get("stats")),
                )
                for player in (team.get("players") or [])
            ],
        )
        for team in (teams or [])
    ]


def _normalize_signature_team_name(name: Any) -> str | None:
    if not name:
        return None
    collapsed = " ".join(str(name).split())
    return collapsed.lower() or None


def build_match_signature(match_date: Any, team_names: list[Any]) -> str | None:
    """
    "2024-05-01__tigers__wolves" for the day plus sorted, lowercased team names.
    None when the date is missing/invalid or no team has a name.
    """
    day = normalize_match_date(match_date)
    if day is None:
        return None
    names = sorted(
        n for n in (_normalize_signature_team_name(t) for t in team_names) if n
    )
    if not names:
        return None
    return "__".join([day.isoformat(), *names])


def map_document(doc: Any) -> MatchReport | None:
    """Stored document -> MatchReport. Malformed documents map to None."""
    if not isinstance(doc, Mapping):
        return None
    try:
        match_id = doc.get("matchId") or doc["id"]
        return MatchReport(
            match_id=str(match_id),
            generated_at=parse_stored_datetime(doc.get("generatedAt")),
            match_date=normalize_match_date(doc.get("matchDate")),
            match_time=doc.get("matchTime"),
            set_columns=int(doc["setColumns"]),
            column_labels=[str(label) for label in doc.get("columnLabels") or []],
            teams=normalize_teams(doc.get("teams")),
            created_at=parse_stored_datetime(doc.get("createdAt")),
            owner_id=str(doc.get("ownerId") or ""),
        )
    except (KeyError, TypeError, ValueError):
        return None


def clamp_limit(limit: Any) -> int:
    """Missing, zero or non-numeric -> 50; otherwise clamped to [1, 200]."""
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return DEFAULT_LIST_LIMIT
    if not value:
        return DEFAULT_LIST_LIMIT
    return max(1, min(value, MAX_LIST_LIMIT))


def utc_now_millis() -> datetime:
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


# ---------- MatchReportRepository ----------


class MatchReportRepository:
    """
    Create/read/list/delete for match reports. No update.
    At most one report per match signature; first writer wins.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._clock = clock or utc_now_millis
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def create(self, docs: JsonDocumentStore, payload: Mapping[str, Any], owner_id: str) -> MatchReport:
        """
        Reserve the signature (if any), then write data, then index.
        Raises DuplicateMatchReportError carrying the existing matchId when the slot is taken.
        """
        owner = _normalize_owner_id(owner_id)
        if owner is None:
            raise ValueError("owner_id is required to create match reports")

        generated_at = payload.get("generatedAt")
        if not isinstance(generated_at, datetime):
            generated_at = _parse_datetime(str(generated_at))
        match_date = normalize_match_date(payload.get("matchDate"))
        teams = normalize_teams(payload.get("teams"))

        created_at = self._clock()
        match_id = self._id_factory()
        data_key = build_data_key(created_at, match_id)
        report = MatchReport(
            match_id=match_id,
            generated_at=generated_at,
            match_date=match_date,
            match_time=payload.get("matchTime") or None,
            set_columns=int(payload.get("setColumns")),
            column_labels=[str(label) for label in payload.get("columnLabels") or []],
            teams=teams,
            created_at=created_at,
            owner_id=owner,
        )

        signature = build_match_signature(match_date, [t.team for t in teams])
        signature_key = build_signature_key(signature) if signature else None
        if signature_key:
            try:
                docs.write(
                    signature_key,
                    {"key": data_key, "matchId": match_id, "signature": signature},
                    if_absent=True,
                )
            except PreconditionFailedError:
                existing = docs.read(signature_key)
                winner = existing.get("matchId") if isinstance(existing, Mapping) else None
                log_event(logger, "match_report.duplicate", signature=signature, existing_match_id=winner)
                raise DuplicateMatchReportError(winner) from None

        try:
            docs.write(data_key, report.to_dict())
            docs.write(build_index_key(match_id), {"key": data_key})
        except Exception:
            self._delete_quietly(docs, data_key, "data")
            if signature_key:
                self._delete_quietly(docs, signature_key, "signature")
            raise

        log_event(logger, "match_report.created", match_id=match_id, owner_id=owner, signature=signature)
        return report

    def find_by_match_id(self, docs: JsonDocumentStore, match_id: str) -> MatchReport | None:
        index = docs.read(build_index_key(match_id))
        if not isinstance(index, Mapping) or not index.get("key"):
            return None
        return map_document(docs.read(index["key"]))

    def list(
        self,
        docs: JsonDocumentStore,
        limit: int | None = DEFAULT_LIST_LIMIT,
        owner_id: str | None = None,
    ) -> list[MatchReport]:
        """
        Newest first, straight from key order. The owner filter runs after the
        store-side limit, so a scoped list may hold fewer than limit items.
        """
        owner = _normalize_owner_id(owner_id)
        reports: list[MatchReport] = []
        for obj in docs.store.list(MATCH_REPORT_DATA_FOLDER, limit=clamp_limit(limit)):
            try:
                doc = docs.read(obj.key)
            except ValueError:
                log_event(logger, "match_report.unreadable", logging.WARNING, key=obj.key)
                continue
            report = map_document(doc)
            if report is None:
                continue
            if owner and report.owner_id != owner:
                continue
            reports.append(report)
        return reports

    def delete(self, docs: JsonDocumentStore, match_id: str, owner_id: str) -> DeleteResult:
        """
        Remove data, index and signature keys. Each removal is independent and
        best-effort once ownership is confirmed.
        """
        index_key = build_index_key(match_id)
        index = docs.read(index_key)
        if not isinstance(index, Mapping) or not index.get("key"):
            return DeleteResult(ok=False, code=DeleteFailure.NOT_FOUND)

        data_key = str(index["key"])
        doc = docs.read(data_key)
        if not isinstance(doc, Mapping):
            self._delete_quietly(docs, index_key, "index")
            return DeleteResult(ok=False, code=DeleteFailure.NOT_FOUND)

        if doc.get("ownerId") != _normalize_owner_id(owner_id):
            return DeleteResult(ok=False, code=DeleteFailure.FORBIDDEN)

        team_names = [t.get("team") for t in doc.get("teams") or [] if isinstance(t, Mapping)]
        signature = build_match_signature(doc.get("matchDate"), team_names)

        self._delete_quietly(docs, data_key, "data")
        self._delete_quietly(docs, index_key, "index")
        if signature:
            self._release_signature(docs, build_signature_key(signature), match_id)

        log_event(logger, "match_report.deleted", match_id=match_id, owner_id=owner_id)
        return DeleteResult(ok=True)

    def _release_signature(self, docs: JsonDocumentStore, signature_key: str, match_id: str) -> None:
        """Delete the reservation only while it still belongs to match_id."""
        try:
            reservation = docs.read(signature_key)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to read match report signature key %s", signature_key, exc_info=True)
            return
        if not isinstance(reservation, Mapping):
            return
        if reservation.get("matchId") != match_id:
            log_event(
                logger,
                "match_report.signature_kept",
                match_id=match_id,
                holder=reservation.get("matchId"),
            )
            return
        self._delete_quietly(docs, signature_key, "signature")

    @staticmethod
    def _delete_quietly(docs: JsonDocumentStore, key: str, kind: str) -> None:
        try:
            docs.delete(key)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to delete match report %s key %s", kind, key, exc_info=True)
