"""In-process backend with the hosted service's table and procedure contracts.

Used for local development and the test-suite. Row policies mirror the hosted
ones closely enough for screens to behave the same: rows a user may not touch
are simply not matched by their update/delete, constraint violations raise
:class:`WriteError` subclasses, and every committed change is published to the
change feed.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Iterable
from uuid import uuid4

from ...core.domain.models import ChangeEvent, ChangeType, thread_pair
from ...core.errors import (
    BackendError,
    ConflictError,
    NotFoundError,
    PermissionDenied,
    QueryError,
    WriteError,
)
from ...core.ports.backend import BackendClient, Filter, Query
from ...core.ports.services import ChangeFeedBus, Clock
from ..services.clock import SystemClock

logger = logging.getLogger(__name__)

TABLES = (
    "profiles",
    "skills",
    "user_offers",
    "user_wants",
    "availability_slots",
    "bookings",
    "threads",
    "messages",
    "skill_proofs",
    "session_feedback",
)
VIEWS = ("user_ratings",)
DATETIME_COLUMNS = frozenset({"start_at", "end_at", "created_at", "read_at"})


def _parse_dt(value: Any) -> Any:
    if isinstance(value, str):
        dt = datetime.fromisoformat(value)
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _export(row: dict[str, Any]) -> dict[str, Any]:
    return {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in row.items()}


def _normalise(values: dict[str, Any]) -> dict[str, Any]:
    return {k: (_parse_dt(v) if k in DATETIME_COLUMNS and v is not None else v) for k, v in values.items()}


def _sort_key(column: str) -> Callable[[dict[str, Any]], tuple[bool, Any]]:
    def key(row: dict[str, Any]) -> tuple[bool, Any]:
        v = row.get(column)
        return (v is None, v if v is not None else "")
    return key


class InMemoryBackend:
    """Shared store. Obtain per-user views with :meth:`client`."""

    def __init__(self, bus: ChangeFeedBus | None = None, clock: Clock | None = None) -> None:
        self.bus = bus
        self.clock = clock or SystemClock()
        self.tables: dict[str, dict[str, dict[str, Any]]] = {t: {} for t in TABLES}
        self.calls: list[tuple[str, str, str]] = []
        self._faults: dict[str, list[BackendError]] = defaultdict(list)

    def client(self, user_id: str) -> "InMemoryBackendClient":
        return InMemoryBackendClient(self, user_id)

    def seed(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row directly, bypassing policies and the change feed."""
        stored = _normalise(dict(row))
        stored.setdefault("id", str(uuid4()))
        self.tables[table][self._key(table, stored)] = stored
        return _export(stored)

    def fail_next(self, operation: str, error: BackendError) -> None:
        """Make the next ``operation`` (``select:messages``, ``rpc:send_message``...) fail."""
        self._faults[operation].append(error)

    def calls_of(self, operation: str) -> list[tuple[str, str, str]]:
        return [c for c in self.calls if c[1] == operation]

    # ------------------------------------------------------------------ helpers

    @staticmethod
    def _key(table: str, row: dict[str, Any]) -> str:
        if table in ("user_offers", "user_wants"):
            return f"{row['user_id']}:{row['skill_id']}"
        return str(row["id"])

    def _check_fault(self, user_id: str, operation: str) -> None:
        self.calls.append((user_id, operation, self.clock.now().isoformat()))
        pending = self._faults.get(operation)
        if pending:
            raise pending.pop(0)

    async def _publish(self, events: Iterable[ChangeEvent]) -> None:
        if self.bus is None:
            return
        for event in events:
            await self.bus.publish(event)

    def _event(self, table: str, type: ChangeType, new: dict[str, Any] | None, old: dict[str, Any] | None) -> ChangeEvent:
        return ChangeEvent(
            table=table,
            type=type,
            new=_export(new) if new is not None else None,
            old=_export(old) if old is not None else None,
            commit_ts=self.clock.now(),
        )

    def _slot(self, slot_id: Any) -> dict[str, Any] | None:
        return self.tables["availability_slots"].get(str(slot_id))

    def _booking_for_slot(self, slot_id: Any) -> dict[str, Any] | None:
        for b in self.tables["bookings"].values():
            if str(b["slot_id"]) == str(slot_id):
                return b
        return None

    def _thread_ids_of(self, user_id: str) -> set[str]:
        return {tid for tid, t in self.tables["threads"].items() if user_id in (t["user_a"], t["user_b"])}

    def _visible(self, user_id: str, table: str) -> list[dict[str, Any]]:
        if table == "user_ratings":
            return self._ratings()
        rows = list(self.tables[table].values())
        if table == "threads":
            return [r for r in rows if user_id in (r["user_a"], r["user_b"])]
        if table == "messages":
            mine = self._thread_ids_of(user_id)
            return [r for r in rows if str(r["thread_id"]) in mine]
        return rows

    def _ratings(self) -> list[dict[str, Any]]:
        by_user: dict[str, list[int]] = defaultdict(list)
        for fb in self.tables["session_feedback"].values():
            by_user[str(fb["ratee_id"])].append(int(fb["rating"]))
        return [
            {"user_id": uid, "avg_rating": sum(r) / len(r), "rating_count": len(r)}
            for uid, r in sorted(by_user.items())
        ]

    def _can_modify(self, user_id: str, table: str, row: dict[str, Any]) -> bool:
        if table == "profiles":
            return row["id"] == user_id
        if table == "skills":
            return True
        if table in ("user_offers", "user_wants", "skill_proofs"):
            return row["user_id"] == user_id
        if table == "availability_slots":
            return row["user_id"] == user_id
        if table == "bookings":
            slot = self._slot(row["slot_id"])
            return row["booker_id"] == user_id or (slot is not None and slot["user_id"] == user_id)
        if table == "session_feedback":
            return row["rater_id"] == user_id
        return False

    # ------------------------------------------------------------------ tables

    async def select(self, user_id: str, query: Query) -> list[dict[str, Any]]:
        self._check_fault(user_id, f"select:{query.table}")
        if query.table not in TABLES and query.table not in VIEWS:
            raise QueryError(f'relation "{query.table}" does not exist')
        rows = [r for r in self._visible(user_id, query.table) if query.matches(r)]
        for column, desc in reversed(query.order):
            rows.sort(key=_sort_key(column), reverse=desc)
        if query.limit is not None:
            rows = rows[: query.limit]
        return [_export(r) for r in rows]

    async def insert(self, user_id: str, table: str, values: dict[str, Any]) -> list[dict[str, Any]]:
        self._check_fault(user_id, f"insert:{table}")
        if table not in TABLES:
            raise PermissionDenied(f'cannot insert into "{table}"')
        row = _normalise(dict(values))
        self._validate_insert(user_id, table, row)
        if table not in ("user_offers", "user_wants"):
            row.setdefault("id", str(uuid4()))
        key = self._key(table, row)
        if key in self.tables[table]:
            raise ConflictError(f'duplicate key value violates unique constraint on "{table}"')
        self.tables[table][key] = row
        await self._publish([self._event(table, ChangeType.insert, row, None)])
        return [_export(row)]

    def _validate_insert(self, user_id: str, table: str, row: dict[str, Any]) -> None:
        if table in ("threads", "messages"):
            raise PermissionDenied(f'use the messaging procedures to write "{table}"')
        if table == "profiles":
            if row.get("id") != user_id:
                raise PermissionDenied("new row violates row-level security policy for \"profiles\"")
            return
        if table == "skills":
            if not str(row.get("title") or "").strip():
                raise WriteError('null value in column "title" violates not-null constraint')
            return
        if table in ("user_offers", "user_wants", "skill_proofs"):
            row.setdefault("user_id", user_id)
            if row["user_id"] != user_id:
                raise PermissionDenied(f'new row violates row-level security policy for "{table}"')
            if str(row.get("skill_id")) not in self.tables["skills"]:
                raise WriteError(f'insert on "{table}" violates foreign key constraint on "skill_id"')
            row["skill_id"] = str(row["skill_id"])
            if table == "skill_proofs":
                row.setdefault("status", "pending")
            return
        if table == "availability_slots":
            row.setdefault("user_id", user_id)
            row.setdefault("timezone", "UTC")
            row.setdefault("notes", None)
            if row["user_id"] != user_id:
                raise PermissionDenied('new row violates row-level security policy for "availability_slots"')
            if row.get("start_at") is None or row.get("end_at") is None or row["end_at"] <= row["start_at"]:
                raise WriteError('new row for "availability_slots" violates check constraint "end_after_start"')
            return
        if table == "bookings":
            row.setdefault("booker_id", user_id)
            row.setdefault("meeting_url", None)
            slot = self._slot(row.get("slot_id"))
            if slot is None:
                raise NotFoundError("slot not found")
            row["slot_id"] = str(row["slot_id"])
            if row["booker_id"] != user_id:
                raise PermissionDenied('new row violates row-level security policy for "bookings"')
            if slot["user_id"] == user_id:
                raise PermissionDenied("cannot book your own slot")
            if self._booking_for_slot(row["slot_id"]) is not None:
                raise ConflictError("slot already booked")
            return
        if table == "session_feedback":
            row.setdefault("rater_id", user_id)
            row.setdefault("note", None)
            if row["rater_id"] != user_id:
                raise PermissionDenied('new row violates row-level security policy for "session_feedback"')
            self._check_rating(row.get("rating"))
            if self._slot(row.get("slot_id")) is None:
                raise NotFoundError("slot not found")
            row["slot_id"] = str(row["slot_id"])
            for fb in self.tables["session_feedback"].values():
                if fb["slot_id"] == row["slot_id"] and fb["rater_id"] == user_id:
                    raise ConflictError("feedback already submitted for this session")

    @staticmethod
    def _check_rating(value: Any) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or not (1 <= value <= 5):
            raise WriteError('new row for "session_feedback" violates check constraint "rating_range"')

    async def update(self, user_id: str, table: str, values: dict[str, Any], filters: list[Filter]) -> list[dict[str, Any]]:
        self._check_fault(user_id, f"update:{table}")
        if table not in TABLES or table in ("threads", "messages"):
            raise PermissionDenied(f'cannot update "{table}"')
        changes = _normalise(dict(values))
        if table == "session_feedback" and "rating" in changes:
            self._check_rating(changes["rating"])
        targets = [
            row
            for row in self.tables[table].values()
            if all(f.matches(row) for f in filters) and self._can_modify(user_id, table, row)
        ]
        # the statement is atomic: check every row before touching any
        if table == "availability_slots":
            for row in targets:
                merged = {**row, **changes}
                if merged["end_at"] <= merged["start_at"]:
                    raise WriteError('new row for "availability_slots" violates check constraint "end_after_start"')
        events: list[ChangeEvent] = []
        result: list[dict[str, Any]] = []
        for row in targets:
            old = dict(row)
            row.update(changes)
            events.append(self._event(table, ChangeType.update, row, old))
            result.append(_export(row))
        await self._publish(events)
        return result

    async def delete(self, user_id: str, table: str, filters: list[Filter]) -> list[dict[str, Any]]:
        self._check_fault(user_id, f"delete:{table}")
        if table not in TABLES or table in ("threads", "messages"):
            raise PermissionDenied(f'cannot delete from "{table}"')
        events: list[ChangeEvent] = []
        result: list[dict[str, Any]] = []
        for key, row in list(self.tables[table].items()):
            if not all(f.matches(row) for f in filters) or not self._can_modify(user_id, table, row):
                continue
            events.extend(self._cascade(table, row))
            del self.tables[table][key]
            events.append(self._event(table, ChangeType.delete, None, row))
            result.append(_export(row))
        await self._publish(events)
        return result

    def _cascade(self, table: str, row: dict[str, Any]) -> list[ChangeEvent]:
        events: list[ChangeEvent] = []
        if table == "availability_slots":
            booking = self._booking_for_slot(row["id"])
            if booking is not None:
                del self.tables["bookings"][str(booking["id"])]
                events.append(self._event("bookings", ChangeType.delete, None, booking))
        elif table == "skills":
            for dep in ("user_offers", "user_wants", "skill_proofs"):
                for key, r in list(self.tables[dep].items()):
                    if str(r["skill_id"]) == str(row["id"]):
                        del self.tables[dep][key]
                        events.append(self._event(dep, ChangeType.delete, None, r))
        return events

    # ------------------------------------------------------------------ procedures

    async def rpc(self, user_id: str, name: str, params: dict[str, Any]) -> Any:
        self._check_fault(user_id, f"rpc:{name}")
        handler = getattr(self, f"_rpc_{name}", None)
        if handler is None:
            raise NotFoundError(f"function {name} does not exist")
        logger.debug("MEM_RPC user=%s name=%s", user_id, name)
        return await handler(user_id, **params)

    async def _rpc_count_unread_messages(self, user_id: str, p_user: str) -> int:
        mine = self._thread_ids_of(p_user)
        return sum(
            1
            for m in self.tables["messages"].values()
            if str(m["thread_id"]) in mine and m["sender_id"] != p_user and m.get("read_at") is None
        )

    async def _rpc_mark_thread_read(self, user_id: str, p_user: str, p_thread: str) -> None:
        if p_user != user_id:
            raise PermissionDenied("can only mark your own messages read")
        if str(p_thread) not in self._thread_ids_of(p_user):
            raise NotFoundError("thread not found")
        now = self.clock.now()
        events: list[ChangeEvent] = []
        for m in self.tables["messages"].values():
            if str(m["thread_id"]) == str(p_thread) and m["sender_id"] != p_user and m.get("read_at") is None:
                old = dict(m)
                m["read_at"] = now
                events.append(self._event("messages", ChangeType.update, m, old))
        await self._publish(events)
        return None

    async def _rpc_get_or_create_thread(self, user_id: str, p_other: str) -> str:
        if not p_other or p_other == user_id:
            raise WriteError("cannot open a thread with yourself")
        a, b = thread_pair(user_id, str(p_other))
        for t in self.tables["threads"].values():
            if t["user_a"] == a and t["user_b"] == b:
                return str(t["id"])
        row = {"id": str(uuid4()), "user_a": a, "user_b": b, "created_at": self.clock.now()}
        self.tables["threads"][row["id"]] = row
        await self._publish([self._event("threads", ChangeType.insert, row, None)])
        return row["id"]

    async def _rpc_send_message(self, user_id: str, p_thread: str, p_content: str) -> None:
        if str(p_thread) not in self._thread_ids_of(user_id):
            raise PermissionDenied("not a participant of this thread")
        content = (p_content or "").strip()
        if not content:
            raise WriteError("message content cannot be empty")
        row = {
            "id": str(uuid4()),
            "thread_id": str(p_thread),
            "sender_id": user_id,
            "content": content,
            "created_at": self.clock.now(),
            "read_at": None,
        }
        self.tables["messages"][row["id"]] = row
        await self._publish([self._event("messages", ChangeType.insert, row, None)])
        return None

    async def _rpc_find_complementary_matches(self, user_id: str, p_user: str) -> list[dict[str, Any]]:
        titles = {sid: s["title"] for sid, s in self.tables["skills"].items()}
        offers: dict[str, set[str]] = defaultdict(set)
        wants: dict[str, set[str]] = defaultdict(set)
        for r in self.tables["user_offers"].values():
            offers[r["user_id"]].add(str(r["skill_id"]))
        for r in self.tables["user_wants"].values():
            wants[r["user_id"]].add(str(r["skill_id"]))
        profiles = self.tables["profiles"]
        others = (set(offers) | set(wants) | set(profiles)) - {p_user}
        now = self.clock.now()
        rows: list[dict[str, Any]] = []
        for other in sorted(others):
            offer_to_them = sorted(titles[s] for s in offers[p_user] & wants[other] if s in titles)
            want_from_them = sorted(titles[s] for s in offers[other] & wants[p_user] if s in titles)
            if not offer_to_them or not want_from_them:
                continue
            overlap = self._first_overlap(p_user, other, now)
            prof = profiles.get(other, {})
            row: dict[str, Any] = {
                "other_id": other,
                "other_name": prof.get("display_name"),
                "other_email": prof.get("email"),
                "offer_to_them": offer_to_them,
                "want_from_them": want_from_them,
                "overlap_weekday": None,
                "overlap_start_min": None,
                "overlap_end_min": None,
                "overlap_start_at": None,
                "overlap_end_at": None,
            }
            if overlap is not None:
                start, end = overlap
                row.update(
                    overlap_weekday=(start.weekday() + 1) % 7,  # 0 = Sunday
                    overlap_start_min=start.hour * 60 + start.minute,
                    overlap_end_min=end.hour * 60 + end.minute if end.date() == start.date() else 24 * 60,
                    overlap_start_at=start.isoformat(),
                    overlap_end_at=end.isoformat(),
                )
            rows.append(row)
        rows.sort(key=lambda r: (r["overlap_start_at"] is None, r["overlap_start_at"] or "", r["other_id"]))
        return rows

    def _first_overlap(self, a: str, b: str, now: datetime) -> tuple[datetime, datetime] | None:
        slots = self.tables["availability_slots"].values()
        mine = [s for s in slots if s["user_id"] == a and s["end_at"] > now]
        theirs = [s for s in slots if s["user_id"] == b and s["end_at"] > now]
        best: tuple[datetime, datetime] | None = None
        for x in mine:
            for y in theirs:
                start = max(x["start_at"], y["start_at"], now)
                end = min(x["end_at"], y["end_at"])
                if end > start and (best is None or start < best[0]):
                    best = (start, end)
        return best


class InMemoryBackendClient(BackendClient):
    def __init__(self, backend: InMemoryBackend, user_id: str) -> None:
        self._backend = backend
        self._user_id = user_id

    @property
    def user_id(self) -> str:
        return self._user_id

    async def select(self, query: Query) -> list[dict[str, Any]]:
        return await self._backend.select(self._user_id, query)

    async def insert(self, table: str, values: dict[str, Any]) -> list[dict[str, Any]]:
        return await self._backend.insert(self._user_id, table, values)

    async def update(self, table: str, values: dict[str, Any], filters: list[Filter]) -> list[dict[str, Any]]:
        return await self._backend.update(self._user_id, table, values, filters)

    async def delete(self, table: str, filters: list[Filter]) -> list[dict[str, Any]]:
        return await self._backend.delete(self._user_id, table, filters)

    async def rpc(self, name: str, params: dict[str, Any]) -> Any:
        return await self._backend.rpc(self._user_id, name, params)
