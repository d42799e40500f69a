from __future__ import annotations

from typing import Iterable, Optional

from ...core.domain.rows import MatchRow, ProfileRow, UserRatingRow, parse_row, parse_rows
from ...core.errors import WriteError
from ...core.ports.backend import BackendClient, Query, eq
from ...core.ports.repositories import PeopleRepository

PROFILE_COLUMNS = "id,display_name,email,bio"


class BackendPeopleRepository(PeopleRepository):
    def __init__(self, client: BackendClient) -> None:
        self.client = client

    async def get_profile(self, user_id: str) -> Optional[ProfileRow]:  # type: ignore[override]
        rows = await self.client.select(Query("profiles", PROFILE_COLUMNS).eq("id", user_id).take(1))
        return parse_row(ProfileRow, rows[0], source="profiles") if rows else None

    async def profiles(self, user_ids: Iterable[str]) -> list[ProfileRow]:  # type: ignore[override]
        ids = sorted(set(user_ids))
        if not ids:
            return []
        rows = await self.client.select(Query("profiles", PROFILE_COLUMNS).in_("id", ids))
        return parse_rows(ProfileRow, rows, source="profiles")

    async def save_profile(self, user_id: str, display_name: Optional[str], bio: Optional[str]) -> ProfileRow:  # type: ignore[override]
        values = {"display_name": display_name, "bio": bio}
        rows = await self.client.update("profiles", values, [eq("id", user_id)])
        if not rows:
            rows = await self.client.insert("profiles", {"id": user_id, **values})
        profile = parse_row(ProfileRow, rows[0] if rows else None, source="profiles")
        if profile is None:
            raise WriteError("profile save returned no row")
        return profile

    async def ratings(self, user_ids: Iterable[str]) -> list[UserRatingRow]:  # type: ignore[override]
        ids = sorted(set(user_ids))
        if not ids:
            return []
        q = Query("user_ratings", "user_id,avg_rating,rating_count").in_("user_id", ids)
        return parse_rows(UserRatingRow, await self.client.select(q), source="user_ratings")

    async def find_matches(self, user_id: str) -> list[MatchRow]:  # type: ignore[override]
        data = await self.client.rpc("find_complementary_matches", {"p_user": user_id})
        return parse_rows(MatchRow, data or [], source="find_complementary_matches")
