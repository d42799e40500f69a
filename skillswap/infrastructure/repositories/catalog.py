from __future__ import annotations

import logging
from typing import Optional

from ...core.domain.rows import SkillProofRow, SkillRow, UserSkillRow, parse_row, parse_rows
from ...core.domain.values import SkillTitle
from ...core.errors import ConflictError, WriteError
from ...core.ports.backend import BackendClient, Query, eq
from ...core.ports.repositories import CatalogRepository

logger = logging.getLogger(__name__)


class BackendCatalogRepository(CatalogRepository):
    def __init__(self, client: BackendClient) -> None:
        self.client = client

    async def list_skills(self) -> list[SkillRow]:  # type: ignore[override]
        rows = await self.client.select(Query("skills", "id,title").order_by("title"))
        return parse_rows(SkillRow, rows, source="skills")

    async def find_skill(self, title: SkillTitle) -> Optional[SkillRow]:  # type: ignore[override]
        # ilike treats % and _ as wildcards, so confirm the candidates by key
        rows = parse_rows(SkillRow, await self.client.select(Query("skills", "id,title").ilike("title", title.value)))
        for row in rows:
            if " ".join(row.title.split()).casefold() == title.key:
                return row
        return None

    async def get_or_create_skill(self, title: SkillTitle) -> tuple[SkillRow, bool]:  # type: ignore[override]
        existing = await self.find_skill(title)
        if existing is not None:
            return existing, False
        try:
            rows = await self.client.insert("skills", {"title": title.value})
        except ConflictError:
            # lost a race against another insert of the same title
            existing = await self.find_skill(title)
            if existing is None:
                raise
            return existing, False
        created = parse_row(SkillRow, rows[0] if rows else None, source="skills")
        if created is None:
            raise WriteError("skill insert returned no row")
        logger.info("SKILL_CREATED id=%s title=%s", created.id, created.title)
        return created, True

    async def rename_skill(self, skill_id: str, title: SkillTitle) -> Optional[SkillRow]:  # type: ignore[override]
        rows = await self.client.update("skills", {"title": title.value}, [eq("id", skill_id)])
        return parse_row(SkillRow, rows[0], source="skills") if rows else None

    async def delete_skill(self, skill_id: str) -> bool:  # type: ignore[override]
        return bool(await self.client.delete("skills", [eq("id", skill_id)]))

    async def offers_of(self, user_id: str) -> list[UserSkillRow]:  # type: ignore[override]
        rows = await self.client.select(Query("user_offers", "user_id,skill_id").eq("user_id", user_id))
        return parse_rows(UserSkillRow, rows, source="user_offers")

    async def wants_of(self, user_id: str) -> list[UserSkillRow]:  # type: ignore[override]
        rows = await self.client.select(Query("user_wants", "user_id,skill_id").eq("user_id", user_id))
        return parse_rows(UserSkillRow, rows, source="user_wants")

    async def _toggle(self, table: str, user_id: str, skill_id: str, enabled: bool) -> None:
        if enabled:
            try:
                await self.client.insert(table, {"user_id": user_id, "skill_id": skill_id})
            except ConflictError:
                logger.debug("TOGGLE_NOOP table=%s user=%s skill=%s", table, user_id, skill_id)
        else:
            await self.client.delete(table, [eq("user_id", user_id), eq("skill_id", skill_id)])

    async def set_offer(self, user_id: str, skill_id: str, enabled: bool) -> None:  # type: ignore[override]
        await self._toggle("user_offers", user_id, skill_id, enabled)

    async def set_want(self, user_id: str, skill_id: str, enabled: bool) -> None:  # type: ignore[override]
        await self._toggle("user_wants", user_id, skill_id, enabled)

    async def approved_proofs(self, user_id: str) -> list[SkillProofRow]:  # type: ignore[override]
        q = Query("skill_proofs").eq("user_id", user_id).eq("status", "approved")
        return parse_rows(SkillProofRow, await self.client.select(q), source="skill_proofs")

    async def add_proof(self, user_id: str, skill_id: str, storage_path: str) -> SkillProofRow:  # type: ignore[override]
        rows = await self.client.insert(
            "skill_proofs",
            {"user_id": user_id, "skill_id": skill_id, "storage_path": storage_path, "status": "approved"},
        )
        proof = parse_row(SkillProofRow, rows[0] if rows else None, source="skill_proofs")
        if proof is None:
            raise WriteError("proof insert returned no row")
        return proof
