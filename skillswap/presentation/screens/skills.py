from __future__ import annotations

import logging
from typing import Optional

from ...application.sync.projection import ProjectionCache
from ...application.sync.subscriber import Interest
from ...core.domain.models import ChangeEvent, ChangeType, SkillSelection
from ...core.domain.rows import SkillRow, UserSkillRow, parse_row
from ...core.domain.values import SkillTitle
from ...core.errors import DomainError, ValidationError
from .base import Screen, event_id

logger = logging.getLogger(__name__)


class SkillsScreen(Screen):
    """Skill catalogue with the viewer's teach/learn flags.

    Teaching a skill needs an approved proof; ``attach_proof`` records one for
    a document already stored by the upload flow.
    """

    name = "skills"
    load_error_title = "Load skills error"

    def __init__(self, ctx) -> None:
        super().__init__(ctx)
        self.skills: ProjectionCache[SkillRow] = ProjectionCache("skills")
        self.offer_ids: set[str] = set()
        self.want_ids: set[str] = set()
        self.verified_ids: set[str] = set()

    @property
    def selections(self) -> list[SkillSelection]:
        return [
            SkillSelection(
                skill_id=s.id,
                title=s.title,
                is_offer=s.id in self.offer_ids,
                is_want=s.id in self.want_ids,
                is_verified=s.id in self.verified_ids,
            )
            for s in sorted(self.skills, key=lambda s: (s.title.casefold(), s.id))
        ]

    def selection(self, skill_id: str) -> Optional[SkillSelection]:
        for sel in self.selections:
            if sel.skill_id == skill_id:
                return sel
        return None

    async def load(self) -> None:
        uid = self.user_id
        token = self.skills.begin_reload()
        rows = await self.ctx.catalog.list_skills()
        offers = await self.ctx.catalog.offers_of(uid)
        wants = await self.ctx.catalog.wants_of(uid)
        proofs = await self.ctx.catalog.approved_proofs(uid)
        if not self.active or not self.skills.replace_all(token, rows):
            return
        self.offer_ids = {o.skill_id for o in offers}
        self.want_ids = {w.skill_id for w in wants}
        self.verified_ids = {p.skill_id for p in proofs}

    async def add_skill(self, title: str) -> Optional[SkillRow]:
        try:
            clean = SkillTitle(title or "")
            row, created = await self.ctx.catalog.get_or_create_skill(clean)
        except DomainError as e:
            self.fail(e, "Error")
            return None
        self.skills.apply(ChangeType.insert, row)
        if created:
            self.notify("Success", "Skill added")
        else:
            self.notify("Already listed", f'"{row.title}" is already in the list.')
        return row

    async def rename_skill(self, skill_id: str, title: str) -> bool:
        try:
            clean = SkillTitle(title or "")
            clash = await self.ctx.catalog.find_skill(clean)
            if clash is not None and clash.id != skill_id:
                raise ValidationError(f'"{clash.title}" already exists')
            row = await self.ctx.catalog.rename_skill(skill_id, clean)
        except DomainError as e:
            self.fail(e, "Error")
            return False
        if row is None:
            await self.reload()
            self.notify("Updated", "Skill updated (reloaded)")
            return True
        self.skills.apply(ChangeType.update, row)
        self.notify("Success", "Skill updated")
        return True

    async def delete_skill(self, skill_id: str) -> bool:
        try:
            await self.ctx.catalog.delete_skill(skill_id)
        except DomainError as e:
            self.fail(e, "Delete error")
            return False
        self._forget(skill_id)
        return True

    def _forget(self, skill_id: str) -> None:
        self.skills.remove(skill_id)
        self.offer_ids.discard(skill_id)
        self.want_ids.discard(skill_id)
        self.verified_ids.discard(skill_id)

    async def toggle_want(self, skill_id: str) -> bool:
        enable = skill_id not in self.want_ids
        try:
            await self.ctx.catalog.set_want(self.user_id, skill_id, enable)
        except DomainError as e:
            self.fail(e, "Error")
            return False
        (self.want_ids.add if enable else self.want_ids.discard)(skill_id)
        return True

    async def attach_proof(self, skill_id: str, storage_path: str) -> bool:
        try:
            await self.ctx.catalog.add_proof(self.user_id, skill_id, storage_path)
        except DomainError as e:
            self.fail(e, "Save error")
            return False
        self.verified_ids.add(skill_id)
        return True

    async def toggle_offer(self, skill_id: str, proof_path: Optional[str] = None) -> bool:
        if skill_id in self.offer_ids:
            try:
                await self.ctx.catalog.set_offer(self.user_id, skill_id, False)
            except DomainError as e:
                self.fail(e, "Error")
                return False
            self.offer_ids.discard(skill_id)
            return True

        if skill_id not in self.verified_ids:
            if not proof_path:
                self.notify("Proof required", "Attach a proof document before teaching this skill.")
                return False
            if not await self.attach_proof(skill_id, proof_path):
                return False
        try:
            await self.ctx.catalog.set_offer(self.user_id, skill_id, True)
        except DomainError as e:
            self.fail(e, "Error")
            return False
        self.offer_ids.add(skill_id)
        self.notify("Success", "Teaching enabled for this skill.")
        return True

    async def subscribe(self) -> None:
        uid = self.user_id
        await self.subscriber.open(
            f"skills:{uid}",
            [
                Interest("skills"),
                Interest("user_offers", None, "user_id", uid),
                Interest("user_wants", None, "user_id", uid),
            ],
            self._on_change,
            on_reconnect=self.reload,
        )

    def _on_change(self, event: ChangeEvent) -> None:
        if not self.active:
            return
        if event.table == "skills":
            if event.type is ChangeType.delete:
                sid = event_id(event)
                if sid is not None:
                    self._forget(sid)
                return
            row = parse_row(SkillRow, event.new, source="feed:skills")
            if row is not None:
                self.skills.apply(event.type, row)
            return
        link = parse_row(UserSkillRow, event.row, source=f"feed:{event.table}")
        if link is None:
            return
        ids = self.offer_ids if event.table == "user_offers" else self.want_ids
        if event.type is ChangeType.delete:
            ids.discard(link.skill_id)
        else:
            ids.add(link.skill_id)
