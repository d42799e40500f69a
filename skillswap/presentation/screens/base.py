from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ...core.domain.models import AuthSession, ChangeEvent
from ...core.errors import DomainError, SubscriptionError, alert_title
from ...core.ports.backend import BackendClient
from ...core.ports.repositories import (
    CatalogRepository,
    MessagingRepository,
    PeopleRepository,
    SchedulingRepository,
)
from ...core.ports.services import ChangeFeedBus, Clock, Notifier
from ...application.sync.subscriber import ChangeFeedSubscriber
from ...infrastructure.config import Settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ScreenContext:
    """Everything a screen needs, injected once per signed-in session."""
    settings: Settings
    session: AuthSession
    backend: BackendClient
    bus: ChangeFeedBus
    clock: Clock
    notifier: Notifier
    messaging: MessagingRepository
    scheduling: SchedulingRepository
    catalog: CatalogRepository
    people: PeopleRepository

    @property
    def user_id(self) -> str:
        return self.session.user_id


def event_id(event: ChangeEvent) -> Optional[str]:
    value = event.value("id")
    return None if value is None else str(value)


class Screen:
    """Lifecycle shared by all screens.

    ``mount`` runs the authoritative load, then attaches the feed. ``unmount``
    flips ``active`` off first, so results of calls still in flight are
    dropped, then closes every subscription.
    """

    name = "screen"
    load_error_title = "Load error"

    def __init__(self, ctx: ScreenContext) -> None:
        self.ctx = ctx
        self.subscriber = ChangeFeedSubscriber(ctx.bus, ctx.settings)
        self.active = False
        self.loading = False

    @property
    def user_id(self) -> str:
        return self.ctx.user_id

    async def mount(self) -> None:
        self.active = True
        await self.reload()
        if not self.active:
            return
        try:
            await self.subscribe()
        except SubscriptionError as e:
            logger.warning("FEED_SUBSCRIBE_FAILED screen=%s err=%s", self.name, e)

    async def unmount(self) -> None:
        self.active = False
        await self.subscriber.close_all()

    async def reload(self) -> bool:
        self.loading = True
        try:
            await self.load()
            return True
        except DomainError as e:
            self.fail(e, self.load_error_title)
            return False
        finally:
            self.loading = False

    async def load(self) -> None:
        raise NotImplementedError

    async def subscribe(self) -> None:
        return None

    def fail(self, exc: BaseException, title: str = "Error") -> None:
        if not self.active:
            logger.info("ALERT_SUPPRESSED screen=%s err=%s", self.name, exc)
            return
        logger.warning("SCREEN_ERROR screen=%s title=%s err=%s", self.name, title, exc)
        self.ctx.notifier.alert(alert_title(exc, title), str(exc))

    def notify(self, title: str, message: str) -> None:
        if self.active:
            self.ctx.notifier.alert(title, message)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} user={self.user_id} active={self.active}>"
