"""Public display screens: store contract, backends and service.

ScreenService owns the rules (ids, public tokens, updated_at); the store
only keeps records. Backends are injected:

    ScreenService(InMemoryScreenStore())        # tests
    ScreenService(SqliteScreenStore(repo))      # production
"""

from __future__ import annotations

import copy
import logging
import secrets
from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol

from lidgeld.database.models import PublicScreen, ScreenType

if TYPE_CHECKING:
    from lidgeld.database.repository import Repository

logger = logging.getLogger(__name__)

_PATCHABLE = frozenset({"name", "type", "active", "config"})


class ScreenNotFoundError(Exception):
    def __init__(self, screen_id: str):
        self.screen_id = screen_id
        super().__init__(f"Public screen '{screen_id}' not found")


class ScreenStore(Protocol):
    def list(self) -> list[PublicScreen]: ...

    def get(self, screen_id: str) -> PublicScreen | None: ...

    def by_token(self, token: str) -> PublicScreen | None: ...

    def add(self, screen: PublicScreen) -> PublicScreen: ...

    def save(self, screen: PublicScreen) -> bool: ...

    def remove(self, screen_id: str) -> bool: ...


class InMemoryScreenStore:
    """Dict-backed store. Returns copies so callers cannot mutate records."""

    def __init__(self, screens: list[PublicScreen] | None = None):
        self._screens: dict[str, PublicScreen] = {}
        for screen in screens or []:
            self._screens[screen.id] = copy.deepcopy(screen)

    def list(self) -> list[PublicScreen]:
        return [copy.deepcopy(s) for s in self._screens.values()]

    def get(self, screen_id: str) -> PublicScreen | None:
        screen = self._screens.get(screen_id)
        return copy.deepcopy(screen) if screen else None

    def by_token(self, token: str) -> PublicScreen | None:
        for screen in self._screens.values():
            if screen.public_token == token:
                return copy.deepcopy(screen)
        return None

    def add(self, screen: PublicScreen) -> PublicScreen:
        if screen.id in self._screens:
            raise ValueError(f"Duplicate screen id: {screen.id}")
        self._screens[screen.id] = copy.deepcopy(screen)
        return screen

    def save(self, screen: PublicScreen) -> bool:
        if screen.id not in self._screens:
            return False
        self._screens[screen.id] = copy.deepcopy(screen)
        return True

    def remove(self, screen_id: str) -> bool:
        return self._screens.pop(screen_id, None) is not None


class SqliteScreenStore:
    """Store backed by the public_screens table."""

    def __init__(self, repo: Repository):
        self.repo = repo

    def list(self) -> list[PublicScreen]:
        return self.repo.list_screens()

    def get(self, screen_id: str) -> PublicScreen | None:
        return self.repo.get_screen(screen_id)

    def by_token(self, token: str) -> PublicScreen | None:
        return self.repo.get_screen_by_token(token)

    def add(self, screen: PublicScreen) -> PublicScreen:
        return self.repo.insert_screen(screen)

    def save(self, screen: PublicScreen) -> bool:
        return self.repo.update_screen(screen)

    def remove(self, screen_id: str) -> bool:
        return self.repo.delete_screen(screen_id)


def generate_token() -> str:
    return f"screen-{secrets.token_hex(6)}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ScreenService:
    def __init__(self, store: ScreenStore):
        self.store = store

    def list(self) -> list[PublicScreen]:
        return self.store.list()

    def create(
        self,
        name: str,
        type: ScreenType | str,
        config: dict | None = None,
        active: bool = False,
    ) -> PublicScreen:
        screen = PublicScreen(
            name=name,
            type=ScreenType(type),
            public_token=generate_token(),
            active=active,
            config=dict(config or {}),
            updated_at=_now(),
        )
        self.store.add(screen)
        logger.info("Created %s screen '%s'", screen.type.value, name)
        return screen

    def update(self, screen_id: str, **patch) -> PublicScreen:
        """Apply a partial update (name, type, active, config).

        Raises:
            ValueError: On fields that cannot be patched.
            ScreenNotFoundError: If no screen has this id.
        """
        unknown = set(patch) - _PATCHABLE
        if unknown:
            raise ValueError(f"Cannot update screen fields: {unknown}")
        current = self.store.get(screen_id)
        if current is None:
            raise ScreenNotFoundError(screen_id)
        if "type" in patch:
            patch["type"] = ScreenType(patch["type"])
        updated = replace(current, **patch, updated_at=_now())
        if not self.store.save(updated):
            raise ScreenNotFoundError(screen_id)
        return updated

    def set_active(self, screen_id: str, active: bool) -> PublicScreen:
        return self.update(screen_id, active=active)

    def remove(self, screen_id: str) -> bool:
        """Delete a screen; returns False if it did not exist."""
        removed = self.store.remove(screen_id)
        if removed:
            logger.info("Removed screen %s", screen_id)
        return removed

    def by_token(self, token: str, active_only: bool = True) -> PublicScreen | None:
        """Resolve a public display URL token. Inactive screens are hidden."""
        screen = self.store.by_token(token)
        if screen is None or (active_only and not screen.active):
            return None
        return screen
