# settings_store.py — Instance-wide configuration stored as key/value rows
import logging
from typing import Dict, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import SystemSetting, utcnow

logger = logging.getLogger("flowt.settings")

LOGO_TEXT = "logo_text"
ADMIN_ROLE_NAME = "admin_role_name"
ALLOW_USER_BOARD_CREATION = "allow_user_board_creation"

DEFAULTS: Dict[str, str] = {
    LOGO_TEXT: "Flowt",
    ADMIN_ROLE_NAME: "Administrator",
    ALLOW_USER_BOARD_CREATION: "false",
}

# camelCase spellings used by older clients
ALIASES: Dict[str, str] = {
    "logoText": LOGO_TEXT,
    "adminRoleName": ADMIN_ROLE_NAME,
    "allowUserBoardCreation": ALLOW_USER_BOARD_CREATION,
}


def canonical_key(key: str) -> str:
    """Map a setting name or alias to its canonical key; KeyError if unknown."""
    key = ALIASES.get(key, key)
    if key not in DEFAULTS:
        raise KeyError(key)
    return key


def is_enabled(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


class SettingsStore(Protocol):
    async def get(self, key: str) -> str: ...

    async def set(self, key: str, value: str) -> None: ...

    async def all(self) -> Dict[str, str]: ...


class DatabaseSettingsStore:
    """SettingsStore backed by the system_settings table.

    ``set`` only stages the change; the caller owns the commit.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, key: str) -> str:
        key = canonical_key(key)
        result = await self.db.execute(select(SystemSetting).where(SystemSetting.key == key))
        row = result.scalar_one_or_none()
        return row.value if row is not None else DEFAULTS[key]

    async def set(self, key: str, value: str) -> None:
        key = canonical_key(key)
        result = await self.db.execute(select(SystemSetting).where(SystemSetting.key == key))
        row = result.scalar_one_or_none()
        if row is None:
            self.db.add(SystemSetting(key=key, value=value))
        else:
            row.value = value
            row.updated_at = utcnow()
        logger.info("Setting %s updated", key)

    async def all(self) -> Dict[str, str]:
        values = dict(DEFAULTS)
        result = await self.db.execute(select(SystemSetting))
        for row in result.scalars().all():
            if row.key in values:
                values[row.key] = row.value
        return values
