# bakery_hub/services/effects.py
"""
Secondary effects run after a primary write has been committed.

Ledger reconciliation, client statistics and event broadcast must never undo
the write that triggered them. A failing effect is rolled back on its own,
logged, and kept as a warning for the response.
"""
from __future__ import annotations
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from bakery_hub.errors import SecondaryEffectError

logger = logging.getLogger(__name__)


class SecondaryEffects:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.warnings: List[SecondaryEffectError] = []

    async def run(self, effect: str, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Optional[Any]:
        """
        Await ``fn``; on failure roll back whatever it staged and record a warning.

        A rollback expires every instance in the session, so callers pass ids
        or prebuilt values to later effects rather than ORM objects they touched
        before.
        """
        try:
            return await fn(*args, **kwargs)
        except Exception as e:
            logger.exception(f"Secondary effect '{effect}' failed")
            try:
                await self.db.rollback()
            except Exception:
                logger.exception(f"Rollback after failed '{effect}' also failed")
            self.warnings.append(SecondaryEffectError(effect, e))
            return None

    def as_payload(self) -> List[Dict[str, str]]:
        return [{"effect": w.effect, "error": str(w.cause)} for w in self.warnings]
