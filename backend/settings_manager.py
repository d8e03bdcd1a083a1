"""
Tunable detection settings, persisted as a single record.
"""
import logging

from pydantic import ValidationError

from database import SurveillanceStore
from errors import InvalidInput
from schemas import Collection, DetectionSettings, SETTINGS_ID

logger = logging.getLogger("surveillance.settings")


class SettingsManager:
    """
    Holds the current DetectionSettings.

    Changes take effect on the pipeline's next cycle; nothing already
    processed is revisited.
    """

    def __init__(self, store: SurveillanceStore):
        self.store = store
        self.current = DetectionSettings()

    async def load(self) -> DetectionSettings:
        """Seed from the store, enforcing a single stored row."""
        rows = await self.store.get_all(Collection.SETTINGS)
        if not rows:
            self.current = DetectionSettings()
            return self.current

        chosen = next((row for row in rows if row.id == SETTINGS_ID), rows[0])
        extras = [row for row in rows if row.id != SETTINGS_ID]
        if extras:
            logger.warning("Found %d stray settings rows, keeping one", len(extras))
            for row in extras:
                await self.store.delete(Collection.SETTINGS, row.id)

        self.current = chosen.model_copy(update={"id": SETTINGS_ID})
        if chosen.id != SETTINGS_ID:
            await self.store.put(Collection.SETTINGS, self.current)
        return self.current

    async def update(self, **changes) -> DetectionSettings:
        """Merge changes into the current settings and persist them."""
        changes.pop("id", None)
        merged = {**self.current.model_dump(), **changes}
        try:
            updated = DetectionSettings.model_validate(merged)
        except ValidationError as e:
            raise InvalidInput(f"Invalid settings: {e}", details={"errors": e.errors()})

        await self.store.put(Collection.SETTINGS, updated)
        self.current = updated
        logger.info("Settings updated: %s", updated.model_dump(exclude={"id"}))
        return self.current

    async def save(self) -> DetectionSettings:
        await self.store.put(Collection.SETTINGS, self.current)
        return self.current

    async def reset(self) -> DetectionSettings:
        self.current = DetectionSettings()
        return await self.save()
