"""Layered settings resolver: per-entity overrides, global defaults, schema defaults.

All reads and writes of the settings document go through ConfigResolver.
Writes validate first, mutate the in-memory document, then persist; a failed
persist rolls the in-memory document back so memory and disk never diverge.
"""

import hashlib
import json
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

import aiosqlite

from autovote.hub.config_defaults import SETTINGS, SettingDefinition, schema_defaults, validation_sequence
from autovote.hub.config_store import ConfigStore
from autovote.hub.constants import RECENT_TOUCH_WINDOW_SECONDS
from autovote.hub.migrations import migrate_document
from autovote.shared.errors import CorruptConfigError
from autovote.shared.models import ConfigDocument

logger = logging.getLogger(__name__)

ConfigCallback = Callable[[dict[str, Any]], Awaitable[None]]


class _Unset:
    """Sentinel returned for settings that have no value at any tier."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset()


class ConfigResolver:
    """Resolves effective setting values and validates writes against the registry."""

    def __init__(
        self,
        store: ConfigStore,
        registry: Mapping[str, SettingDefinition] = SETTINGS,
        clock: Callable[[], float] = time.time,
        recent_window: float = RECENT_TOUCH_WINDOW_SECONDS,
    ):
        """Initialize resolver.

        Args:
            store: Persistence for the settings document.
            registry: Setting definitions keyed by id.
            clock: Returns the current unix time; injectable for tests.
            recent_window: Seconds after ``touch()`` during which an entity's
                overrides survive ``prune_stale_overrides``.
        """
        self.store = store
        self.registry = registry
        self.clock = clock
        self.recent_window = recent_window
        self.revision = 0

        self._sequence = validation_sequence(registry)
        self._defaults = schema_defaults(registry)
        self._document = ConfigDocument()
        self._touched: dict[str, float] = {}
        self._subscribers: list[ConfigCallback] = []

    # ========================================================================
    # Loading
    # ========================================================================

    async def load(self):
        """Load, migrate and validate the persisted document.

        A corrupt document is logged and replaced by schema defaults in memory;
        it is overwritten on the next successful write.
        """
        try:
            raw = await self.store.load()
        except CorruptConfigError as e:
            logger.warning("Settings document is corrupt, using schema defaults: %s", e)
            self._document = ConfigDocument()
            self.revision = await self.store.revision()
            return

        if raw is None:
            self._document = ConfigDocument()
            self.revision = await self.store.revision()
            logger.info("No stored settings, using schema defaults")
            return

        migrated, renamed = migrate_document(raw)
        document, corrections = self._clean(ConfigDocument.from_dict(migrated))
        for message in corrections:
            logger.warning("Settings correction: %s", message)
        self._document = document

        if renamed or corrections or document.to_dict() != migrated:
            if await self.store.save(document.to_dict()):
                logger.info("Saved corrected settings document (%d corrections)", len(corrections))
        self.revision = await self.store.revision()

    async def reload(self):
        """Re-read the document after an external write."""
        await self.load()

    def _clean(self, document: ConfigDocument) -> tuple[ConfigDocument, list[str]]:
        """Validate a whole document in dependency order.

        Invalid or unknown globals are dropped (falling back to the schema
        default); invalid, unknown, non-overridable or redundant overrides
        are dropped.
        """
        corrections: list[str] = []
        cleaned = ConfigDocument()
        snapshot = dict(self._defaults)

        for key in document.global_defaults:
            if key not in self.registry:
                corrections.append(f"removed unknown global setting {key}")

        for key in self._sequence:
            if key not in document.global_defaults:
                continue
            value = document.global_defaults[key]
            error = self.validation_error_for(key, value, {**snapshot, key: value})
            if error:
                corrections.append(f"reset {key} to default: {error}")
                continue
            cleaned.global_defaults[key] = value
            snapshot[key] = value

        for entity_id, values in document.per_entity_overrides.items():
            entity_snapshot = dict(snapshot)
            kept: dict[str, Any] = {}
            for key in values:
                definition = self.registry.get(key)
                if definition is None:
                    corrections.append(f"removed unknown override {key} for {entity_id}")
                elif not definition.per_entity:
                    corrections.append(f"removed override of global-only {key} for {entity_id}")
            for key in self._sequence:
                if key not in values or not self.registry[key].per_entity:
                    continue
                value = values[key]
                error = self.validation_error_for(key, value, {**entity_snapshot, key: value})
                if error:
                    corrections.append(f"removed override {key} for {entity_id}: {error}")
                    continue
                if value == snapshot[key]:
                    continue
                kept[key] = value
                entity_snapshot[key] = value
            if kept:
                cleaned.per_entity_overrides[str(entity_id)] = kept

        return cleaned, corrections

    # ========================================================================
    # Reads
    # ========================================================================

    def get_effective(self, key: str, entity_id: str | None = None) -> Any:
        """Resolve a setting: override, then global default, then schema default.

        Returns:
            The effective value, or UNSET if ``key`` is not a registered setting.
        """
        definition = self.registry.get(key)
        if definition is None:
            logger.error("Unknown setting requested: %s", key)
            return UNSET

        if entity_id is not None and definition.per_entity:
            overrides = self._document.per_entity_overrides.get(str(entity_id))
            if overrides and key in overrides:
                return overrides[key]

        return self.get_global_default(key)

    def get_global_default(self, key: str) -> Any:
        if key in self._document.global_defaults:
            return self._document.global_defaults[key]
        definition = self.registry.get(key)
        return definition.default if definition else UNSET

    def is_global_default_modified(self, key: str) -> bool:
        definition = self.registry.get(key)
        if definition is None:
            return False
        return self.get_global_default(key) != definition.default

    def has_override(self, key: str, entity_id: str) -> bool:
        return key in self._document.per_entity_overrides.get(str(entity_id), {})

    def overrides_for(self, entity_id: str) -> dict[str, Any]:
        return dict(self._document.per_entity_overrides.get(str(entity_id), {}))

    def snapshot(self) -> ConfigDocument:
        """Copy of the current document; mutating it has no effect."""
        return self._document.copy()

    def global_snapshot(self) -> dict[str, Any]:
        """Every setting's global value, schema defaults filled in."""
        return {**self._defaults, **self._document.global_defaults}

    def fingerprint(self, keys: Iterable[str]) -> str:
        """Stable hash of the global and per-entity values of ``keys``."""
        keys = sorted(keys)
        payload = {
            "globals": {key: self.get_global_default(key) for key in keys},
            "overrides": {
                entity_id: {key: values[key] for key in keys if key in values}
                for entity_id, values in sorted(self._document.per_entity_overrides.items())
            },
        }
        return hashlib.sha256(json.dumps(payload, sort_keys=True, default=str).encode()).hexdigest()

    # ========================================================================
    # Validation
    # ========================================================================

    def validation_error_for(
        self,
        key: str,
        value: Any,
        context_snapshot: Mapping[str, Any] | None = None,
    ) -> str | None:
        """Explain why ``value`` cannot be written to ``key``.

        Args:
            key: Setting id.
            value: Candidate value.
            context_snapshot: Settings the cross-field rule is checked against.
                Defaults to the current globals with the candidate merged in.

        Returns:
            Human-readable reason, or None if the value is acceptable.
        """
        definition = self.registry.get(key)
        if definition is None:
            return f"Unknown setting: {key}"

        error = definition.check(value)
        if error:
            return error

        if context_snapshot is None:
            context_snapshot = {**self.global_snapshot(), key: value}
        return definition.check_context(value, context_snapshot)

    # ========================================================================
    # Writes
    # ========================================================================

    async def set_global_default(self, key: str, value: Any, changed_by: str = "user") -> bool:
        """Validate and persist a global default.

        Overrides that become equal to the new global value are pruned.

        Returns:
            True if the value was stored, False if rejected or the save failed.
        """
        error = self.validation_error_for(key, value, {**self.global_snapshot(), key: value})
        if error:
            logger.warning("Rejected global %s=%r: %s", key, value, error)
            return False

        old_value = self.get_global_default(key)
        previous = self._document.copy()
        self._document.global_defaults[key] = value
        self._prune_matching_overrides(key, value)

        if not await self._persist(previous):
            return False
        await self._after_write(key, None, old_value, value, changed_by)
        return True

    async def reset_global_default(self, key: str, changed_by: str = "user") -> bool:
        """Drop the explicit global value so the schema default applies."""
        definition = self.registry.get(key)
        if definition is None:
            logger.warning("Cannot reset unknown setting %s", key)
            return False
        if key not in self._document.global_defaults:
            return True

        old_value = self.get_global_default(key)
        previous = self._document.copy()
        del self._document.global_defaults[key]
        self._prune_matching_overrides(key, definition.default)

        if not await self._persist(previous):
            return False
        await self._after_write(key, None, old_value, definition.default, changed_by)
        return True

    async def reset_all_global_defaults(self, changed_by: str = "user") -> bool:
        if not self._document.global_defaults:
            return True

        old_values = dict(self._document.global_defaults)
        previous = self._document.copy()
        self._document.global_defaults.clear()
        for key in old_values:
            self._prune_matching_overrides(key, self.registry[key].default)

        if not await self._persist(previous):
            return False
        for key, old_value in old_values.items():
            await self._after_write(key, None, old_value, self.registry[key].default, changed_by)
        return True

    async def set_override(self, key: str, entity_id: str, value: Any, changed_by: str = "user") -> bool:
        """Validate and persist a per-entity override.

        An override equal to the global default is removed rather than stored.

        Returns:
            True if the effective value is now ``value``, False if rejected or
            the save failed.
        """
        entity_id = str(entity_id)
        error = self._override_error(key, entity_id, value, self.overrides_for(entity_id))
        if error:
            logger.warning("Rejected override %s=%r for %s: %s", key, value, entity_id, error)
            return False

        old_value = self.get_effective(key, entity_id)
        previous = self._document.copy()
        self._apply_override(key, entity_id, value)
        if self._document == previous:
            return True

        if not await self._persist(previous):
            return False
        self.touch(entity_id)
        await self._after_write(key, entity_id, old_value, value, changed_by)
        return True

    async def set_overrides(
        self,
        entity_id: str,
        values: Mapping[str, Any],
        changed_by: str = "user",
    ) -> tuple[bool, dict[str, str]]:
        """Write several overrides for one entity with a single persist.

        Keys are validated in dependency order against a snapshot that
        includes the values already accepted from this batch.

        Returns:
            (saved, rejected) where ``rejected`` maps each skipped key to
            the reason it was rejected.
        """
        entity_id = str(entity_id)
        rejected: dict[str, str] = {}
        accepted: dict[str, Any] = {}
        candidate = self.overrides_for(entity_id)

        ordered = [key for key in self._sequence if key in values]
        ordered += [key for key in values if key not in self.registry]
        for key in ordered:
            error = self._override_error(key, entity_id, values[key], candidate)
            if error:
                rejected[key] = error
                continue
            accepted[key] = values[key]
            candidate[key] = values[key]

        for key, error in rejected.items():
            logger.warning("Rejected override %s=%r for %s: %s", key, values[key], entity_id, error)
        if not accepted:
            return (not rejected, rejected)

        old_values = {key: self.get_effective(key, entity_id) for key in accepted}
        previous = self._document.copy()
        for key, value in accepted.items():
            self._apply_override(key, entity_id, value)
        if self._document == previous:
            return (True, rejected)

        if not await self._persist(previous):
            return (False, rejected)
        self.touch(entity_id)
        for key, value in accepted.items():
            await self._after_write(key, entity_id, old_values[key], value, changed_by)
        return (True, rejected)

    async def remove_override(self, key: str, entity_id: str, changed_by: str = "user") -> bool:
        entity_id = str(entity_id)
        if not self.has_override(key, entity_id):
            return True

        old_value = self.get_effective(key, entity_id)
        previous = self._document.copy()
        overrides = self._document.per_entity_overrides[entity_id]
        del overrides[key]
        if not overrides:
            del self._document.per_entity_overrides[entity_id]

        if not await self._persist(previous):
            return False
        await self._after_write(key, entity_id, old_value, self.get_global_default(key), changed_by)
        return True

    def touch(self, entity_id: str):
        """Mark an entity as just acted upon."""
        self._touched[str(entity_id)] = self.clock()

    async def prune_stale_overrides(self, active_entity_ids: Iterable[str]) -> list[str]:
        """Remove overrides of entities no longer active.

        Entities touched within ``recent_window`` seconds are kept even when
        absent from ``active_entity_ids``.

        Returns:
            Ids whose overrides were removed.
        """
        active = {str(entity_id) for entity_id in active_entity_ids}
        now = self.clock()
        stale = []
        for entity_id in self._document.per_entity_overrides:
            if entity_id in active:
                continue
            touched_at = self._touched.get(entity_id)
            if touched_at is not None and now - touched_at < self.recent_window:
                logger.debug("Keeping overrides of recently touched %s", entity_id)
                continue
            stale.append(entity_id)

        if not stale:
            return []

        previous = self._document.copy()
        for entity_id in stale:
            del self._document.per_entity_overrides[entity_id]
        if not await self._persist(previous):
            return []

        for entity_id in stale:
            self._touched.pop(entity_id, None)
        logger.info("Pruned overrides of %d inactive challenge(s): %s", len(stale), ", ".join(stale))
        return stale

    # ========================================================================
    # Subscriptions
    # ========================================================================

    def subscribe(self, callback: ConfigCallback):
        """Register an async callback invoked after every successful write.

        The callback receives ``{"key", "entity_id", "value"}``.
        """
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: ConfigCallback):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    # ========================================================================
    # Internals
    # ========================================================================

    def _override_error(self, key: str, entity_id: str, value: Any, existing: Mapping[str, Any]) -> str | None:
        definition = self.registry.get(key)
        if definition is None:
            return f"Unknown setting: {key}"
        if not definition.per_entity:
            return f"{key} cannot be overridden per challenge"
        snapshot = {**self.global_snapshot(), **existing, key: value}
        return self.validation_error_for(key, value, snapshot)

    def _apply_override(self, key: str, entity_id: str, value: Any):
        if value == self.get_global_default(key):
            overrides = self._document.per_entity_overrides.get(entity_id)
            if overrides is not None:
                overrides.pop(key, None)
                if not overrides:
                    del self._document.per_entity_overrides[entity_id]
            return
        self._document.per_entity_overrides.setdefault(entity_id, {})[key] = value

    def _prune_matching_overrides(self, key: str, value: Any):
        for entity_id in list(self._document.per_entity_overrides):
            overrides = self._document.per_entity_overrides[entity_id]
            if key in overrides and overrides[key] == value:
                del overrides[key]
                if not overrides:
                    del self._document.per_entity_overrides[entity_id]

    async def _persist(self, previous: ConfigDocument) -> bool:
        if not await self.store.save(self._document.to_dict()):
            logger.error("Settings save failed, change rolled back")
            self._document = previous
            return False
        self.revision = await self.store.revision()
        return True

    async def _after_write(self, key: str, entity_id: str | None, old_value: Any, value: Any, changed_by: str):
        try:
            await self.store.record_change(key, old_value, value, entity_id=entity_id, changed_by=changed_by)
        except aiosqlite.Error as e:
            logger.warning("Failed to record settings history for %s: %s", key, e)

        payload = {"key": key, "entity_id": entity_id, "value": value}
        for callback in list(self._subscribers):
            try:
                await callback(payload)
            except Exception as e:
                logger.error(f"Error in config subscriber: {e}")
