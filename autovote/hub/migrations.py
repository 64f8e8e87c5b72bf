"""Rename legacy settings-document keys in place.

Older documents used camelCase setting names and a different top-level
layout. The migration is a single pass and idempotent: running it on an
already-migrated document changes nothing.
"""

import copy
import logging
from typing import Any

from autovote.hub.config_defaults import LEGACY_KEY_RENAMES
from autovote.shared.models import GLOBAL_DEFAULTS_KEY, PER_ENTITY_OVERRIDES_KEY

logger = logging.getLogger(__name__)

LEGACY_WRAPPER_KEY = "challengeSettings"

LEGACY_DOCUMENT_KEYS: dict[str, str] = {
    "globalDefaults": GLOBAL_DEFAULTS_KEY,
    "perChallenge": PER_ENTITY_OVERRIDES_KEY,
    "perEntityOverrides": PER_ENTITY_OVERRIDES_KEY,
}


def _rename_keys(values: dict[str, Any], renames: dict[str, str]) -> bool:
    """Rename keys of ``values`` in place. The current key wins over a legacy one."""
    changed = False
    for legacy, current in renames.items():
        if legacy not in values or legacy == current:
            continue
        value = values.pop(legacy)
        if current not in values:
            values[current] = value
        changed = True
    return changed


def migrate_document(raw: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    """Return a migrated copy of ``raw`` and whether anything was renamed."""
    document = copy.deepcopy(raw)
    changed = False

    wrapper = document.get(LEGACY_WRAPPER_KEY)
    if isinstance(wrapper, dict):
        del document[LEGACY_WRAPPER_KEY]
        for key, value in wrapper.items():
            document.setdefault(key, value)
        changed = True

    if _rename_keys(document, LEGACY_DOCUMENT_KEYS):
        changed = True

    globals_ = document.get(GLOBAL_DEFAULTS_KEY)
    if isinstance(globals_, dict) and _rename_keys(globals_, LEGACY_KEY_RENAMES):
        changed = True

    overrides = document.get(PER_ENTITY_OVERRIDES_KEY)
    if isinstance(overrides, dict):
        for values in overrides.values():
            if isinstance(values, dict) and _rename_keys(values, LEGACY_KEY_RENAMES):
                changed = True

    if changed:
        logger.info("Migrated legacy settings document keys")
    return document, changed
