"""Settings registry: single source of truth for all tunable parameters.

Each setting is defined with its key, default value, type, constraints,
whether it may be overridden per challenge, and (for cross-field rules) the
settings it depends on. The registry is immutable once built; the resolver
never mutates a definition.
"""

import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from autovote.hub.constants import (
    SETTING_BOOST_TIME,
    SETTING_CHECK_FREQUENCY,
    SETTING_EXPOSURE,
    SETTING_LAST_HOUR_EXPOSURE,
    SETTING_LAST_MINUTE_CHECK_FREQUENCY,
    SETTING_LAST_MINUTE_THRESHOLD,
    SETTING_ONLY_BOOST,
    SETTING_USE_LAST_HOUR_EXPOSURE,
    SETTING_VOTE_ONLY_IN_LAST_MINUTE,
)

VALUE_TYPES = ("number", "boolean", "duration")

ContextRule = Callable[[Any, Mapping[str, Any]], str | None]


@dataclass(frozen=True)
class SettingDefinition:
    """One configurable setting."""

    key: str
    value_type: str
    default: Any
    per_entity: bool = True
    label: str = ""
    description: str = ""
    description_technical: str = ""
    category: str = ""
    min_value: float | None = None
    max_value: float | None = None
    depends_on: tuple[str, ...] = ()
    validation_order: int = 0
    context_rule: ContextRule | None = field(default=None, compare=False)

    def check(self, value: Any) -> str | None:
        """Return why ``value`` is invalid for this setting, or None if valid."""
        if self.value_type == "boolean":
            if not isinstance(value, bool):
                return f"{self.key} must be true or false, got {value!r}"
            return None

        # bool is an int subclass; never accept it as a number
        if isinstance(value, bool) or not isinstance(value, int | float):
            return f"{self.key} must be a number, got {value!r}"
        if not math.isfinite(value):
            return f"{self.key} must be a finite number, got {value!r}"

        unit = "s" if self.value_type == "duration" else ""
        if self.min_value is not None and value < self.min_value:
            return f"{self.key} value {value}{unit} is below minimum {self.min_value}{unit}"
        if self.max_value is not None and value > self.max_value:
            return f"{self.key} value {value}{unit} is above maximum {self.max_value}{unit}"
        return None

    def validate(self, value: Any) -> bool:
        return self.check(value) is None

    def check_context(self, value: Any, snapshot: Mapping[str, Any]) -> str | None:
        """Run the cross-field rule (if any) against a candidate settings snapshot."""
        if self.context_rule is None:
            return None
        return self.context_rule(value, snapshot)

    def context_validate(self, value: Any, snapshot: Mapping[str, Any]) -> bool:
        return self.check_context(value, snapshot) is None


# ── Settings ────────────────────────────────────────────────────────────

EXPOSURE = SettingDefinition(
    key=SETTING_EXPOSURE,
    value_type="number",
    default=100,
    label="Exposure",
    description="Vote while the challenge's exposure is below this percentage.",
    description_technical=(
        "Normal-rule threshold (rule 7). Range 1-100, default 100. Every"
        " setting that caps itself against exposure depends on this one."
    ),
    category="Voting",
    min_value=1,
    max_value=100,
    validation_order=1,
)


def _last_hour_within_exposure(value: Any, snapshot: Mapping[str, Any]) -> str | None:
    exposure = snapshot.get(SETTING_EXPOSURE, EXPOSURE.default)
    if not EXPOSURE.validate(exposure):
        exposure = EXPOSURE.default
    if value > exposure:
        return f"Last-hour exposure {value}% cannot exceed exposure {exposure}%"
    return None


SETTING_DEFINITIONS: list[SettingDefinition] = [
    EXPOSURE,
    SettingDefinition(
        key=SETTING_LAST_HOUR_EXPOSURE,
        value_type="number",
        default=100,
        label="Last Hour Exposure",
        description="Lower exposure target used during the final hour before close.",
        description_technical=(
            "Rule 6 target, applied only when use_last_hour_exposure is on and"
            " the challenge closes within 3600s. Range 1-100, default 100."
            " Must never exceed exposure."
        ),
        category="Voting",
        min_value=1,
        max_value=100,
        depends_on=(SETTING_EXPOSURE,),
        validation_order=2,
        context_rule=_last_hour_within_exposure,
    ),
    SettingDefinition(
        key=SETTING_USE_LAST_HOUR_EXPOSURE,
        value_type="boolean",
        default=False,
        label="Use Last Hour Exposure",
        description="Apply the last-hour exposure target during the final hour.",
        category="Voting",
    ),
    SettingDefinition(
        key=SETTING_LAST_MINUTE_THRESHOLD,
        value_type="number",
        default=10,
        label="Last Minutes Threshold (min)",
        description="Minutes before close during which voting always aims for 100%.",
        description_technical=(
            "Width of the last-minute window in minutes (rule 5). Range"
            " 1-1440, default 10. The scheduler arms a one-shot wake-up at"
            " close_time - threshold*60 for the next challenge to enter it."
        ),
        category="Timing",
        min_value=1,
        max_value=1440,
    ),
    SettingDefinition(
        key=SETTING_ONLY_BOOST,
        value_type="boolean",
        default=False,
        label="Only Boost",
        description="Never vote; only apply boosts.",
        category="Voting",
    ),
    SettingDefinition(
        key=SETTING_VOTE_ONLY_IN_LAST_MINUTE,
        value_type="boolean",
        default=False,
        label="Vote Only In Last Minutes",
        description="Restrict voting to the last-minute window.",
        category="Voting",
    ),
    SettingDefinition(
        key=SETTING_LAST_MINUTE_CHECK_FREQUENCY,
        value_type="number",
        default=0,
        per_entity=False,
        label="Last Minutes Check Frequency (min)",
        description="Check interval used once a challenge enters its last-minute window.",
        description_technical=(
            "Fine cadence in minutes. Range 0-60, default 0. Zero keeps the"
            " normal check_frequency cadence inside the window."
        ),
        category="Timing",
        min_value=0,
        max_value=60,
    ),
    SettingDefinition(
        key=SETTING_BOOST_TIME,
        value_type="duration",
        default=3600,
        label="Boost Time",
        description="Apply an available boost when it expires within this many seconds.",
        category="Boost",
        min_value=0,
    ),
    SettingDefinition(
        key=SETTING_CHECK_FREQUENCY,
        value_type="number",
        default=3,
        per_entity=False,
        label="Check Frequency (min)",
        description="Normal interval between voting cycles.",
        category="Timing",
        min_value=1,
        max_value=60,
    ),
]

# Legacy setting names -> current keys. Applied once on load.
LEGACY_KEY_RENAMES: dict[str, str] = {
    "lastMinutes": SETTING_LAST_MINUTE_THRESHOLD,
    "lastMinuteThreshold": SETTING_LAST_MINUTE_THRESHOLD,
    "voteOnlyInLastThreshold": SETTING_VOTE_ONLY_IN_LAST_MINUTE,
    "voteOnlyInLastMinute": SETTING_VOTE_ONLY_IN_LAST_MINUTE,
    "lastThresholdCheckFrequency": SETTING_LAST_MINUTE_CHECK_FREQUENCY,
    "lastMinuteCheckFrequency": SETTING_LAST_MINUTE_CHECK_FREQUENCY,
    "boostTime": SETTING_BOOST_TIME,
    "onlyBoost": SETTING_ONLY_BOOST,
    "lastHourExposure": SETTING_LAST_HOUR_EXPOSURE,
    "useLastHourExposure": SETTING_USE_LAST_HOUR_EXPOSURE,
    "votingInterval": SETTING_CHECK_FREQUENCY,
}


def build_registry(definitions: Iterable[SettingDefinition]) -> dict[str, SettingDefinition]:
    """Index definitions by key and check the dependency graph.

    Raises:
        ValueError: On duplicate keys, unknown value types, dependencies on
            unknown settings, dependency cycles, or a setting whose
            validation_order does not come strictly after its dependencies.
    """
    registry: dict[str, SettingDefinition] = {}
    for definition in definitions:
        if definition.key in registry:
            raise ValueError(f"Duplicate setting key: {definition.key}")
        if definition.value_type not in VALUE_TYPES:
            raise ValueError(f"Unknown value type for {definition.key}: {definition.value_type}")
        registry[definition.key] = definition

    for definition in registry.values():
        for dep in definition.depends_on:
            if dep not in registry:
                raise ValueError(f"{definition.key} depends on unknown setting {dep}")
            if registry[dep].validation_order >= definition.validation_order:
                raise ValueError(
                    f"{definition.key} (order {definition.validation_order}) must validate"
                    f" after {dep} (order {registry[dep].validation_order})"
                )

    # Raises on cycles
    validation_sequence(registry)
    return registry


def validation_sequence(registry: Mapping[str, SettingDefinition]) -> list[str]:
    """Keys in the order a batch must be validated.

    Ascending validation_order, with every setting placed after the settings
    it depends on.
    """
    ordered = sorted(registry.values(), key=lambda d: (d.validation_order, d.key))
    result: list[str] = []
    done: set[str] = set()
    visiting: set[str] = set()

    def visit(key: str):
        if key in done:
            return
        if key in visiting:
            raise ValueError(f"Dependency cycle involving setting {key}")
        visiting.add(key)
        for dep in registry[key].depends_on:
            visit(dep)
        visiting.discard(key)
        done.add(key)
        result.append(key)

    for definition in ordered:
        visit(definition.key)
    return result


def dependents_of(registry: Mapping[str, SettingDefinition], key: str) -> list[str]:
    """Settings that declare ``key`` in their depends_on, in validation order."""
    return [k for k in validation_sequence(registry) if key in registry[k].depends_on]


def schema_defaults(registry: Mapping[str, SettingDefinition]) -> dict[str, Any]:
    return {key: definition.default for key, definition in registry.items()}


SETTINGS: dict[str, SettingDefinition] = build_registry(SETTING_DEFINITIONS)
