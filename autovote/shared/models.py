"""Plain data types shared by the resolver, decision engine and scheduler."""

import copy
from dataclasses import dataclass, field
from typing import Any

FLASH_TYPE = "flash"

# Persisted document keys
GLOBAL_DEFAULTS_KEY = "global_defaults"
PER_ENTITY_OVERRIDES_KEY = "per_entity_overrides"


@dataclass(frozen=True)
class Challenge:
    """A time-boxed contest entry, fetched fresh every cycle and never mutated."""

    id: str
    type: str
    start_time: float
    close_time: float
    current_exposure: float
    boost_available: bool = False
    boost_expires_at: float = 0
    title: str = ""

    @property
    def is_flash(self) -> bool:
        return self.type == FLASH_TYPE

    def is_ended(self, now: float) -> bool:
        return self.close_time <= now

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Challenge":
        """Build a Challenge from an API payload.

        Accepts the flat shape (``close_time``, ``current_exposure``,
        ``boost_available``) as well as the nested member/ranking payload
        where exposure lives under ``member.ranking.exposure.exposure_factor``
        and boost state under ``member.boost``.
        """
        member = data.get("member") or {}
        ranking = member.get("ranking") or {}
        boost = member.get("boost") or {}

        exposure = data.get("current_exposure")
        if exposure is None:
            exposure = (ranking.get("exposure") or {}).get("exposure_factor", 0)

        if "boost_available" in data:
            boost_available = bool(data["boost_available"])
            boost_expires_at = data.get("boost_expires_at") or 0
        else:
            boost_available = boost.get("state") == "AVAILABLE" and bool(boost.get("timeout"))
            boost_expires_at = boost.get("timeout") or 0

        return cls(
            id=str(data["id"]),
            type=str(data.get("type") or "default"),
            start_time=float(data.get("start_time", 0)),
            close_time=float(data["close_time"]),
            current_exposure=float(exposure),
            boost_available=boost_available,
            boost_expires_at=float(boost_expires_at),
            title=str(data.get("title", "")),
        )


@dataclass(frozen=True)
class Verdict:
    """Decision engine output for the scheduled vote rules."""

    should_act: bool
    reason: str
    target_value: float = 100


@dataclass(frozen=True)
class ManualDecision:
    """Outcome of a human-triggered vote check; ``message`` explains a refusal."""

    allowed: bool
    message: str = ""


@dataclass
class ConfigDocument:
    """Two-tier settings document: global defaults plus per-entity overrides.

    An override is only stored when it differs from the current global
    default; the resolver enforces that on every write.
    """

    global_defaults: dict[str, Any] = field(default_factory=dict)
    per_entity_overrides: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            GLOBAL_DEFAULTS_KEY: dict(self.global_defaults),
            PER_ENTITY_OVERRIDES_KEY: {
                entity_id: dict(overrides) for entity_id, overrides in self.per_entity_overrides.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConfigDocument":
        globals_ = data.get(GLOBAL_DEFAULTS_KEY) or {}
        overrides = data.get(PER_ENTITY_OVERRIDES_KEY) or {}
        return cls(
            global_defaults=dict(globals_) if isinstance(globals_, dict) else {},
            per_entity_overrides={
                str(entity_id): dict(values)
                for entity_id, values in overrides.items()
                if isinstance(values, dict)
            }
            if isinstance(overrides, dict)
            else {},
        )

    def copy(self) -> "ConfigDocument":
        return copy.deepcopy(self)
