"""Vote and boost rules.

Converts one challenge's state plus the effective settings into a verdict.
The engine holds no state of its own; every setting is read from the
resolver at evaluation time, so configuration changes apply on the next call.
"""

import logging

from autovote.hub.config import ConfigResolver
from autovote.hub.constants import (
    FULL_EXPOSURE,
    LAST_HOUR_SECONDS,
    SETTING_BOOST_TIME,
    SETTING_EXPOSURE,
    SETTING_LAST_HOUR_EXPOSURE,
    SETTING_LAST_MINUTE_THRESHOLD,
    SETTING_ONLY_BOOST,
    SETTING_USE_LAST_HOUR_EXPOSURE,
    SETTING_VOTE_ONLY_IN_LAST_MINUTE,
)
from autovote.shared.models import Challenge, ManualDecision, Verdict

logger = logging.getLogger(__name__)


def is_within_last_hour(close_time: float, now: float) -> bool:
    remaining = close_time - now
    return 0 < remaining <= LAST_HOUR_SECONDS


def is_within_window(close_time: float, now: float, threshold_minutes: float) -> bool:
    """True if the challenge closes within ``threshold_minutes`` but has not closed."""
    remaining = close_time - now
    return 0 < remaining <= threshold_minutes * 60


def _label(challenge: Challenge) -> str:
    return challenge.title or challenge.id


class DecisionEngine:
    """Rule-based vote/boost decisions for a single challenge."""

    def __init__(self, resolver: ConfigResolver):
        self.resolver = resolver

    def last_minute_threshold(self, challenge: Challenge) -> float:
        return self.resolver.get_effective(SETTING_LAST_MINUTE_THRESHOLD, challenge.id)

    def is_within_last_minute_window(self, challenge: Challenge, now: float) -> bool:
        return is_within_window(challenge.close_time, now, self.last_minute_threshold(challenge))

    def evaluate(self, challenge: Challenge, now: float) -> Verdict:
        """Decide whether the scheduler should vote on ``challenge`` now.

        Rules are checked in fixed priority order; the first match decides.

        Args:
            challenge: Current challenge state.
            now: Unix time of evaluation.

        Returns:
            Verdict with the exposure level a vote should aim for.
        """
        get = self.resolver.get_effective
        exposure = challenge.current_exposure

        if get(SETTING_ONLY_BOOST, challenge.id):
            return Verdict(False, "boost-only mode enabled")

        if challenge.start_time >= now:
            return Verdict(False, "challenge not started")

        if challenge.is_flash:
            if exposure < FULL_EXPOSURE:
                return Verdict(True, f"flash type: exposure {exposure}% < 100%", FULL_EXPOSURE)
            return Verdict(False, "flash type: exposure already at 100%", FULL_EXPOSURE)

        threshold = self.last_minute_threshold(challenge)
        in_window = is_within_window(challenge.close_time, now, threshold)

        if get(SETTING_VOTE_ONLY_IN_LAST_MINUTE, challenge.id) and not in_window:
            return Verdict(False, f"vote-only-in-last-threshold enabled: not within last {threshold}m threshold")

        if in_window:
            if exposure < FULL_EXPOSURE:
                return Verdict(True, f"lastminute threshold ({threshold}m): exposure {exposure}% < 100%", FULL_EXPOSURE)
            return Verdict(False, f"lastminute threshold ({threshold}m): exposure already at 100%", FULL_EXPOSURE)

        if is_within_last_hour(challenge.close_time, now) and get(SETTING_USE_LAST_HOUR_EXPOSURE, challenge.id):
            target = get(SETTING_LAST_HOUR_EXPOSURE, challenge.id)
            if exposure < target:
                return Verdict(True, f"last hour threshold: exposure {exposure}% < {target}%", target)
            return Verdict(False, f"last hour threshold: exposure {exposure}% >= {target}%", target)

        limit = get(SETTING_EXPOSURE, challenge.id)
        if exposure < limit:
            return Verdict(True, f"normal threshold: exposure {exposure}% < {limit}%", FULL_EXPOSURE)
        return Verdict(False, f"normal threshold: exposure {exposure}% >= {limit}%", FULL_EXPOSURE)

    def evaluate_manual(self, challenge: Challenge, now: float) -> ManualDecision:
        """Check whether a user-triggered vote is permitted.

        Same windows and thresholds as ``evaluate`` but boost-only mode and
        the not-started check do not apply; a refusal carries a message
        suitable for showing to the user.
        """
        get = self.resolver.get_effective
        exposure = challenge.current_exposure
        label = _label(challenge)

        if challenge.is_flash:
            if exposure >= FULL_EXPOSURE:
                return ManualDecision(False, f'Challenge "{label}" already has 100% exposure (flash type)')
            return ManualDecision(True)

        threshold = self.last_minute_threshold(challenge)
        in_window = is_within_window(challenge.close_time, now, threshold)

        if get(SETTING_VOTE_ONLY_IN_LAST_MINUTE, challenge.id) and not in_window:
            return ManualDecision(
                False, f'Challenge "{label}" voting is restricted to last {threshold} minutes only'
            )

        if in_window:
            if exposure >= FULL_EXPOSURE:
                return ManualDecision(
                    False, f'Challenge "{label}" already has 100% exposure (lastminute threshold: {threshold}m)'
                )
            return ManualDecision(True)

        if is_within_last_hour(challenge.close_time, now) and get(SETTING_USE_LAST_HOUR_EXPOSURE, challenge.id):
            target = get(SETTING_LAST_HOUR_EXPOSURE, challenge.id)
            if exposure >= target:
                return ManualDecision(False, f'Challenge "{label}" already has {target}% exposure (last hour threshold)')
            return ManualDecision(True)

        limit = get(SETTING_EXPOSURE, challenge.id)
        if exposure >= limit:
            return ManualDecision(False, f'Challenge "{label}" already has {limit}% exposure')
        return ManualDecision(True)

    def evaluate_manual_to_max(self, challenge: Challenge, now: float) -> ManualDecision:
        """Permit a "top me up" vote regardless of configured thresholds."""
        label = _label(challenge)
        if challenge.start_time >= now:
            return ManualDecision(False, f'Challenge "{label}" has not started yet')
        if challenge.close_time < now:
            return ManualDecision(False, f'Challenge "{label}" has already ended')
        if challenge.current_exposure >= FULL_EXPOSURE:
            return ManualDecision(False, f'Challenge "{label}" already has 100% exposure')
        return ManualDecision(True)

    def should_boost(self, challenge: Challenge, now: float) -> bool:
        """True when the challenge's boost expires within the configured boost time."""
        remaining = challenge.boost_expires_at - now
        return 0 < remaining <= self.resolver.get_effective(SETTING_BOOST_TIME, challenge.id)
