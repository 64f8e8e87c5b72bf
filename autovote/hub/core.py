"""Adaptive voting scheduler.

Runs voting cycles on a periodic timer and keeps one extra one-shot timer
armed for the next moment a challenge enters its last-minute window. When
that one-shot fires, the periodic timer is replaced by the finer
last-minute cadence; once no challenge is inside its window any more the
normal cadence is restored.

All state lives on the event loop thread. Timers are asyncio tasks; cycles
run in their own task, shielded from timer cancellation, and check a
cooperative stop flag after every awaited call.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from autovote.engine.decision import DecisionEngine
from autovote.hub.config import ConfigResolver
from autovote.hub.constants import (
    CONFIG_DEBOUNCE_SECONDS,
    FULL_EXPOSURE,
    SCHEDULING_KEYS,
    SETTING_CHECK_FREQUENCY,
    SETTING_LAST_MINUTE_CHECK_FREQUENCY,
)
from autovote.modules.client import ActionExecutor, ChallengeProvider
from autovote.shared.debounce import Debouncer
from autovote.shared.models import Challenge

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThresholdCrossing:
    """The next moment a challenge enters its last-minute window."""

    entity_id: str
    entry_time: float
    threshold_minutes: float
    title: str = ""


def next_threshold_crossing(
    challenges: Iterable[Challenge],
    now: float,
    threshold_for: Callable[[Challenge], float],
) -> ThresholdCrossing | None:
    """Find the earliest future last-minute window entry.

    Flash challenges and challenges that already closed are ignored, as are
    challenges already inside their window.

    Args:
        challenges: Current challenge set.
        now: Unix time.
        threshold_for: Effective last-minute threshold (minutes) per challenge.
    """
    best: ThresholdCrossing | None = None
    for challenge in challenges:
        if challenge.is_flash or challenge.close_time <= now:
            continue
        minutes = threshold_for(challenge)
        entry_time = challenge.close_time - minutes * 60
        if entry_time <= now:
            continue
        if best is None or entry_time < best.entry_time:
            best = ThresholdCrossing(challenge.id, entry_time, minutes, challenge.title)
    return best


@dataclass
class ScheduleState:
    """Everything owned by one Running period; discarded on stop()."""

    running: bool = True
    cycle_count: int = 0
    interval_task: asyncio.Task | None = None
    interval_seconds: float = 0
    threshold_task: asyncio.Task | None = None
    armed_for_entity_id: str | None = None
    armed_entry_time: float | None = None
    last_config_fingerprint: str | None = None
    challenges: list[Challenge] = field(default_factory=list)
    cycle_task: asyncio.Task | None = None
    last_cycle_at: float | None = None


class VotingScheduler:
    """Drives the decision engine on an adaptive cadence."""

    def __init__(
        self,
        resolver: ConfigResolver,
        engine: DecisionEngine,
        provider: ChallengeProvider,
        executor: ActionExecutor,
        credential: str | None = None,
        clock: Callable[[], float] = time.time,
        action_delay_min_s: float = 0.0,
        action_delay_max_s: float = 0.0,
        debounce_seconds: float = CONFIG_DEBOUNCE_SECONDS,
        rng: random.Random | None = None,
    ):
        """Initialize scheduler.

        Args:
            resolver: Effective settings.
            engine: Vote and boost rules.
            provider: Source of the active challenge set.
            executor: Sends votes and boosts.
            credential: Passed through to provider and executor.
            clock: Returns the current unix time; injectable for tests.
            action_delay_min_s: Lower bound of the pause between votes.
            action_delay_max_s: Upper bound of the pause; 0 disables pausing.
            debounce_seconds: Quiet period for notify_config_changed().
            rng: Random source for the pause length.
        """
        self.resolver = resolver
        self.engine = engine
        self.provider = provider
        self.executor = executor
        self.credential = credential
        self.clock = clock
        self.action_delay_min_s = action_delay_min_s
        self.action_delay_max_s = action_delay_max_s
        self.rng = rng or random.Random()
        self.state: ScheduleState | None = None
        self._debouncer = Debouncer(self._reload_and_apply, debounce_seconds, name="config-change")

    @property
    def running(self) -> bool:
        return self.state is not None and self.state.running

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self):
        """Run one cycle immediately, then arm the periodic and threshold timers.

        No-op if already running.
        """
        if self.state is not None:
            logger.debug("Scheduler already running")
            return

        state = ScheduleState()
        self.state = state
        self.resolver.subscribe(self._on_setting_written)
        logger.info("Scheduler starting")

        await self._spawn_cycle(state, rearm=False)
        if not state.running:
            return

        self._arm_interval(self.compute_base_interval())
        self.arm_threshold_watch()

    async def stop(self):
        """Cancel both timers and wait for an in-flight cycle to reach a stop point.

        No-op if idle.
        """
        state = self.state
        if state is None:
            return

        state.running = False
        self.state = None
        current = asyncio.current_task()
        if state.interval_task and state.interval_task is not current:
            state.interval_task.cancel()
        state.interval_task = None
        self._cancel_threshold(state)
        self._debouncer.cancel()
        self.resolver.unsubscribe(self._on_setting_written)

        cycle = state.cycle_task
        if cycle and not cycle.done() and cycle is not current:
            await asyncio.gather(cycle, return_exceptions=True)
        logger.info(f"Scheduler stopped after {state.cycle_count} cycle(s)")

    def status(self) -> dict[str, Any]:
        state = self.state
        if state is None:
            return {"running": False}
        return {
            "running": state.running,
            "cycle_count": state.cycle_count,
            "interval_seconds": state.interval_seconds,
            "armed_for_entity_id": state.armed_for_entity_id,
            "armed_entry_time": state.armed_entry_time,
            "last_cycle_at": state.last_cycle_at,
            "challenges": len(state.challenges),
        }

    # ========================================================================
    # Cadence
    # ========================================================================

    def _in_last_minute_window(self, challenges: Iterable[Challenge], now: float) -> bool:
        return any(
            not c.is_flash and not c.is_ended(now) and self.engine.is_within_last_minute_window(c, now)
            for c in challenges
        )

    def compute_base_interval(self) -> float:
        """Seconds between periodic cycles for the current challenge set.

        The last-minute cadence applies while any non-flash challenge is inside
        its last-minute window and that cadence is enabled; otherwise the
        normal check frequency.
        """
        normal = self.resolver.get_effective(SETTING_CHECK_FREQUENCY) * 60
        fine = self.resolver.get_effective(SETTING_LAST_MINUTE_CHECK_FREQUENCY)
        challenges = self.state.challenges if self.state else []
        if fine > 0 and self._in_last_minute_window(challenges, self.clock()):
            return fine * 60
        return normal

    def _arm_interval(self, seconds: float):
        state = self.state
        if state is None:
            return
        current = asyncio.current_task()
        if state.interval_task and not state.interval_task.done() and state.interval_task is not current:
            state.interval_task.cancel()
        state.interval_seconds = seconds
        state.interval_task = asyncio.create_task(self._interval_loop(state, seconds))
        logger.info(f"Periodic check every {seconds:.0f}s")

    def _reconcile_interval(self):
        state = self.state
        if state is None or not state.running:
            return
        seconds = self.compute_base_interval()
        if seconds != state.interval_seconds:
            logger.info(f"Cadence change: {state.interval_seconds:.0f}s -> {seconds:.0f}s")
            self._arm_interval(seconds)

    async def _interval_loop(self, state: ScheduleState, seconds: float):
        while state.running:
            await asyncio.sleep(seconds)
            if not state.running:
                break
            await self._tick(state)

    async def _tick(self, state: ScheduleState):
        if state.cycle_task and not state.cycle_task.done():
            logger.warning("Previous cycle still running, skipping tick")
            return
        await self._spawn_cycle(state)

    async def _spawn_cycle(self, state: ScheduleState, rearm: bool = True):
        task = asyncio.create_task(self._cycle_and_rearm(state, rearm))
        state.cycle_task = task
        await asyncio.shield(task)

    async def _cycle_and_rearm(self, state: ScheduleState, rearm: bool):
        await self._run_cycle(state)
        if not rearm or not state.running or self.state is not state:
            return
        try:
            self._reconcile_interval()
            self.arm_threshold_watch()
        except Exception as e:
            logger.error(f"Re-arming after cycle {state.cycle_count} failed: {e}")

    # ========================================================================
    # Threshold watch
    # ========================================================================

    def arm_threshold_watch(self) -> ThresholdCrossing | None:
        """Arm the one-shot timer for the next last-minute window entry.

        A change to the scheduling settings since the last call cancels the
        armed timer unconditionally before recomputing. An identical crossing
        that is already armed is left alone.

        Returns:
            The crossing now armed, or None if there is no future crossing.
        """
        state = self.state
        if state is None or not state.running:
            return None

        fingerprint = self.resolver.fingerprint(SCHEDULING_KEYS)
        if fingerprint != state.last_config_fingerprint:
            if state.last_config_fingerprint is not None:
                logger.info("Scheduling settings changed, discarding armed threshold watch")
            self._cancel_threshold(state)
            state.last_config_fingerprint = fingerprint

        now = self.clock()
        crossing = next_threshold_crossing(state.challenges, now, self.engine.last_minute_threshold)
        if crossing is None:
            if state.threshold_task:
                logger.debug("No upcoming threshold crossing, cancelling watch")
            self._cancel_threshold(state)
            return None

        if (
            state.threshold_task
            and not state.threshold_task.done()
            and state.armed_for_entity_id == crossing.entity_id
            and state.armed_entry_time == crossing.entry_time
        ):
            return crossing

        self._cancel_threshold(state)
        delay = max(0.0, crossing.entry_time - now)
        state.threshold_task = asyncio.create_task(self._threshold_timer(state, crossing, delay))
        state.armed_for_entity_id = crossing.entity_id
        state.armed_entry_time = crossing.entry_time
        logger.info(
            f"Threshold watch armed for {crossing.entity_id} ({crossing.title}): "
            f"enters last {crossing.threshold_minutes}m window in {delay:.0f}s"
        )
        return crossing

    def _cancel_threshold(self, state: ScheduleState):
        task = state.threshold_task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        state.threshold_task = None
        state.armed_for_entity_id = None
        state.armed_entry_time = None

    async def _threshold_timer(self, state: ScheduleState, crossing: ThresholdCrossing, delay: float):
        await asyncio.sleep(delay)
        if not state.running or self.state is not state:
            return
        state.threshold_task = None
        try:
            self._on_threshold_crossed(crossing)
        except Exception as e:
            logger.error(f"Threshold watch handler failed: {e}")

    def _on_threshold_crossed(self, crossing: ThresholdCrossing | None = None):
        state = self.state
        if state is None or not state.running:
            return

        if crossing:
            logger.info(f"Challenge {crossing.entity_id} entered its last {crossing.threshold_minutes}m window")
        fine = self.resolver.get_effective(SETTING_LAST_MINUTE_CHECK_FREQUENCY)
        if fine > 0:
            self._arm_interval(fine * 60)
        else:
            logger.info(f"Last-minute cadence disabled, keeping {state.interval_seconds:.0f}s interval")

        state.armed_for_entity_id = None
        state.armed_entry_time = None
        self.arm_threshold_watch()

    # ========================================================================
    # Configuration changes
    # ========================================================================

    def on_config_changed(self):
        """Re-arm immediately after a bulk settings write."""
        state = self.state
        if state is None or not state.running:
            return
        state.last_config_fingerprint = None
        self._cancel_threshold(state)
        self._reconcile_interval()
        self.arm_threshold_watch()

    def notify_config_changed(self):
        """Debounced reload-and-rearm for external settings writes."""
        self._debouncer.trigger()

    async def _reload_and_apply(self):
        await self.resolver.reload()
        self.on_config_changed()

    async def _on_setting_written(self, change: dict[str, Any]):
        if change.get("key") in SCHEDULING_KEYS:
            self.notify_config_changed()

    # ========================================================================
    # Cycles
    # ========================================================================

    async def run_once(self) -> dict[str, Any]:
        """Run one scheduled-rules cycle without arming any timer."""
        return await self._run_cycle(ScheduleState())

    async def _pause_between_actions(self):
        if self.action_delay_max_s <= 0:
            return
        await asyncio.sleep(self.rng.uniform(self.action_delay_min_s, self.action_delay_max_s))

    async def _dispatch(self, kind: str, challenge: Challenge, call: Callable[[], Awaitable[bool]]) -> bool:
        try:
            ok = await call()
        except Exception as e:
            logger.error(f"{kind} on {challenge.id} failed: {e}")
            return False
        if not ok:
            logger.error(f"{kind} on {challenge.id} was not accepted")
            return False
        self.resolver.touch(challenge.id)
        logger.info(f"{kind} sent for {challenge.id} ({challenge.title})")
        return True

    async def _run_cycle(self, state: ScheduleState) -> dict[str, Any]:
        """Fetch, evaluate and dispatch once.

        Never raises: fetch and dispatch failures are logged and the cycle
        counts as completed.
        """
        state.cycle_count += 1
        number = state.cycle_count
        summary: dict[str, Any] = {"cycle": number, "fetched": 0, "votes": 0, "boosts": 0, "error": None}
        state.last_cycle_at = self.clock()

        try:
            challenges = await self.provider.fetch_active(self.credential)
        except Exception as e:
            logger.warning(f"Cycle {number}: fetching challenges failed: {e}")
            summary["error"] = str(e)
            return summary

        state.challenges = list(challenges)
        summary["fetched"] = len(state.challenges)
        if not state.running:
            return summary

        try:
            await self.resolver.prune_stale_overrides(c.id for c in state.challenges)
        except Exception as e:
            logger.warning(f"Cycle {number}: pruning stale overrides failed: {e}")

        for challenge in state.challenges:
            if not state.running:
                logger.info(f"Cycle {number}: stopped, skipping remaining challenges")
                break
            now = self.clock()
            if challenge.is_ended(now):
                continue

            if challenge.boost_available and self.engine.should_boost(challenge, now):
                if await self._dispatch("boost", challenge, lambda c=challenge: self.executor.boost(c, self.credential)):
                    summary["boosts"] += 1
                if not state.running:
                    break
                now = self.clock()

            verdict = self.engine.evaluate(challenge, now)
            logger.debug(f"Cycle {number}: {challenge.id} -> act={verdict.should_act} ({verdict.reason})")
            if not verdict.should_act:
                continue

            if summary["votes"]:
                await self._pause_between_actions()
                if not state.running:
                    break
            if await self._dispatch(
                "vote", challenge, lambda c=challenge, v=verdict: self.executor.vote(c, v.target_value, self.credential)
            ):
                summary["votes"] += 1

        logger.info(
            f"Cycle {number}: {summary['fetched']} challenge(s), "
            f"{summary['votes']} vote(s), {summary['boosts']} boost(s)"
        )
        return summary

    async def run_manual_cycle(self) -> dict[str, Any]:
        """Vote every challenge below 100% exposure up to 100%, ignoring thresholds.

        Allowed whether or not the scheduler is running.
        """
        summary: dict[str, Any] = {"voted": [], "skipped": {}, "error": None}
        try:
            challenges = await self.provider.fetch_active(self.credential)
        except Exception as e:
            logger.warning(f"Manual cycle: fetching challenges failed: {e}")
            summary["error"] = str(e)
            return summary

        for challenge in challenges:
            decision = self.engine.evaluate_manual_to_max(challenge, self.clock())
            if not decision.allowed:
                summary["skipped"][challenge.id] = decision.message
                logger.debug(f"Manual cycle: {decision.message}")
                continue
            if summary["voted"]:
                await self._pause_between_actions()
            if await self._dispatch(
                "vote", challenge, lambda c=challenge: self.executor.vote(c, FULL_EXPOSURE, self.credential)
            ):
                summary["voted"].append(challenge.id)

        logger.info(f"Manual cycle: voted on {len(summary['voted'])} challenge(s)")
        return summary
