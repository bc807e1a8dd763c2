"""
Cloud Check Engine - Detects and repairs drift between the director
database and the infrastructure.

A check scans candidate problems, keeps the ones whose handlers confirm they
still exist, and optionally applies a resolution to each of them, either
chosen by an operator or taken from the registry's auto resolution.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional

from collector import Candidate, ProblemCollector
from config import EngineConfig
from errors import UnknownProblemType, ValidationError
from events import EventBus, ProblemEvent
from problems.base import ProblemContext, ProblemHandler
from problems.registry import ProblemRegistry
from report import (
    CheckReport,
    DetectionError,
    Disposition,
    Problem,
    ProblemOutcome,
    problem_id,
)

logger = logging.getLogger(__name__)

IGNORE_RESOLUTION = "ignore"


class CheckMode(Enum):
    """How a check run treats the problems it finds."""

    REPORT = "report"
    AUTO = "auto"
    MANUAL = "manual"


class CloudCheckEngine:
    """
    Orchestrates scans and resolutions.

    Resolutions touching the same instance are serialized with a per-instance
    lock; ``max_concurrent_resolutions`` bounds parallelism across instances.
    """

    def __init__(
        self,
        registry: ProblemRegistry,
        ctx: ProblemContext,
        collector: Optional[ProblemCollector] = None,
        config: Optional[EngineConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.registry = registry
        self.ctx = ctx
        self.db = ctx.repository
        self.collector = collector
        self.config = config or EngineConfig()
        self.semaphore = asyncio.Semaphore(self.config.max_concurrent_resolutions)
        self.running = False
        self._event_bus = event_bus

        self._locks: Dict[str, asyncio.Lock] = {}
        self._cancel_event = asyncio.Event()
        self._stop_event = asyncio.Event()

    # ==================== Scan ====================

    async def scan(self, candidates: Iterable[Candidate]) -> CheckReport:
        """
        Build a handler per candidate and keep the problems that still exist.

        Raises:
            UnknownProblemType: If a candidate has an unregistered type
        """
        report = CheckReport()
        seen = set()

        for type_tag, resource_id, data in candidates:
            pid = problem_id(type_tag, resource_id)
            if pid in seen:
                continue
            seen.add(pid)

            try:
                handler = await self.registry.build_handler(
                    type_tag, self.ctx, resource_id, data
                )
                if not await handler.problem_still_exists():
                    logger.debug(f"Problem {pid} no longer exists")
                    continue
            except UnknownProblemType:
                raise
            except Exception as e:
                logger.warning(f"Could not verify problem {pid}: {e}")
                report.errors.append(DetectionError(type_tag, resource_id, str(e)))
                continue

            auto = self.registry.auto_resolution(type_tag)
            problem = Problem.from_handler(handler, auto)
            report.problems.append(problem)
            logger.info(f"Found problem {pid}: {problem.description}")
            await self._publish(ProblemEvent.detected(problem))

        logger.info(
            f"Scan found {len(report.problems)} problems "
            f"({len(report.errors)} could not be verified)"
        )
        return report

    # ==================== Apply ====================

    async def apply(
        self,
        report: CheckReport,
        resolutions: Optional[Mapping[str, str]] = None,
        auto: bool = False,
    ) -> List[ProblemOutcome]:
        """
        Apply resolutions to the problems of a report.

        A cancel requested before or during the run skips every problem that
        has not started yet. The request stays in effect until the next
        check().

        Args:
            report: Report from scan()
            resolutions: Problem id to resolution name chosen by an operator
            auto: Use the registry's auto resolution for problems without
                an explicit choice

        Returns:
            One outcome per problem, in report order
        """
        resolutions = dict(resolutions or {})
        known = {p.id for p in report.problems}
        for pid in set(resolutions) - known:
            logger.warning(f"Ignoring resolution for unknown problem {pid}")

        outcomes = await asyncio.gather(
            *[
                self._resolve_problem(problem, resolutions.get(problem.id), auto)
                for problem in report.problems
            ]
        )
        report.outcomes = list(outcomes)
        return report.outcomes

    def cancel(self) -> None:
        """Stop an apply run before its next problem. Running actions finish."""
        logger.info("Cancelling cloud check apply run")
        self._cancel_event.set()

    def _select_resolution(
        self, problem: Problem, chosen: Optional[str], auto: bool
    ) -> Optional[str]:
        if chosen:
            return chosen
        if auto:
            return problem.auto_resolution
        return None

    def _lock_for(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def _resolve_problem(
        self, problem: Problem, chosen: Optional[str], auto: bool
    ) -> ProblemOutcome:
        async with self.semaphore:
            start_time = time.monotonic()
            name = self._select_resolution(problem, chosen, auto)

            if self._cancel_event.is_set():
                outcome = self._outcome(problem, Disposition.SKIPPED, name, "cancelled")
            elif name is None:
                outcome = self._outcome(
                    problem, Disposition.SKIPPED, None, "No resolution selected"
                )
            else:
                outcome = await self._resolve_locked(problem, name)

            outcome.duration_seconds = time.monotonic() - start_time
            await self._record(outcome)
            return outcome

    async def _resolve_locked(self, problem: Problem, name: str) -> ProblemOutcome:
        """Rebuild the handler from fresh rows and run it under its lock."""
        try:
            handler = await self._build(problem)
            lock_key = handler.lock_key
            async with self._lock_for(lock_key):
                # Rows may have changed while waiting for the lock
                handler = await self._build(problem)
                if handler.lock_key != lock_key:
                    return self._outcome(
                        problem,
                        Disposition.FAILED,
                        name,
                        f"Problem moved from {lock_key} to {handler.lock_key}",
                    )
                return await self._execute(problem, handler, name)
        except ValidationError as e:
            logger.warning(f"Skipping problem {problem.id}: {e}")
            return self._outcome(problem, Disposition.SKIPPED, name, str(e))
        except Exception as e:
            logger.error(f"Error reloading problem {problem.id}: {e}", exc_info=True)
            return self._outcome(problem, Disposition.FAILED, name, str(e))

    async def _build(self, problem: Problem) -> ProblemHandler:
        return await self.registry.build_handler(
            problem.problem_type, self.ctx, problem.resource_id, {}
        )

    async def _execute(
        self, problem: Problem, handler: ProblemHandler, name: str
    ) -> ProblemOutcome:
        """Re-verify, run the action, then verify the problem is gone."""
        try:
            if not await handler.problem_still_exists():
                logger.info(f"Problem {problem.id} already resolved")
                return self._outcome(
                    problem, Disposition.RESOLVED, None, "Problem no longer exists"
                )

            option = handler.get_resolution(name)
            await asyncio.shield(self._run_action(handler, option.name))

            if name == IGNORE_RESOLUTION:
                return self._outcome(problem, Disposition.IGNORED, name)

            if await handler.problem_still_exists():
                return self._outcome(
                    problem,
                    Disposition.FAILED,
                    name,
                    f"Problem still exists after '{name}'",
                )

        except ValidationError as e:
            logger.error(f"Resolution '{name}' for {problem.id} failed: {e}")
            return self._outcome(problem, Disposition.FAILED, name, str(e))
        except Exception as e:
            logger.error(
                f"Error applying '{name}' to {problem.id}: {e}", exc_info=True
            )
            return self._outcome(problem, Disposition.FAILED, name, str(e))

        logger.info(f"Resolved {problem.id} with '{name}'")
        return self._outcome(problem, Disposition.RESOLVED, name)

    async def _run_action(self, handler: ProblemHandler, name: str) -> None:
        await handler.apply_resolution(name)

    def _outcome(
        self,
        problem: Problem,
        disposition: Disposition,
        resolution: Optional[str],
        reason: Optional[str] = None,
    ) -> ProblemOutcome:
        return ProblemOutcome(
            problem_id=problem.id,
            problem_type=problem.problem_type,
            resource_id=problem.resource_id,
            disposition=disposition,
            resolution=resolution,
            reason=reason,
        )

    async def _record(self, outcome: ProblemOutcome) -> None:
        """Record an outcome in history and publish it. Never raises."""
        try:
            await self.db.record_check_outcome(
                problem_id=outcome.problem_id,
                problem_type=outcome.problem_type,
                resource_id=outcome.resource_id,
                disposition=outcome.disposition.value,
                resolution=outcome.resolution,
                reason=outcome.reason,
                duration_seconds=outcome.duration_seconds,
            )
        except Exception as e:
            logger.error(f"Failed to record outcome for {outcome.problem_id}: {e}")

        await self._publish(ProblemEvent.from_outcome(outcome))

    async def _publish(self, event: ProblemEvent) -> None:
        if self._event_bus:
            await self._event_bus.publish(event)

    # ==================== Check runs ====================

    async def check(
        self,
        mode: CheckMode = CheckMode.REPORT,
        resolutions: Optional[Mapping[str, str]] = None,
    ) -> CheckReport:
        """
        Collect, scan and, unless reporting only, apply resolutions.

        In MANUAL mode only problems named in ``resolutions`` are resolved;
        in AUTO mode the rest fall back to their auto resolution. A cancel or
        stop requested while collecting or scanning skips every problem.
        """
        if self.collector is None:
            raise RuntimeError("Engine has no collector configured")

        self._cancel_event.clear()
        candidates = await self.collector.collect()
        report = await self.scan(candidates)

        if mode != CheckMode.REPORT and report.problems:
            await self.apply(report, resolutions, auto=mode == CheckMode.AUTO)
            logger.info(f"Cloud check finished: {report.summary()}")

        return report

    async def start(self):
        """Run periodic checks until stopped."""
        logger.info("Starting cloud check engine")
        self.running = True
        self._stop_event.clear()
        mode = CheckMode.AUTO if self.config.auto_resolve else CheckMode.REPORT

        while self.running:
            try:
                await self.check(mode)
            except Exception as e:
                logger.error(f"Error in cloud check loop: {e}", exc_info=True)

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.config.check_interval
                )
            except asyncio.TimeoutError:
                pass

    async def stop(self):
        """Stop periodic checks, cancelling any apply run between problems."""
        logger.info("Stopping cloud check engine")
        self.running = False
        self._stop_event.set()
        self.cancel()
