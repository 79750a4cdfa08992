"""Step sequencer: drives a run through the step catalog."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from .catalog import StepCatalog
from .errors import InvalidReactivation
from .log_store import LogStore
from .models import (
    CompletionPayload,
    FailurePolicy,
    LogEntry,
    ProgressSnapshot,
    ReactivationPolicy,
    SequencerPhase,
    StepDefinition,
    StepOutcome,
)
from .results import PayloadFactory, StaticPayloadFactory
from .scheduler import Scheduler, TimerHandle, VirtualScheduler

logger = logging.getLogger(__name__)

StepRunner = Callable[[StepDefinition, int], StepOutcome]

DEFAULT_SETTLE_DELAY_MS = 500
DEFAULT_COMPLETION_DELAY_MS = 1000


def simulated_step(step: StepDefinition, index: int) -> StepOutcome:
    """默认步骤执行器：时长结束即视为成功"""
    return StepOutcome.success()


class StepSequencer:
    """
    步骤编排器

    状态机: idle -> running(i) -> settling -> running(i+1) ... -> settling -> completing -> completed

    任意时刻最多只有一个待触发的定时器；每个定时器都带有所属运行的
    generation，过期的回调不会修改状态。
    """

    def __init__(
        self,
        catalog: Optional[StepCatalog] = None,
        scheduler: Optional[Scheduler] = None,
        on_complete: Optional[Callable[[CompletionPayload], None]] = None,
        payload_factory: Optional[PayloadFactory] = None,
        log_store: Optional[LogStore] = None,
        settle_delay_ms: float = DEFAULT_SETTLE_DELAY_MS,
        completion_delay_ms: float = DEFAULT_COMPLETION_DELAY_MS,
        reactivation_policy: ReactivationPolicy = ReactivationPolicy.RESTART,
        failure_policy: FailurePolicy = FailurePolicy.HALT,
        step_runner: Optional[StepRunner] = None,
        on_failure: Optional[Callable[[LogEntry], None]] = None,
    ):
        self.catalog = catalog if catalog is not None else StepCatalog()
        self.scheduler = scheduler or VirtualScheduler()
        self.on_complete = on_complete
        self.payload_factory = payload_factory or StaticPayloadFactory()
        self.log_store = log_store if log_store is not None else LogStore()
        self.settle_delay_ms = settle_delay_ms
        self.completion_delay_ms = completion_delay_ms
        self.reactivation_policy = ReactivationPolicy(reactivation_policy)
        self.failure_policy = FailurePolicy(failure_policy)
        self.step_runner = step_runner or simulated_step
        self.on_failure = on_failure

        # 运行状态（每次 activate 时重置）
        self.phase = SequencerPhase.IDLE
        self.current_step_index = 0
        self.generation = 0
        self.prompt = ""
        self.result: Optional[CompletionPayload] = None
        self._timer: Optional[TimerHandle] = None

    @property
    def total_steps(self) -> int:
        return len(self.catalog)

    @property
    def is_live(self) -> bool:
        return self.phase.is_live

    def activate(self, prompt: str) -> int:
        """Start a new run. Returns the run's generation number.

        The prompt is kept for display only. If a run is still live, the
        re-activation policy decides between cancelling it and raising
        InvalidReactivation.
        """
        if self.phase.is_live:
            if self.reactivation_policy == ReactivationPolicy.REJECT:
                raise InvalidReactivation(
                    f"Run #{self.generation} is still {self.phase.value} "
                    f"at step {self.current_step_index + 1}/{self.total_steps}"
                )
            logger.warning(
                "🔄 Restarting: abandoning run #%d at step %d/%d",
                self.generation,
                self.current_step_index + 1,
                self.total_steps,
            )
            self._cancel_timer()

        self.generation += 1
        self.prompt = prompt
        self.current_step_index = 0
        self.result = None

        with self._transition():
            self.log_store.reset()
            logger.info("🚀 Run #%d started (%d steps)", self.generation, self.total_steps)

            if self.total_steps == 0:
                self._enter_completing()
            else:
                self._start_step(0)
        return self.generation

    def teardown(self) -> None:
        """取消进行中的运行，不触发完成回调"""
        if self.phase.is_live:
            logger.info("Run #%d torn down at step %d", self.generation, self.current_step_index + 1)
        self._cancel_timer()
        # 让任何漏网的回调都变成过期回调
        self.generation += 1
        self.phase = SequencerPhase.IDLE

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            phase=self.phase,
            current_step_index=self.current_step_index,
            total_steps=self.total_steps,
            entries=self.log_store.entries,
            prompt=self.prompt,
        )

    # ------------------------------------------------------------------
    # 状态迁移
    # ------------------------------------------------------------------

    def _start_step(self, index: int) -> None:
        step = self.catalog[index]
        entry = LogEntry.for_step(index, step)

        self.current_step_index = index
        self.phase = SequencerPhase.RUNNING
        self.log_store.append(entry)
        logger.info("📍 Step %d/%d: %s", index + 1, self.total_steps, step.message)

        self._schedule(step.duration_ms, lambda: self._finish_step(index, entry.id))

    def _finish_step(self, index: int, entry_id: str) -> None:
        step = self.catalog[index]
        outcome = self._run_step(step, index)

        if outcome.succeeded:
            self.log_store.mark_completed(entry_id)
            logger.info("   ✅ Step %d completed", index + 1)
        else:
            entry = self.log_store.mark_failed(entry_id, outcome.error or "unknown error")
            logger.error("   ❌ Step %d failed: %s", index + 1, outcome.error)
            if self.failure_policy == FailurePolicy.HALT:
                self.phase = SequencerPhase.FAILED
                logger.error("Run #%d halted", self.generation)
                if self.on_failure and entry is not None:
                    self.on_failure(entry)
                return
            logger.warning("   ⏭️ Continuing past failed step %d", index + 1)

        # 最后一步之后同样先等待 settle，再进入 completing
        self.current_step_index = index + 1
        self.phase = SequencerPhase.SETTLING
        if self.current_step_index < self.total_steps:
            next_index = self.current_step_index
            self._schedule(self.settle_delay_ms, lambda: self._start_step(next_index))
        else:
            self._schedule(self.settle_delay_ms, self._enter_completing)

    def _enter_completing(self) -> None:
        self.current_step_index = self.total_steps
        self.phase = SequencerPhase.COMPLETING
        self._schedule(self.completion_delay_ms, self._complete)

    def _complete(self) -> None:
        self.phase = SequencerPhase.COMPLETED
        self.result = self.payload_factory(self.prompt, self.log_store.entries)
        logger.info("🎉 Run #%d completed (status: %s)", self.generation, self.result.status)
        if self.on_complete:
            self.on_complete(self.result)

    def _run_step(self, step: StepDefinition, index: int) -> StepOutcome:
        try:
            return self.step_runner(step, index)
        except Exception as exc:
            logger.exception("Step runner raised on step %d", index + 1)
            return StepOutcome.failure(str(exc) or exc.__class__.__name__)

    @contextmanager
    def _transition(self) -> Iterator[None]:
        """状态迁移中出现异常（例如观察者抛错）时，终止本次运行并向上抛出"""
        try:
            yield
        except Exception as exc:
            self._cancel_timer()
            self.phase = SequencerPhase.FAILED
            logger.error(
                "💥 Run #%d aborted at step %d/%d: %s",
                self.generation,
                min(self.current_step_index + 1, self.total_steps),
                self.total_steps,
                exc,
            )
            raise

    # ------------------------------------------------------------------
    # 定时器
    # ------------------------------------------------------------------

    def _schedule(self, delay_ms: float, action: Callable[[], None]) -> None:
        generation = self.generation

        def fire() -> None:
            if generation != self.generation:
                logger.debug("Dropping stale timer from run #%d", generation)
                return
            self._timer = None
            with self._transition():
                action()

        self._timer = self.scheduler.call_later(delay_ms, fire)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
