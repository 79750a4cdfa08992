"""High-level workflow: switches between the prompt, progress and result screens."""

from __future__ import annotations

from enum import Enum
from typing import Optional, TextIO

from .config import AppConfig
from .orchestrator import (
    CompletionPayload,
    LogEntry,
    LogStore,
    RunLogWriter,
    Scheduler,
    SleepScheduler,
    StaticPayloadFactory,
    StepCatalog,
    StepRunner,
    StepSequencer,
    VirtualScheduler,
)
from .progress import ConsoleProgressView
from .utils.logging import get_logger

logger = get_logger(__name__)


class AppState(str, Enum):
    """Which screen is active."""
    CANVAS = "canvas"         # 输入 prompt
    DEPLOYING = "deploying"   # 显示进度
    COMPLETED = "completed"   # 显示结果


def build_catalog(config: AppConfig) -> StepCatalog:
    """根据配置构建步骤目录（应用 time_scale）"""
    catalog = StepCatalog.from_dicts(config.steps) if config.steps is not None else StepCatalog()
    return catalog.scaled(config.sequencer.time_scale)


class DeploymentWorkflow:
    """Owns the sequencer and mediates between it and the screens."""

    def __init__(
        self,
        config: AppConfig,
        scheduler: Optional[Scheduler] = None,
        dry_run: bool = False,
        stream: Optional[TextIO] = None,
        show_progress: bool = True,
        step_runner: Optional[StepRunner] = None,
    ) -> None:
        self.config = config
        if scheduler is None:
            scheduler = VirtualScheduler() if dry_run else SleepScheduler()
        self.scheduler = scheduler

        seq_cfg = config.sequencer
        scale = seq_cfg.time_scale
        self.sequencer = StepSequencer(
            catalog=build_catalog(config),
            scheduler=scheduler,
            on_complete=self.handle_complete,
            payload_factory=StaticPayloadFactory(config.result),
            log_store=LogStore(strict=seq_cfg.strict_log_store),
            settle_delay_ms=seq_cfg.settle_delay_ms * scale,
            completion_delay_ms=seq_cfg.completion_delay_ms * scale,
            reactivation_policy=seq_cfg.reactivation_policy,
            failure_policy=seq_cfg.failure_policy,
            step_runner=step_runner,
            on_failure=self.handle_failure,
        )

        self.state = AppState.CANVAS
        self.current_prompt = ""
        self.result: Optional[CompletionPayload] = None
        self.failed_entry: Optional[LogEntry] = None

        self.view: Optional[ConsoleProgressView] = None
        if show_progress:
            self.view = ConsoleProgressView(self.sequencer.snapshot, stream=stream)
            self.view.attach(self.sequencer.log_store)

        self.run_log: Optional[RunLogWriter] = None
        if config.logging.write_run_log:
            self.run_log = RunLogWriter(
                self.sequencer.log_store,
                log_dir=config.logging.log_dir,
                prompt_source=lambda: self.sequencer.prompt,
            )

    def deploy(self, prompt: str) -> None:
        """Prompt submitted: switch to the progress screen and start a run."""
        logger.info("Preparing deployment for prompt (%d chars)", len(prompt))
        self.current_prompt = prompt
        self.result = None
        self.failed_entry = None
        self.state = AppState.DEPLOYING
        self.sequencer.activate(prompt)

    def handle_complete(self, payload: CompletionPayload) -> None:
        self.result = payload
        self.state = AppState.COMPLETED
        if self.run_log:
            self.run_log.finalize("completed", payload)

    def handle_failure(self, entry: LogEntry) -> None:
        logger.error("Deployment halted at '%s': %s", entry.message, entry.error)
        self.failed_entry = entry
        self.state = AppState.CANVAS
        if self.run_log:
            self.run_log.finalize("failed")

    def start_new(self) -> None:
        """Back to the prompt screen, dropping any run in progress."""
        self.sequencer.teardown()
        if self.run_log and self.run_log.status == "running":
            self.run_log.finalize("abandoned")
        self.state = AppState.CANVAS
        self.current_prompt = ""
        self.result = None

    def run(self, prompt: str) -> Optional[CompletionPayload]:
        """Deploy and block until the scheduler goes idle."""
        self.deploy(prompt)
        self.scheduler.run_until_idle()
        return self.result

    def close(self) -> None:
        if self.view:
            self.view.detach()
        if self.run_log:
            self.run_log.close()
