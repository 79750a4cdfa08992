"""Orchestrator module for the simulated deployment run.

- StepCatalog: Fixed ordered list of deployment steps
- LogStore: Append-only log entries observed by the progress view
- Scheduler: Cancellable timers (virtual or wall clock)
- StepSequencer: State machine driving a run to its completion callback
- RunLogWriter: JSON mirror of each run
"""

from .models import (
    EntryStatus,
    SequencerPhase,
    ReactivationPolicy,
    FailurePolicy,
    StepDefinition,
    LogEntry,
    StepOutcome,
    CompletionPayload,
    ProgressSnapshot,
)
from .errors import (
    SequencingError,
    EntryNotFound,
    EntryAlreadyRunning,
    InvalidReactivation,
)
from .catalog import StepCatalog, DEFAULT_STEPS
from .log_store import LogStore
from .scheduler import Scheduler, TimerHandle, VirtualScheduler, SleepScheduler
from .results import PayloadFactory, StaticPayloadFactory
from .sequencer import StepSequencer, StepRunner
from .run_log import RunLogWriter

__all__ = [
    "EntryStatus",
    "SequencerPhase",
    "ReactivationPolicy",
    "FailurePolicy",
    "StepDefinition",
    "LogEntry",
    "StepOutcome",
    "CompletionPayload",
    "ProgressSnapshot",
    "SequencingError",
    "EntryNotFound",
    "EntryAlreadyRunning",
    "InvalidReactivation",
    "StepCatalog",
    "DEFAULT_STEPS",
    "LogStore",
    "Scheduler",
    "TimerHandle",
    "VirtualScheduler",
    "SleepScheduler",
    "PayloadFactory",
    "StaticPayloadFactory",
    "StepSequencer",
    "StepRunner",
    "RunLogWriter",
]
