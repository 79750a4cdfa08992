"""Sequencing errors.

These signal bugs in the caller or in the sequencer itself, never a
recoverable condition of a run.
"""


class SequencingError(RuntimeError):
    """Base class for sequencing logic errors."""


class EntryNotFound(SequencingError, KeyError):
    """A log entry id was referenced that the store does not hold."""

    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Log entry not found: {entry_id}")
        self.entry_id = entry_id

    def __str__(self) -> str:
        # KeyError 默认会给消息加引号
        return self.args[0]


class EntryAlreadyRunning(SequencingError):
    """An entry was appended while another one is still running."""

    def __init__(self, running_id: str, new_id: str) -> None:
        super().__init__(
            f"Cannot append {new_id}: entry {running_id} is still running"
        )
        self.running_id = running_id
        self.new_id = new_id


class InvalidReactivation(SequencingError):
    """activate() was called while a run is live and the policy rejects it."""
