from __future__ import annotations


class ExecutionError(Exception):
    """Base for anything that turns an execution attempt into a Failure outcome."""


class ExecutionContractViolation(ExecutionError):
    """The capability answered, but the payload breaks the {result, notification} contract."""


class InvocationError(ExecutionError):
    """The capability itself failed: transport error, error response or timeout."""


class StoreError(Exception):
    """A persistence write failed while handling a task outcome."""

    def __init__(self, message: str, *, task_id: int | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id
