class SchedulerError(Exception):
    """
    Base class for errors raised by the scheduler core.
    """


class ScheduleValidationError(SchedulerError, ValueError):
    """
    A schedule failed validation. Fatal at startup: the scheduler refuses to run.
    """


class TaskTimeoutError(SchedulerError):
    """
    An attempt ran longer than its schedule's timeout.
    """


class ExecutionFault(SchedulerError):
    """
    A task's execute() raised, or returned something that is not a TaskResult.
    """


class PersistenceFailure(SchedulerError):
    """
    A result or task definition could not be written to storage.
    """
