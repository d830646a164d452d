from .result import TaskResult, TaskSuccess, TaskError, RunStatus, period_run_name
from .schedule import Schedule

__all__ = ["TaskResult", "TaskSuccess", "TaskError", "RunStatus", "period_run_name", "Schedule"]
