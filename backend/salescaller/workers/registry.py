"""
Job Handler Registry
Maps job types to the coroutine that executes them.

Services register their handlers at startup, so the queue and workers
never import service modules.
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional

from salescaller.domain.exceptions import ValidationError
from salescaller.domain.models.job import JobContext

JobHandler = Callable[[Dict[str, Any], JobContext], Awaitable[Optional[Dict[str, Any]]]]


class HandlerRegistry:
    """Mutable job type -> handler table"""

    def __init__(self) -> None:
        self._handlers: Dict[str, JobHandler] = {}

    def register(self, job_type: str, handler: JobHandler) -> None:
        self._handlers[getattr(job_type, "value", job_type)] = handler

    def get(self, job_type: str) -> JobHandler:
        """
        Raises:
            ValidationError: No handler for this job type
        """
        job_type = getattr(job_type, "value", job_type)
        if job_type not in self._handlers:
            raise ValidationError(f"No handler registered for job type: {job_type}")
        return self._handlers[job_type]

    def job_types(self) -> List[str]:
        return sorted(self._handlers.keys())
