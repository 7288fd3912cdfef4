"""
Scheduling Layer - Parallel Batch Execution

Submodules:
    task_scheduler.py → Worker pool, dependency barriers, batch report
"""

from narrative_generation.scheduling.task_scheduler import (
    TaskScheduler,
    compose_dependent_input,
    validate_batch,
)

__all__ = [
    "TaskScheduler",
    "compose_dependent_input",
    "validate_batch",
]
