"""
Task Scheduler - Parallel Batch Execution with Dependency Barriers

This module runs a batch of GenerationTasks on a fixed pool of worker
threads. Each worker drives one task through the orchestrator's state
machine to completion; tasks beyond the pool size wait in the queue.

Dependency Handling:
    Domain tasks have no dependencies and start immediately. A synthesis
    task starts only after every task it depends on is terminal. Its
    input is its own text followed by the dependency narratives, in
    declared order, each fenced by begin/end markers. If any dependency
    failed or was skipped, the synthesis task is skipped (and so is
    anything depending on it).

Failure Isolation:
    A failing task affects only its dependents, whatever it raised. The
    one exception is BackendUnavailableError: nothing else can succeed
    without a backend, so queued tasks are cancelled, tasks already running
    finish their current attempt, and the error propagates to the caller.

Pipeline Position:
    Pipeline → [Scheduler] → Orchestrator (per task) → Output slots
               ^^^^^^^^^^^
               You are here
"""

import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Sequence

from loguru import logger

from narrative_generation.core.constants import DEPENDENCY_TEXT_BEGIN, DEPENDENCY_TEXT_END
from narrative_generation.core.enums import TaskOutcome, TaskState
from narrative_generation.core.exceptions import (
    BackendUnavailableError,
    ConfigurationError,
    NarrativeGenerationError,
)
from narrative_generation.core.models import (
    BatchReport,
    GenerationTask,
    StateTransition,
    TaskResult,
)
from narrative_generation.generation.orchestrator import GenerationOrchestrator
from narrative_generation.output.output_slots import NarrativeMetadata, OutputSlots


# =============================================================================
# STAGE 1: BATCH VALIDATION
# =============================================================================


def validate_batch(tasks: Sequence[GenerationTask]) -> None:
    """
    Check task ids are unique, dependencies exist and contain no cycles.

    Raises:
        ConfigurationError: On the first problem found
    """
    by_id: Dict[str, GenerationTask] = {}
    for task in tasks:
        if task.task_id in by_id:
            raise ConfigurationError(
                f"Duplicate task id '{task.task_id}'", context={"task_id": task.task_id}
            )
        by_id[task.task_id] = task

    for task in tasks:
        for dep in task.dependencies:
            if dep not in by_id:
                raise ConfigurationError(
                    f"Task '{task.task_id}' depends on unknown task '{dep}'",
                    context={"task_id": task.task_id, "dependency": dep},
                )

    # Depth-first search with three colors: 0 unvisited, 1 on stack, 2 done
    color: Dict[str, int] = {task_id: 0 for task_id in by_id}

    def visit(task_id: str, path: List[str]) -> None:
        color[task_id] = 1
        for dep in by_id[task_id].dependencies:
            if color[dep] == 1:
                cycle = path[path.index(dep):] + [dep] if dep in path else [task_id, dep]
                raise ConfigurationError(
                    "Dependency cycle in batch", context={"cycle": " -> ".join(cycle)}
                )
            if color[dep] == 0:
                visit(dep, path + [dep])
        color[task_id] = 2

    for task_id in by_id:
        if color[task_id] == 0:
            visit(task_id, [task_id])


def compose_dependent_input(task: GenerationTask, dependency_results: List[TaskResult]) -> str:
    """Own input followed by each dependency narrative, fenced by markers."""
    blocks = [task.input_text.rstrip()] if task.input_text.strip() else []
    for result in dependency_results:
        blocks.append(
            "\n".join(
                [
                    DEPENDENCY_TEXT_BEGIN.format(domain=result.domain_key),
                    (result.text or "").strip(),
                    DEPENDENCY_TEXT_END.format(domain=result.domain_key),
                ]
            )
        )
    return "\n\n".join(blocks)


# =============================================================================
# STAGE 2: TASK SCHEDULER
# =============================================================================


class TaskScheduler:
    """
    Runs a batch of tasks on a fixed worker pool.

    What it does:
        Validates the batch, dispatches ready tasks to ``worker_count``
        threads, releases dependents as their dependencies finish, writes
        narratives to the output slots and returns a BatchReport.

    Why it exists:
        1. Worker count bounds concurrent backend calls
        2. Synthesis waits for the domain narratives it summarizes
        3. One failing domain does not sink the rest of the report

    Example:
        >>> scheduler = TaskScheduler(orchestrator, output_slots, worker_count=3)
        >>> report = scheduler.run_batch(tasks)
        >>> report.accepted, report.failed
        (12, 1)
    """

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        output_slots: Optional[OutputSlots] = None,
        worker_count: int = 3,
    ):
        if worker_count < 1:
            raise ConfigurationError(
                f"worker_count must be at least 1, got {worker_count}",
                context={"worker_count": worker_count},
            )
        self._orchestrator = orchestrator
        self._output_slots = output_slots
        self._worker_count = worker_count

    # =========================================================================
    # STAGE 3: BATCH EXECUTION
    # =========================================================================

    def run_batch(self, tasks: Sequence[GenerationTask]) -> BatchReport:
        """
        Run every task to a terminal result.

        Raises:
            ConfigurationError: Duplicate ids, unknown dependencies or cycles
            BackendUnavailableError: Backend unreachable; raised once running tasks end
        """
        # =====================================================================
        # STAGE 3.1: VALIDATE AND INDEX
        # =====================================================================
        validate_batch(tasks)
        started = time.monotonic()
        by_id = {task.task_id: task for task in tasks}
        results: Dict[str, TaskResult] = {}
        waiting: List[GenerationTask] = [task for task in tasks if task.is_synthesis]

        logger.info(
            f"Batch started | Tasks: {len(tasks)} | Dependent: {len(waiting)} | "
            f"Workers: {self._worker_count}"
        )

        executor = ThreadPoolExecutor(
            max_workers=self._worker_count, thread_name_prefix="narrative-worker"
        )
        in_flight: Dict[Future, str] = {}
        aborted = False

        try:
            # =================================================================
            # STAGE 3.2: DISPATCH INDEPENDENT TASKS
            # =================================================================
            for task in tasks:
                if not task.is_synthesis:
                    in_flight[executor.submit(self._orchestrator.run, task)] = task.task_id

            # =================================================================
            # STAGE 3.3: COLLECT RESULTS, RELEASE DEPENDENTS
            # =================================================================
            while in_flight:
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)

                for future in done:
                    task_id = in_flight.pop(future)
                    try:
                        result = future.result()
                    except BackendUnavailableError:
                        aborted = True
                        logger.error(
                            f"Backend unavailable, aborting batch | Task: {task_id} | "
                            f"Running: {len(in_flight)} | Waiting: {len(waiting)}"
                        )
                        raise
                    except NarrativeGenerationError as e:
                        logger.error(f"Task failed | Task: {task_id} | Error: {e}")
                        result = self._failed(by_id[task_id], str(e))
                    except Exception as e:
                        logger.exception(
                            f"Task raised unexpectedly | Task: {task_id} | "
                            f"Error: {type(e).__name__}: {e}"
                        )
                        result = self._failed(by_id[task_id], f"{type(e).__name__}: {e}")

                    self._finish(result, results)

                waiting = self._release(waiting, results, executor, in_flight)

        finally:
            # Running tasks still write to the usage log, so they must end first
            executor.shutdown(wait=True, cancel_futures=aborted)

        # Anything still waiting has a dependency that never became terminal
        for task in waiting:
            self._skip(task, results, "dependencies did not complete")

        report = BatchReport(
            results={task.task_id: results[task.task_id] for task in tasks},
            elapsed_seconds=time.monotonic() - started,
        )
        logger.info(
            f"Batch complete | Accepted: {report.accepted} | Flagged: {report.flagged} | "
            f"Failed: {report.failed} | Skipped: {report.skipped} | "
            f"Attempts: {report.total_attempts} | Elapsed: {report.elapsed_seconds:.1f}s"
        )
        return report

    # =========================================================================
    # STAGE 4: HELPERS
    # =========================================================================

    def _release(
        self,
        waiting: List[GenerationTask],
        results: Dict[str, TaskResult],
        executor: ThreadPoolExecutor,
        in_flight: Dict[Future, str],
    ) -> List[GenerationTask]:
        """Dispatch or skip waiting tasks whose dependencies are all terminal."""
        changed = True
        while changed:
            changed = False
            still_waiting = []
            for task in waiting:
                if not all(dep in results for dep in task.dependencies):
                    still_waiting.append(task)
                    continue

                changed = True
                dep_results = [results[dep] for dep in task.dependencies]
                blocked = [r.task_id for r in dep_results if not r.outcome.has_text]
                if blocked:
                    self._skip(task, results, f"dependencies without narrative: {blocked}")
                    continue

                composed = task.with_input(compose_dependent_input(task, dep_results))
                in_flight[executor.submit(self._orchestrator.run, composed)] = task.task_id
                logger.debug(
                    f"Dependent task released | Task: {task.task_id} | "
                    f"Dependencies: {task.dependencies}"
                )
            waiting = still_waiting
        return waiting

    def _skip(self, task: GenerationTask, results: Dict[str, TaskResult], reason: str) -> None:
        self._orchestrator.usage_log.record_transition(
            StateTransition(
                task_id=task.task_id,
                from_state=TaskState.PENDING,
                to_state=TaskState.SKIPPED,
                detail=reason,
            )
        )
        results[task.task_id] = TaskResult(
            task_id=task.task_id,
            domain_key=task.domain_key,
            outcome=TaskOutcome.SKIPPED,
            final_state=TaskState.SKIPPED,
            error=reason,
        )
        logger.warning(f"Task skipped | Task: {task.task_id} | Reason: {reason}")

    def _failed(self, task: GenerationTask, error: str) -> TaskResult:
        return TaskResult(
            task_id=task.task_id,
            domain_key=task.domain_key,
            outcome=TaskOutcome.ALL_MODELS_FAILED,
            final_state=TaskState.FAILED,
            error=error,
        )

    def _finish(self, result: TaskResult, results: Dict[str, TaskResult]) -> None:
        results[result.task_id] = result
        if self._output_slots is None or not (result.outcome.has_text and result.text):
            return

        try:
            self._output_slots.write(
                result.domain_key, result.text, NarrativeMetadata.from_result(result)
            )
        except OSError as e:
            # The narrative stays on the report; only the slot file is missing
            logger.error(
                f"Output slot write failed | Task: {result.task_id} | "
                f"Domain: {result.domain_key} | Error: {e}"
            )

    @property
    def worker_count(self) -> int:
        return self._worker_count
