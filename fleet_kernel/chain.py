"""
Chain Sequencer
===============

Runs ordered stages where stage n+1 is admitted only after stage n's
process has exited.  Exit is detected by polling liveness; a declined
launch is retried on the same stage after a fixed delay, so a chain never
skips a stage.
"""

from __future__ import annotations

import threading
import time
import logging
from typing import Callable, Dict, List, Optional, Any, Sequence, Tuple, Union

from fleet_kernel.errors import StarvationError
from fleet_kernel.host import HostEnvironment
from fleet_kernel.models.chain import ChainStage, ChainRun, StageState
from fleet_kernel.models.workload import Workload
from fleet_kernel.scheduler import TaskScheduler

logger = logging.getLogger(__name__)

StageSpec = Union[ChainStage, Workload]


class ChainSequencer:
    """
    Strictly sequential stage runner over the scheduler.

    One stage is active per chain.  Independent chains may run in
    parallel threads against the same scheduler.

    `sleep` and `clock` are injectable so tests can drive simulated time.
    When no `sleep` is given, waits are interruptible through the cancel
    event.
    """

    def __init__(
        self,
        scheduler: TaskScheduler,
        host: Optional[HostEnvironment] = None,
        poll_interval: float = 1.0,
        retry_delay: float = 5.0,
        max_attempts: Optional[int] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._lock = threading.RLock()
        self.scheduler = scheduler
        self.host = host if host is not None else scheduler.host
        self.poll_interval = poll_interval
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._clock = clock

        self._active: List[ChainRun] = []
        self._last_run: Optional[ChainRun] = None

        # Metrics
        self._chains_started = 0
        self._chains_completed = 0
        self._stages_done = 0
        self._retries = 0

    # ─────────────────────────────────────────────────────────────────
    # Entry points
    # ─────────────────────────────────────────────────────────────────

    def prepare(self, stages: Sequence[StageSpec]) -> ChainRun:
        """Build a run from stages or bare workloads."""
        built = []
        for i, spec in enumerate(stages):
            if isinstance(spec, ChainStage):
                built.append(spec)
            else:
                built.append(ChainStage(name=f"stage-{i}", workload=spec))
        return ChainRun(stages=built, started_at=self._clock())

    def run_chain(
        self,
        stages: Union[Sequence[StageSpec], ChainRun],
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> ChainRun:
        """
        Execute stages in order, blocking until the chain ends.

        The chain ends when every stage is done, a stage fails, `cancel`
        is set, or `timeout` seconds of clock time have passed.
        """
        run = stages if isinstance(stages, ChainRun) else self.prepare(stages)
        cancel = cancel or threading.Event()
        deadline = None if timeout is None else self._clock() + timeout

        with self._lock:
            self._active.append(run)
            self._chains_started += 1
        logger.info(f"Chain started: {[s.name for s in run.stages]}")

        try:
            for stage in run.stages:
                if not self._run_stage(stage, cancel, deadline):
                    break
        finally:
            run.finished_at = self._clock()
            with self._lock:
                self._active.remove(run)
                self._last_run = run
                if run.completed:
                    self._chains_completed += 1

        if run.completed:
            logger.info(f"Chain completed ({len(run.stages)} stages)")
        else:
            failed = run.failed_stage
            if failed is not None:
                logger.warning(f"Chain stopped at {failed.name}: {failed.state.value} ({failed.error})")
        return run

    def spawn(self, stages: Sequence[StageSpec]) -> Tuple[ChainRun, threading.Event]:
        """Run a chain on a background thread; returns the run and its cancel event."""
        run = self.prepare(stages)
        cancel = threading.Event()
        thread = threading.Thread(
            target=self._run_guarded,
            args=(run, cancel),
            daemon=True,
            name="ChainSequencer",
        )
        thread.start()
        return run, cancel

    def _run_guarded(self, run: ChainRun, cancel: threading.Event) -> None:
        try:
            self.run_chain(run, cancel)
        except Exception as e:
            logger.exception(f"Chain error: {e}")

    # ─────────────────────────────────────────────────────────────────
    # Stages
    # ─────────────────────────────────────────────────────────────────

    def _pause(
        self,
        seconds: float,
        cancel: threading.Event,
        deadline: Optional[float],
    ) -> bool:
        """Suspend for one interval.  False means stop the chain."""
        if self._sleep is not None:
            self._sleep(seconds)
        else:
            cancel.wait(timeout=seconds)
        return not self._should_stop(cancel, deadline)

    def _should_stop(self, cancel: threading.Event, deadline: Optional[float]) -> bool:
        if cancel.is_set():
            return True
        return deadline is not None and self._clock() >= deadline

    def _stop_stage(self, stage: ChainStage, cancel: threading.Event) -> None:
        stage.state = StageState.CANCELLED
        stage.error = "cancelled" if cancel.is_set() else "timed out"
        stage.finished_at = self._clock()

    def _run_stage(
        self,
        stage: ChainStage,
        cancel: threading.Event,
        deadline: Optional[float],
    ) -> bool:
        """Launch one stage and wait for its process.  False stops the chain."""
        # Admission: retry the same stage until the scheduler accepts it.
        while True:
            if self._should_stop(cancel, deadline):
                self._stop_stage(stage, cancel)
                return False

            stage.attempts += 1
            result = self.scheduler.launch(stage.workload)
            if result:
                break

            stage.error = result.describe()
            if not result.is_transient():
                stage.state = StageState.FAILED
                stage.finished_at = self._clock()
                return False

            if self.max_attempts is not None and stage.attempts >= self.max_attempts:
                error = StarvationError(stage.name, stage.attempts)
                stage.state = StageState.FAILED
                stage.error = str(error)
                stage.finished_at = self._clock()
                logger.warning(f"Chain stage starved: {error}")
                return False

            stage.state = StageState.WAITING_CAPACITY
            with self._lock:
                self._retries += 1
            logger.debug(f"{stage.name} {stage.error}, retry in {self.retry_delay}s")
            if not self._pause(self.retry_delay, cancel, deadline):
                self._stop_stage(stage, cancel)
                return False

        placement = result
        stage.state = StageState.RUNNING
        stage.error = None
        stage.placement_id = placement.placement_id
        stage.node = placement.node
        stage.started_at = self._clock()
        logger.info(f"{stage.name} running on {placement.node} x{placement.threads}")

        # Completion: poll until the process is gone.
        while self.scheduler.is_live(placement):
            if not self._pause(self.poll_interval, cancel, deadline):
                if placement.handle is not None and self.host is not None:
                    self.host.kill_process(placement.handle)
                self.scheduler.finish(placement)
                self._stop_stage(stage, cancel)
                return False

        if not self.scheduler.finish(placement) and placement.invalidated:
            # The node was upgraded under the stage and its process killed
            stage.state = StageState.FAILED
            stage.error = f"placement invalidated on {placement.node}"
            stage.finished_at = self._clock()
            logger.warning(f"{stage.name} lost its placement on {placement.node}")
            return False

        stage.state = StageState.DONE
        stage.finished_at = self._clock()
        with self._lock:
            self._stages_done += 1
        logger.debug(f"{stage.name} done after {stage.attempts} attempts")
        return True

    # ─────────────────────────────────────────────────────────────────
    # Status
    # ─────────────────────────────────────────────────────────────────

    def status(self) -> List[Dict[str, Any]]:
        """
        Current stage of every active chain, e.g.

            {"stage": "grow", "state": "waiting_capacity",
             "detail": "declined: insufficient capacity (1.75 per thread)"}
        """
        with self._lock:
            runs = list(self._active)
        rows = []
        for run in runs:
            stage = run.current()
            if stage is None:
                continue
            rows.append({
                "stage": stage.name,
                "state": stage.state.value,
                "attempts": stage.attempts,
                "node": stage.node,
                "detail": stage.error,
            })
        return rows

    @property
    def last_run(self) -> Optional[ChainRun]:
        with self._lock:
            return self._last_run

    def get_stats(self) -> Dict[str, Any]:
        """Get chain sequencer statistics."""
        with self._lock:
            return {
                "active_chains": len(self._active),
                "chains_started": self._chains_started,
                "chains_completed": self._chains_completed,
                "stages_done": self._stages_done,
                "retries": self._retries,
            }
