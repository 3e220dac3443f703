"""Run independent pipeline tasks concurrently on a bounded thread pool."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from patchline.gateway import AgentGateway
from patchline.pipeline.config import PipelineConfig
from patchline.pipeline.orchestrator import PipelineOrchestrator
from patchline.schemas import PipelineRunResult, TaskRequest

logger = logging.getLogger(__name__)


class PipelinePool:
    """Execute many :class:`TaskRequest` runs, each on its own orchestrator.

    Stages inside one run stay sequential; concurrency is only across runs,
    and each run is expected to use its own workspace checkout.
    """

    def __init__(
        self,
        gateway: AgentGateway,
        config: PipelineConfig | None = None,
        log_callback: Callable[[str, str], None] | None = None,
    ) -> None:
        self.gateway = gateway
        self.config = config or PipelineConfig()
        self._log_callback = log_callback
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_concurrent_runs,
            thread_name_prefix="patchline-run",
        )
        self._lock = threading.Lock()
        self._active: dict[Future[PipelineRunResult], PipelineOrchestrator] = {}

    def submit(self, request: TaskRequest) -> Future[PipelineRunResult]:
        orchestrator = PipelineOrchestrator(self.gateway, self.config, self._log_callback)
        future = self._executor.submit(orchestrator.run, request)
        with self._lock:
            self._active[future] = orchestrator
        future.add_done_callback(self._forget)
        logger.info("Queued pipeline run (mode=%s)", request.pipeline_mode.value)
        return future

    def cancel(self, future: Future[PipelineRunResult]) -> bool:
        """Cancel a queued run, or stop it if it is already running."""
        if future.cancel():
            return True
        with self._lock:
            orchestrator = self._active.get(future)
        if orchestrator is None:
            return False
        orchestrator.stop()
        return True

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def shutdown(self, *, cancel_running: bool = False, wait: bool = True) -> None:
        if cancel_running:
            with self._lock:
                orchestrators = list(self._active.values())
            for orchestrator in orchestrators:
                orchestrator.stop()
        self._executor.shutdown(wait=wait, cancel_futures=cancel_running)

    def __enter__(self) -> PipelinePool:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def _forget(self, future: Future[PipelineRunResult]) -> None:
        with self._lock:
            self._active.pop(future, None)
