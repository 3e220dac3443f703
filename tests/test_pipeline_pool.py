"""Tests for concurrent pipeline runs."""

from __future__ import annotations

import threading
from pathlib import Path

from patchline.pipeline import PipelineConfig, PipelinePool
from patchline.schemas import PipelineMode, RunStatus, TaskRequest

PLAN = {"plan": [{"step": 1, "file": "a.py", "action": "modify"}]}
IMPLEMENTED = {"changes": [{"file": "a.py", "action": "modified"}]}


def _request(path: Path) -> TaskRequest:
    return TaskRequest(prompt="tweak", workspace_path=str(path), pipeline_mode=PipelineMode.FAST)


def test_runs_independent_tasks_concurrently(make_gateway, tmp_path: Path) -> None:
    barrier = threading.Barrier(2, timeout=5)

    def _plan(prompt, options):
        barrier.wait()
        return PLAN

    gw = make_gateway(PlanResult=[_plan, _plan], ImplementerResult=[IMPLEMENTED, IMPLEMENTED])
    ws_a, ws_b = tmp_path / "a", tmp_path / "b"
    ws_a.mkdir()
    ws_b.mkdir()

    with PipelinePool(gw, PipelineConfig(max_concurrent_runs=2)) as pool:
        futures = [pool.submit(_request(ws_a)), pool.submit(_request(ws_b))]
        results = [f.result(timeout=10) for f in futures]

    assert [r.status for r in results] == [RunStatus.DONE, RunStatus.DONE]
    assert results[0].task_id != results[1].task_id
    assert pool.active_count == 0


def test_cancel_stops_running_task(make_gateway, tmp_path: Path) -> None:
    started = threading.Event()
    release = threading.Event()

    def _plan(prompt, options):
        started.set()
        release.wait(5)
        return PLAN

    gw = make_gateway(PlanResult=[_plan], ImplementerResult=[IMPLEMENTED])
    pool = PipelinePool(gw, PipelineConfig(max_concurrent_runs=1))
    try:
        future = pool.submit(_request(tmp_path))
        assert started.wait(5)
        assert pool.cancel(future) is True
        release.set()
        result = future.result(timeout=10)
    finally:
        pool.shutdown()

    assert result.status == RunStatus.CANCELLED
    assert "ImplementerResult" not in gw.stage_calls()


def test_cancel_queued_task(make_gateway, tmp_path: Path) -> None:
    release = threading.Event()

    def _plan(prompt, options):
        release.wait(5)
        return PLAN

    gw = make_gateway(PlanResult=[_plan], ImplementerResult=[IMPLEMENTED])
    pool = PipelinePool(gw, PipelineConfig(max_concurrent_runs=1))
    try:
        first = pool.submit(_request(tmp_path))
        second = pool.submit(_request(tmp_path))
        assert pool.cancel(second) is True
        assert second.cancelled()
        release.set()
        assert first.result(timeout=10).status == RunStatus.DONE
    finally:
        pool.shutdown()
