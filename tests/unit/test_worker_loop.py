from __future__ import annotations

import asyncio
import threading
from concurrent.futures import Future

from plangate.core.runtime.workers import WorkerLoop


def test_worker_runs_coroutines_off_the_calling_thread():
    worker = WorkerLoop()

    async def where() -> int:
        await asyncio.sleep(0)
        return threading.get_ident()

    try:
        fut = worker.submit(where())
        assert isinstance(fut, Future)
        assert fut.result(timeout=5) != threading.get_ident()
        assert worker.running is True
    finally:
        worker.stop()
    assert worker.running is False


def test_stop_cancels_pending_work():
    worker = WorkerLoop()
    fut = worker.submit(asyncio.sleep(60))
    worker.stop()
    assert fut.cancelled() or fut.done()


def test_worker_can_restart_after_stop():
    worker = WorkerLoop()

    async def answer() -> int:
        return 42

    assert worker.submit(answer()).result(timeout=5) == 42
    worker.stop()
    assert worker.submit(answer()).result(timeout=5) == 42
    worker.stop()


def test_run_bridges_a_foreign_loop_onto_the_worker():
    worker = WorkerLoop()

    async def where() -> tuple[int, bool]:
        return threading.get_ident(), worker.owns_current_loop()

    async def caller() -> tuple[tuple[int, bool], bool]:
        return await worker.run(where()), worker.owns_current_loop()

    try:
        (ident, inside), outside = asyncio.run(caller())
        assert ident != threading.get_ident()
        assert inside is True
        assert outside is False
        assert worker.submit(worker.run(where())).result(timeout=5)[1] is True
    finally:
        worker.stop()
    assert worker.owns_current_loop() is False
