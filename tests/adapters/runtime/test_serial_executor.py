from __future__ import annotations

import asyncio

import pytest

from bracketdesk.adapters.runtime.serial_executor import SerialExecutor


def test_jobs_run_in_submission_order() -> None:
    async def _scenario() -> list[str]:
        executor = SerialExecutor()
        executor.start()
        seen: list[str] = []
        executor.submit(seen.append, "quote")
        executor.submit(seen.append, "fill")
        result = await executor.call(lambda: seen.append("command") or len(seen))
        await executor.stop()
        return seen + [str(result)]

    assert asyncio.run(_scenario()) == ["quote", "fill", "command", "3"]


def test_call_propagates_job_errors() -> None:
    async def _scenario() -> None:
        executor = SerialExecutor()
        executor.start()

        def _fail() -> None:
            raise ValueError("bad price")

        try:
            await executor.call(_fail)
        finally:
            await executor.stop()

    with pytest.raises(ValueError, match="bad price"):
        asyncio.run(_scenario())


def test_failed_submitted_job_does_not_stop_the_queue() -> None:
    async def _scenario() -> list[int]:
        executor = SerialExecutor()
        executor.start()
        seen: list[int] = []
        executor.submit(lambda: 1 / 0)
        executor.submit(seen.append, 1)
        await executor.drain()
        running = executor.running
        await executor.stop()
        seen.append(int(running))
        return seen

    assert asyncio.run(_scenario()) == [1, 1]


def test_call_before_start_is_rejected() -> None:
    async def _scenario() -> None:
        await SerialExecutor().call(lambda: None)

    with pytest.raises(RuntimeError, match="not started"):
        asyncio.run(_scenario())
