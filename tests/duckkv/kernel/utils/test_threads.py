"""Tests for worker-thread helpers."""

import asyncio
import threading
import time

import pytest

from duckkv.kernel.utils.threads import run_to_completion


class TestRunToCompletion:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        assert await run_to_completion(sum, [1, 2, 3]) == 6

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        def boom():
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input"):
            await run_to_completion(boom)

    @pytest.mark.asyncio
    async def test_cancelled_caller_waits_for_thread(self):
        finished = threading.Event()
        abandoned = []

        def slow():
            time.sleep(0.2)
            finished.set()
            return "handle"

        task = asyncio.create_task(run_to_completion(slow, on_abandoned=abandoned.append))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert finished.is_set()
        assert abandoned == ["handle"]

    @pytest.mark.asyncio
    async def test_cancelled_caller_skips_abandon_hook_on_failure(self):
        abandoned = []

        def slow_failure():
            time.sleep(0.1)
            raise RuntimeError("engine down")

        task = asyncio.create_task(
            run_to_completion(slow_failure, on_abandoned=abandoned.append)
        )
        await asyncio.sleep(0.02)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert abandoned == []
