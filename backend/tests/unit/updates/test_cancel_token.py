"""
Unit tests for CancelToken and the cancellation error helpers.
"""

import asyncio

import pytest

from updates.errors import ContextCanceledError, RuntimeCallError, is_context_error
from updates.types import CancelToken


@pytest.mark.unit
class TestCancelToken:

    @pytest.mark.asyncio
    async def test_guard_returns_result(self):
        async def call():
            return 42

        assert await CancelToken().guard(call()) == 42

    @pytest.mark.asyncio
    async def test_guard_propagates_errors(self):
        async def call():
            raise RuntimeCallError("stop container", "boom")

        with pytest.raises(RuntimeCallError):
            await CancelToken().guard(call())

    @pytest.mark.asyncio
    async def test_guard_refuses_after_cancel(self):
        token = CancelToken()
        token.cancel("update canceled: shutting down")

        with pytest.raises(ContextCanceledError, match="shutting down"):
            await token.guard(asyncio.sleep(0))

    @pytest.mark.asyncio
    async def test_cancel_interrupts_running_call(self):
        token = CancelToken()
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(3600)

        guarded = asyncio.ensure_future(token.guard(slow()))
        await started.wait()
        token.cancel()

        with pytest.raises(ContextCanceledError):
            await guarded

    @pytest.mark.asyncio
    async def test_deadline(self):
        token = CancelToken(timeout=0.01)

        with pytest.raises(ContextCanceledError, match="deadline exceeded"):
            await token.sleep(3600)
        assert token.cancelled
        assert token.remaining() == 0.0

    def test_token_built_outside_loop_works_in_loop(self):
        token = CancelToken()

        async def run():
            ready = asyncio.Event()

            async def slow():
                ready.set()
                await asyncio.sleep(3600)

            guarded = asyncio.ensure_future(token.guard(slow()))
            await ready.wait()
            token.cancel()
            with pytest.raises(ContextCanceledError):
                await guarded

        asyncio.run(run())

    def test_remaining_without_deadline(self):
        assert CancelToken().remaining() is None

    def test_raise_if_cancelled(self):
        token = CancelToken()
        token.raise_if_cancelled()
        token.cancel()
        with pytest.raises(ContextCanceledError):
            token.raise_if_cancelled()


@pytest.mark.unit
class TestIsContextError:

    def test_context_errors(self):
        assert is_context_error(ContextCanceledError())
        assert is_context_error(asyncio.CancelledError())
        assert is_context_error(asyncio.TimeoutError())

    def test_other_errors(self):
        assert not is_context_error(RuntimeCallError("stop container", "x"))
        assert not is_context_error(ValueError())
        assert not is_context_error(None)
