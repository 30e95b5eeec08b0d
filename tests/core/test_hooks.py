"""Tests for the hook bus and safe emission."""

import pytest

from kestrel_delegation.core.hooks import BINARY_BEFORE_EXECUTE, HookBus, HookEmitter, emit_safely
from kestrel_delegation.core.result import Err, Ok


class TestHookBus:
    """Subscription management and emission results."""

    def test_bus_is_emitter(self):
        assert isinstance(HookBus(), HookEmitter)

    @pytest.mark.asyncio
    async def test_handlers_receive_event(self):
        bus = HookBus()
        seen = []

        async def handler(event):
            seen.append((event.event, event.data))

        bus.subscribe(BINARY_BEFORE_EXECUTE, handler)

        result = await bus.emit(BINARY_BEFORE_EXECUTE, {"delegation_id": "d1"})

        assert result == Ok(None)
        assert seen == [(BINARY_BEFORE_EXECUTE, {"delegation_id": "d1"})]

    @pytest.mark.asyncio
    async def test_emit_without_handlers(self):
        assert (await HookBus().emit("nobody:listens", {})).is_ok()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self):
        bus = HookBus()
        seen = []

        async def broken(event):
            raise RuntimeError("boom")

        async def healthy(event):
            seen.append(event.event)

        bus.subscribe("e", broken)
        bus.subscribe("e", healthy)

        result = await bus.emit("e", {})

        assert isinstance(result, Err)
        assert result.code == "HOOK_ERROR"
        assert "boom" in result.error
        assert seen == ["e"]

    def test_unsubscribe(self):
        bus = HookBus()

        async def handler(event):
            pass

        bus.subscribe("e", handler)

        assert bus.handler_count("e") == 1
        assert bus.unsubscribe("e", handler) is True
        assert bus.unsubscribe("e", handler) is False
        assert bus.handler_count("e") == 0


class TestEmitSafely:
    @pytest.mark.asyncio
    async def test_none_emitter_is_noop(self):
        await emit_safely(None, "e", {})

    @pytest.mark.asyncio
    async def test_raising_emitter_is_contained(self):
        class Exploding:
            async def emit(self, event, data):
                raise RuntimeError("emitter down")

        await emit_safely(Exploding(), "e", {})

    @pytest.mark.asyncio
    async def test_err_result_is_contained(self):
        class Refusing:
            async def emit(self, event, data):
                return Err("nope")

        await emit_safely(Refusing(), "e", {})
