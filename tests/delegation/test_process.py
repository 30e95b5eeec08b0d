"""Tests for the process executor (binary profiles).

Child processes are real Python scripts run with sys.executable.
"""

import asyncio
import json
import sys
import textwrap
import time
from unittest.mock import AsyncMock, patch

import pytest

from kestrel_delegation.core.hooks import BINARY_AFTER_EXECUTE, BINARY_BEFORE_EXECUTE
from kestrel_delegation.core.settings import SecurityPolicy
from kestrel_delegation.delegation.executors.process import parse_output
from kestrel_delegation.delegation.types import (
    AgentProfileCreate,
    DelegationParams,
    DelegationStatus,
    ProfileType,
)

from tests.fakes import RecordingHooks

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals required")


def write_script(tmp_path, name: str, body: str) -> str:
    path = tmp_path / name
    path.write_text(textwrap.dedent(body))
    return str(path)


ECHO_SCRIPT = """
    import json, os, sys
    payload = json.loads(sys.stdin.readline())
    print(json.dumps({
        "result": "|".join([
            payload["task"],
            payload["context"] or "",
            str(payload["token_budget"]),
            os.environ.get("KD_FLAVOUR", ""),
        ])
    }))
"""


async def binary_profile(coordinator, script: str, name: str = "echo", **extra):
    return await coordinator.create_profile(
        AgentProfileCreate(
            name=name,
            type=ProfileType.BINARY,
            command=sys.executable,
            command_args=[script],
            max_token_budget=777,
            **extra,
        )
    )


class TestSecurityPolicy:
    """Binary profiles only run when the policy allows it."""

    @pytest.mark.asyncio
    async def test_disabled_policy_fails_without_spawning(self, make_coordinator, settings, tmp_path):
        coordinator = await make_coordinator(
            settings=settings.model_copy(
                update={"security": SecurityPolicy(allow_binary_agents=False)}
            )
        )
        await binary_profile(coordinator, write_script(tmp_path, "echo.py", ECHO_SCRIPT))

        with patch("asyncio.create_subprocess_exec", new=AsyncMock()) as spawn:
            result = await coordinator.delegate(DelegationParams(profile="echo", task="hi"))

        spawn.assert_not_called()
        assert result.status == DelegationStatus.FAILED
        assert "security policy" in result.error
        assert result.token_usage.total == 0


class TestExecution:
    """Successful and failing child processes."""

    @pytest.mark.asyncio
    async def test_payload_and_result(self, make_coordinator, tmp_path):
        hooks = RecordingHooks()
        coordinator = await make_coordinator(hook_emitter=hooks)
        await binary_profile(
            coordinator,
            write_script(tmp_path, "echo.py", ECHO_SCRIPT),
            command_env={"KD_FLAVOUR": "mint"},
        )

        result = await coordinator.delegate(
            DelegationParams(profile="echo", task="hello", context="ctx")
        )

        assert result.status == DelegationStatus.COMPLETED
        assert result.result == "hello|ctx|777|mint"
        assert result.token_usage.total == 0
        assert [event for event, _ in hooks.events] == [BINARY_BEFORE_EXECUTE, BINARY_AFTER_EXECUTE]
        assert hooks.events[0][1]["command"] == sys.executable
        assert hooks.events[1][1]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, make_coordinator, tmp_path):
        script = write_script(
            tmp_path,
            "fail.py",
            """
            import sys
            sys.stderr.write("bad things")
            sys.exit(3)
            """,
        )
        coordinator = await make_coordinator()
        await binary_profile(coordinator, script)

        result = await coordinator.delegate(DelegationParams(profile="echo", task="x"))

        assert result.status == DelegationStatus.FAILED
        assert result.error == "Binary exited with code 3: bad things"

    @pytest.mark.asyncio
    async def test_missing_executable(self, make_coordinator, tmp_path):
        coordinator = await make_coordinator()
        await coordinator.create_profile(
            AgentProfileCreate(
                name="ghost",
                type=ProfileType.BINARY,
                command=str(tmp_path / "does-not-exist"),
            )
        )

        result = await coordinator.delegate(DelegationParams(profile="ghost", task="x"))

        assert result.status == DelegationStatus.FAILED
        assert "Failed to start binary" in result.error

    @pytest.mark.asyncio
    async def test_failing_hooks_are_ignored(self, make_coordinator, tmp_path):
        coordinator = await make_coordinator(hook_emitter=RecordingHooks(fail=True))
        await binary_profile(coordinator, write_script(tmp_path, "echo.py", ECHO_SCRIPT))

        result = await coordinator.delegate(DelegationParams(profile="echo", task="hi"))

        assert result.status == DelegationStatus.COMPLETED

    def test_parse_output(self):
        assert parse_output(b'{"result": "plain"}\n') == "plain"
        assert json.loads(parse_output(b'{"answer": 42}')) == {"answer": 42}
        assert json.loads(parse_output(b'{"result": 7}')) == {"result": 7}
        assert parse_output(b"  just text \n") == "just text"


@posix_only
class TestTimeoutAndCancel:
    """Slow processes are killed and never hang the delegation."""

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, make_coordinator, store, tmp_path):
        script = write_script(tmp_path, "sleepy.py", "import time\ntime.sleep(30)\n")
        coordinator = await make_coordinator()
        await binary_profile(coordinator, script)

        started = time.monotonic()
        result = await coordinator.delegate(
            DelegationParams(profile="echo", task="x", timeout_ms=200)
        )

        assert time.monotonic() - started < 10
        assert result.status == DelegationStatus.TIMEOUT
        record = await store.get_delegation(result.delegation_id)
        assert record.status == DelegationStatus.TIMEOUT
        assert record.completed_at is not None

    @pytest.mark.asyncio
    async def test_sigterm_ignored_escalates_to_kill(self, make_coordinator, tmp_path):
        script = write_script(
            tmp_path,
            "stubborn.py",
            """
            import signal, sys, time
            signal.signal(signal.SIGTERM, signal.SIG_IGN)
            sys.stdout.write("ready\\n")
            sys.stdout.flush()
            time.sleep(30)
            """,
        )
        coordinator = await make_coordinator()
        await binary_profile(coordinator, script)

        started = time.monotonic()
        result = await coordinator.delegate(
            DelegationParams(profile="echo", task="x", timeout_ms=300)
        )

        assert time.monotonic() - started < 10
        assert result.status == DelegationStatus.TIMEOUT

    @pytest.mark.asyncio
    async def test_cancel_stops_process(self, make_coordinator, store, tmp_path):
        hooks = RecordingHooks()
        script = write_script(tmp_path, "sleepy.py", "import time\ntime.sleep(30)\n")
        coordinator = await make_coordinator(hook_emitter=hooks)
        await binary_profile(coordinator, script)

        task = asyncio.create_task(coordinator.delegate(DelegationParams(profile="echo", task="x")))
        for _ in range(200):
            if hooks.events:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.1)
        delegation_id = coordinator.list_active()[0].delegation_id

        assert await coordinator.cancel(delegation_id) is True
        result = await asyncio.wait_for(task, timeout=10)

        assert result.status == DelegationStatus.CANCELLED
        record = await store.get_delegation(delegation_id)
        assert record.status == DelegationStatus.CANCELLED
        assert hooks.events[-1][1]["status"] == "cancelled"
