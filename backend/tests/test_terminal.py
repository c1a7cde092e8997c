import asyncio
import json
from unittest.mock import AsyncMock, Mock, patch

import pytest
from fastapi import WebSocketDisconnect
from kubernetes.stream.ws_client import RESIZE_CHANNEL

from karmada_dashboard.exceptions import BadRequestError
from karmada_dashboard.services import terminal
from karmada_dashboard.services.terminal import (
    MGMT_CLUSTER,
    TerminalService,
    TerminalSession,
    bridge,
    node_shell_pod,
    nsenter_command,
)


def test_node_shell_pod_is_privileged_on_the_node():
    pod = node_shell_pod("worker-1")
    assert pod.metadata.name.startswith("node-shell-worker-1-")
    assert pod.spec.node_name == "worker-1"
    assert pod.spec.host_pid and pod.spec.host_network
    assert pod.spec.containers[0].security_context.privileged


def test_nsenter_targets_host_init():
    assert nsenter_command("/bin/sh")[:3] == ["nsenter", "--target", "1"]
    assert nsenter_command("/bin/sh")[-1] == "/bin/sh"


async def test_session_forwards_stdin_and_resize():
    stream = Mock()
    session = TerminalSession(stream, pod="web-0")

    await session.handle({"operation": "stdin", "data": "ls\n"})
    await session.handle({"operation": "resize", "rows": 40, "cols": 120})
    await session.handle({"operation": "ping"})

    stream.write_stdin.assert_called_once_with("ls\n")
    channel, payload = stream.write_channel.call_args.args
    assert channel == RESIZE_CHANNEL
    assert json.loads(payload) == {"Width": 120, "Height": 40}


async def test_session_rejects_unknown_operations():
    with pytest.raises(ValueError):
        await TerminalSession(Mock()).handle({"operation": "exec"})


async def test_session_read():
    stream = Mock()
    stream.is_open.return_value = True
    stream.peek_stdout.return_value = True
    stream.read_stdout.return_value = "out"
    stream.peek_stderr.return_value = True
    stream.read_stderr.return_value = "err"
    session = TerminalSession(stream)
    assert await session.read() == "outerr"

    stream.is_open.return_value = False
    assert await session.read() is None


async def test_api_client_selection():
    clients = Mock(management=AsyncMock(return_value="mgmt"), member=AsyncMock(return_value="member"))
    service = TerminalService(clients)
    assert await service.api_client(MGMT_CLUSTER) == "mgmt"
    assert await service.api_client("member1") == "member"
    clients.member.assert_awaited_once_with("member1")
    with pytest.raises(BadRequestError):
        await service.api_client("")


async def test_pod_shell_requires_pod():
    service = TerminalService(Mock())
    with pytest.raises(BadRequestError):
        await service.pod_shell("member1", "default", "")


async def _wait_forever():
    await asyncio.Event().wait()


class _Socket:
    def __init__(self, receive):
        self.receive_text = receive
        self.send_json = AsyncMock()
        self.close = AsyncMock()


async def test_bridge_collects_a_failed_output_stream():
    stream = Mock()
    stream.is_open.side_effect = RuntimeError("exec stream broke")
    websocket = _Socket(_wait_forever)

    with patch.object(terminal, "logger") as logger:
        await bridge(websocket, TerminalSession(stream, pod="web-0"))

    websocket.close.assert_awaited_once()
    stream.close.assert_called_once()
    event, = logger.warning.call_args.args
    assert event == "terminal.stream_error"
    assert logger.warning.call_args.kwargs["error"] == "exec stream broke"


async def test_bridge_ends_when_the_client_leaves():
    stream = Mock()
    stream.is_open.return_value = True
    stream.peek_stdout.return_value = False
    stream.peek_stderr.return_value = False
    websocket = _Socket(AsyncMock(side_effect=WebSocketDisconnect()))

    with patch.object(terminal, "logger") as logger:
        await bridge(websocket, TerminalSession(stream))

    stream.close.assert_called_once()
    logger.warning.assert_not_called()
