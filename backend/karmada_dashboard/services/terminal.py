"""Interactive shells in pods and on nodes, bridged to a browser WebSocket.

Client messages are JSON ``{"operation": "stdin"|"resize"|"ping", "data", "rows", "cols"}``;
output is sent back as ``{"operation": "stdout", "data": ...}``.
"""
from __future__ import annotations

import asyncio
import json
import secrets
import string
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from fastapi import WebSocket, WebSocketDisconnect
from kubernetes import client
from kubernetes.client import ApiClient
from kubernetes.client.exceptions import ApiException
from kubernetes.stream import stream
from kubernetes.stream.ws_client import RESIZE_CHANNEL

from karmada_dashboard.exceptions import BadRequestError, NotFoundError
from karmada_dashboard.services.kube_client import ClientManager

logger = structlog.get_logger(__name__)

MGMT_CLUSTER = "mgmt-cluster"
NODE_SHELL_NAMESPACE = "default"
NODE_SHELL_IMAGE = "ubuntu"
NODE_SHELL_CONTAINER = "shell"
POD_START_TIMEOUT_SECONDS = 60
READ_TIMEOUT_SECONDS = 1


def _suffix(length: int = 5) -> str:
    return "".join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(length))


def node_shell_pod(node: str) -> client.V1Pod:
    """Privileged pod on ``node`` sharing the host namespaces, used as an nsenter jump box."""
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=f"node-shell-{node}-{_suffix()}", namespace=NODE_SHELL_NAMESPACE),
        spec=client.V1PodSpec(
            node_name=node,
            host_pid=True,
            host_ipc=True,
            host_network=True,
            restart_policy="Never",
            tolerations=[client.V1Toleration(operator="Exists")],
            containers=[
                client.V1Container(
                    name=NODE_SHELL_CONTAINER,
                    image=NODE_SHELL_IMAGE,
                    command=["sleep", "3600"],
                    security_context=client.V1SecurityContext(privileged=True),
                    stdin=True,
                    tty=True,
                )
            ],
        ),
    )


def nsenter_command(shell: str) -> list[str]:
    return ["nsenter", "--target", "1", "--mount", "--uts", "--ipc", "--net", "--pid", "--", shell]


class TerminalSession:
    """Wraps the exec WebSocket of the Kubernetes client (a blocking object) for use from asyncio."""

    def __init__(self, exec_stream: Any, pod: str = "") -> None:
        self._stream = exec_stream
        self.pod = pod

    @property
    def is_open(self) -> bool:
        return bool(self._stream.is_open())

    def _read(self) -> str | None:
        if not self._stream.is_open():
            return None
        self._stream.update(timeout=READ_TIMEOUT_SECONDS)
        out = ""
        if self._stream.peek_stdout():
            out += self._stream.read_stdout()
        if self._stream.peek_stderr():
            out += self._stream.read_stderr()
        return out

    async def read(self) -> str | None:
        """Pending output, ``""`` when there is none yet, ``None`` once the process has exited."""
        return await asyncio.to_thread(self._read)

    async def handle(self, message: dict[str, Any]) -> None:
        op = message.get("operation")
        if op == "stdin":
            await asyncio.to_thread(self._stream.write_stdin, message.get("data", ""))
        elif op == "resize":
            size = json.dumps({"Width": int(message.get("cols") or 0), "Height": int(message.get("rows") or 0)})
            await asyncio.to_thread(self._stream.write_channel, RESIZE_CHANNEL, size)
        elif op == "ping":
            return
        else:
            raise ValueError(f"unknown message type: {op}")

    def close(self) -> None:
        self._stream.close()


async def bridge(websocket: WebSocket, session: TerminalSession) -> None:
    """Copy output to the socket and socket messages to the shell until either side ends."""

    async def _pump() -> None:
        while True:
            data = await session.read()
            if data is None:
                return
            if data:
                await websocket.send_json({"operation": "stdout", "data": data})

    pump = asyncio.create_task(_pump())
    receive: asyncio.Task | None = None
    try:
        while not pump.done():
            receive = asyncio.create_task(websocket.receive_text())
            done, _ = await asyncio.wait({receive, pump}, return_when=asyncio.FIRST_COMPLETED)
            if receive not in done:
                await websocket.close()
                break
            try:
                await session.handle(json.loads(receive.result()))
            except (ValueError, TypeError) as exc:
                await websocket.send_json({"operation": "stdout", "data": f"Error: {exc}\r\n"})
    except WebSocketDisconnect:
        logger.info("terminal.client_gone")
    finally:
        tasks = [t for t in (pump, receive) if t is not None]
        for task in tasks:
            task.cancel()
        for result in await asyncio.gather(*tasks, return_exceptions=True):
            if isinstance(result, Exception) and not isinstance(result, WebSocketDisconnect):
                logger.warning("terminal.stream_error", pod=session.pod, error=str(result))
        await asyncio.to_thread(session.close)


class TerminalService:
    def __init__(self, clients: ClientManager) -> None:
        self.clients = clients

    async def api_client(self, cluster: str) -> ApiClient:
        if not cluster:
            raise BadRequestError(f"invalid cluster name: {cluster}")
        if cluster == MGMT_CLUSTER:
            return await self.clients.management()
        return await self.clients.member(cluster)

    async def _exec(self, api_client: ApiClient, namespace: str, pod: str, container: str, command: list[str]) -> TerminalSession:
        # exec swaps the request function of its ApiClient, so it must not share the cached one
        core = client.CoreV1Api(ApiClient(configuration=api_client.configuration))

        def _open() -> Any:
            return stream(
                core.connect_get_namespaced_pod_exec,
                name=pod,
                namespace=namespace,
                container=container,
                command=command,
                stderr=True,
                stdin=True,
                stdout=True,
                tty=True,
                _preload_content=False,
            )

        return TerminalSession(await self.clients.run(_open), pod=pod)

    async def pod_shell(self, cluster: str, namespace: str, pod: str, container: str | None = None, shell: str = "/bin/bash") -> TerminalSession:
        if not namespace or not pod:
            raise BadRequestError("namespace and pod parameters are required")
        api_client = await self.api_client(cluster)
        core = client.CoreV1Api(api_client)
        try:
            obj = await self.clients.run(core.read_namespaced_pod, pod, namespace)
        except ApiException as exc:
            if exc.status == 404:
                raise NotFoundError(f"pod {namespace}/{pod} not found") from exc
            raise
        names = [c.name for c in obj.spec.containers or []]
        if not names:
            raise BadRequestError(f"pod {namespace}/{pod} has no containers")
        container = container or names[0]
        if container not in names:
            raise BadRequestError(f"container {container} not found in pod {namespace}/{pod}")
        logger.info("terminal.pod_shell", cluster=cluster, namespace=namespace, pod=pod, container=container)
        return await self._exec(api_client, namespace, pod, container, [shell])

    async def node_shell(self, cluster: str, node: str, shell: str = "/bin/bash") -> tuple[TerminalSession, Callable[[], Awaitable[None]]]:
        """Start the jump pod, wait for it and exec into the host namespaces.

        Returns the session and a coroutine function that removes the pod.
        """
        if not node or not cluster:
            raise BadRequestError("node and cluster parameters are required")
        api_client = await self.api_client(cluster)
        core = client.CoreV1Api(api_client)
        pod = node_shell_pod(node)
        name = pod.metadata.name
        await self.clients.run(core.create_namespaced_pod, NODE_SHELL_NAMESPACE, pod)
        logger.info("terminal.node_shell_pod_created", cluster=cluster, node=node, pod=name)

        async def _cleanup() -> None:
            try:
                await self.clients.run(core.delete_namespaced_pod, name, NODE_SHELL_NAMESPACE)
                logger.info("terminal.node_shell_pod_deleted", pod=name)
            except ApiException as exc:
                logger.error("terminal.node_shell_pod_delete_failed", pod=name, error=str(exc))

        try:
            await self.clients.run(self._wait_running, core, name)
            session = await self._exec(api_client, NODE_SHELL_NAMESPACE, name, NODE_SHELL_CONTAINER, nsenter_command(shell))
        except Exception:
            await _cleanup()
            raise
        return session, _cleanup

    @staticmethod
    def _wait_running(core: client.CoreV1Api, name: str, timeout: float = POD_START_TIMEOUT_SECONDS) -> None:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            pod = core.read_namespaced_pod(name, NODE_SHELL_NAMESPACE)
            phase = pod.status.phase if pod.status else None
            if phase in ("Failed", "Succeeded"):
                raise BadRequestError(f"pod terminated with phase {phase}")
            if phase == "Running" and any(s.name == NODE_SHELL_CONTAINER and s.ready for s in pod.status.container_statuses or []):
                return
            time.sleep(1)
        raise BadRequestError(f"pod {name} not running in time")
