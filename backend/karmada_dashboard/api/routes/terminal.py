from __future__ import annotations

import structlog
from fastapi import APIRouter, WebSocket
from kubernetes.client.exceptions import ApiException

from karmada_dashboard.config import get_settings
from karmada_dashboard.core.auth import CurrentUser, get_current_user_ws, member_client, require_admin
from karmada_dashboard.dependencies import (
    get_client_manager,
    get_cluster_service,
    get_fga_client,
    get_keycloak_client,
    get_terminal_service,
)
from karmada_dashboard.exceptions import AppException, api_exception_message
from karmada_dashboard.services.terminal import MGMT_CLUSTER, bridge

logger = structlog.get_logger(__name__)

# Authentication happens in the handlers: router dependencies cannot read a WebSocket's credentials.
router = APIRouter(tags=["terminal"])


async def _error(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"operation": "stdout", "data": f"Error: {message}\r\n"})
    await websocket.close()


async def _authorize(websocket: WebSocket, cluster: str) -> CurrentUser:
    keycloak = get_keycloak_client()
    user = await get_current_user_ws(websocket, keycloak, get_settings())
    if cluster == MGMT_CLUSTER:
        await require_admin(user, get_fga_client(), keycloak)
    elif cluster:
        await member_client(cluster, user, get_cluster_service(), get_fga_client(), get_client_manager())
    return user


@router.websocket("/terminal")
async def pod_terminal(websocket: WebSocket) -> None:
    params = websocket.query_params
    cluster = params.get("cluster", "")
    await websocket.accept()
    try:
        user = await _authorize(websocket, cluster)
        session = await get_terminal_service().pod_shell(
            cluster,
            params.get("namespace", ""),
            params.get("pod", ""),
            params.get("container") or None,
            params.get("shell") or "/bin/bash",
        )
    except AppException as exc:
        await _error(websocket, exc.message)
        return
    except ApiException as exc:
        await _error(websocket, api_exception_message(exc))
        return
    logger.info("terminal.session_started", username=user.username, cluster=cluster, pod=params.get("pod"))
    await bridge(websocket, session)


@router.websocket("/node-terminal")
async def node_terminal(websocket: WebSocket) -> None:
    params = websocket.query_params
    cluster = params.get("cluster", "")
    node = params.get("node", "")
    await websocket.accept()
    try:
        user = await _authorize(websocket, cluster)
        session, cleanup = await get_terminal_service().node_shell(cluster, node, params.get("shell") or "/bin/bash")
    except AppException as exc:
        await _error(websocket, exc.message)
        return
    except ApiException as exc:
        await _error(websocket, api_exception_message(exc))
        return
    logger.info("terminal.node_session_started", username=user.username, cluster=cluster, node=node)
    try:
        await websocket.send_json({"operation": "stdout", "data": f"Connected to node {node}, via pod {session.pod}\r\n"})
        await bridge(websocket, session)
    finally:
        await cleanup()
