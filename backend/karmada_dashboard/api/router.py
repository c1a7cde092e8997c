from fastapi import APIRouter, Depends

from karmada_dashboard.api.routes import (
    aggregated,
    auth,
    backup,
    cloudcredentials,
    clusters,
    keycloak,
    member,
    mgmt,
    overview,
    settings,
    terminal,
    users,
)
from karmada_dashboard.core.auth import get_current_user

# Public router (no auth required): login, Keycloak callbacks and the terminals,
# which authenticate their WebSocket themselves
public_router = APIRouter(prefix="/api/v1")
public_router.include_router(auth.router)
public_router.include_router(keycloak.router)
public_router.include_router(terminal.router)

# Secure router: all endpoints require authentication
api_router = APIRouter(prefix="/api/v1", dependencies=[Depends(get_current_user)])
api_router.include_router(users.router)
api_router.include_router(settings.router)
api_router.include_router(clusters.router)
api_router.include_router(overview.router)
api_router.include_router(aggregated.router)
api_router.include_router(mgmt.router)
api_router.include_router(member.router)
api_router.include_router(cloudcredentials.router)
api_router.include_router(backup.router)
