"""API routes for monitored services.

Endpoints:
  GET    /api/services                 — list services with current status
  POST   /api/services                 — add a service (admin)
  GET    /api/services/{id}            — service detail + status
  DELETE /api/services/{id}            — delete service and its history (admin)
  POST   /api/services/{id}/reset      — drop history, back to "unknown" (admin)
  POST   /api/services/{id}/check      — probe right now (admin)
  GET    /api/services/{id}/outcomes   — probe history, newest first
  GET    /api/services/{id}/events     — state changes (incidents), newest first
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request

from src.api.auth import require_admin
from src.health.errors import NotFoundError, ValidationError
from src.health.monitor import Monitor

logger = logging.getLogger(__name__)

service_router = APIRouter(prefix="/services", tags=["services"])


# ── Helper ───────────────────────────────────────────────────────────────

def _get_monitor(request: Request) -> Monitor:
    return request.app.state.monitor  # type: ignore[no-any-return]


def _not_found(e: NotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(e))


# ── Endpoints ────────────────────────────────────────────────────────────

@service_router.get("")
def list_services(request: Request) -> list[dict[str, Any]]:
    """List all services with their current health state."""
    return [s.to_dict() for s in _get_monitor(request).list_services()]


@service_router.post("", dependencies=[Depends(require_admin)])
def add_service(request: Request, body: Any = Body(...)) -> dict[str, Any]:
    """Validate and add a service; its first probe fires immediately."""
    try:
        service_id = _get_monitor(request).add_service(body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.to_dict())
    return {"id": service_id}


@service_router.get("/{service_id}")
def get_service(service_id: str, request: Request) -> dict[str, Any]:
    try:
        return _get_monitor(request).get_service(service_id).to_dict()
    except NotFoundError as e:
        raise _not_found(e)


@service_router.delete("/{service_id}", dependencies=[Depends(require_admin)])
def delete_service(service_id: str, request: Request) -> dict[str, Any]:
    try:
        _get_monitor(request).delete_service(service_id)
    except NotFoundError as e:
        raise _not_found(e)
    return {"id": service_id}


@service_router.post("/{service_id}/reset", dependencies=[Depends(require_admin)])
def reset_service(service_id: str, request: Request) -> dict[str, Any]:
    try:
        _get_monitor(request).reset_service(service_id)
    except NotFoundError as e:
        raise _not_found(e)
    return {"id": service_id}


@service_router.post("/{service_id}/check", dependencies=[Depends(require_admin)])
async def check_service(service_id: str, request: Request) -> dict[str, Any]:
    """Trigger an immediate probe and return the updated service."""
    try:
        snapshot = await _get_monitor(request).check_service(service_id)
    except NotFoundError as e:
        raise _not_found(e)
    return snapshot.to_dict()


@service_router.get("/{service_id}/outcomes")
def list_outcomes(service_id: str, request: Request, limit: int | None = None) -> dict[str, Any]:
    try:
        outcomes = _get_monitor(request).list_outcomes(service_id, limit)
    except NotFoundError as e:
        raise _not_found(e)
    return {"id": service_id, "outcomes": [o.to_dict() for o in outcomes]}


@service_router.get("/{service_id}/events")
def list_events(service_id: str, request: Request, limit: int | None = None) -> dict[str, Any]:
    try:
        events = _get_monitor(request).list_events(service_id, limit)
    except NotFoundError as e:
        raise _not_found(e)
    return {"id": service_id, "events": [e.to_dict() for e in events]}
