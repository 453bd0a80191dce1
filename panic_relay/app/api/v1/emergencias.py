"""
FastAPI route: emergency alert relay.

    POST /api/emergencias                    — submit an alert to contacts
    GET  /api/emergencias/{telefono}         — received + sent alerts of a user
    PUT  /api/emergencias/finalizar/{id}     — mark an alert finished

Store and push clients are blocking, so handlers hand the work to the
thread pool and await it.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from panic_relay.app.alerts.alert_service import FINALIZED_MESSAGE, AlertService
from panic_relay.app.api.schemas import (
    AlertListResponse,
    EmergencyRequest,
    EmergencyResponse,
    FinalizeResponse,
)

router = APIRouter(prefix="/api/emergencias", tags=["emergencias"])


def get_alert_service(request: Request) -> AlertService:
    """Dependency: the service built during application startup."""
    return request.app.state.alert_service


@router.post(
    "",
    response_model=EmergencyResponse,
    summary="Send an emergency alert",
    description=(
        "Normalizes the sender and contact numbers, stores one alert copy per "
        "registered contact plus a summary for the sender, and pushes a "
        "notification to each contact with a registered device."
    ),
)
async def create_emergency(
    body: EmergencyRequest,
    service: AlertService = Depends(get_alert_service),
):
    result = await run_in_threadpool(
        service.create_alert,
        sender_phone=body.senderPhone,
        contacts=body.contacts,
        sender_name=body.senderName,
        message=body.message,
        location=body.location,
    )
    return result.to_dict()


@router.get(
    "/{telefono}",
    response_model=AlertListResponse,
    summary="List alerts for a phone number",
)
async def list_emergencies(
    telefono: str,
    service: AlertService = Depends(get_alert_service),
):
    listing = await run_in_threadpool(service.list_alerts, telefono)
    return listing.to_dict()


@router.put(
    "/finalizar/{alert_id}",
    response_model=FinalizeResponse,
    summary="Finalize an alert",
    description="Sets every copy of the alert (sender and recipients) to 'finalizada'.",
)
async def finalize_emergency(
    alert_id: str,
    service: AlertService = Depends(get_alert_service),
):
    await run_in_threadpool(service.finalize_alert, alert_id)
    return FinalizeResponse(message=FINALIZED_MESSAGE)
