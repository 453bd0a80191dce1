"""
Pydantic schemas for the emergency alert API.

Field names follow the mobile client's JSON (camelCase request, Spanish
response keys), so no aliasing is needed.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class EmergencyRequest(BaseModel):
    """
    An alert submission from the panic button.

    ``contacts`` holds raw numbers as stored in the phone's address book;
    they are normalized server-side. ``location`` is stored verbatim.
    """
    senderName: Optional[str] = Field(None, examples=["Ana"])
    senderPhone: Optional[Union[str, int]] = Field(None, examples=["+56 9 1234 5678"])
    message: Optional[str] = Field(None, examples=["Necesito ayuda"])
    location: Optional[Any] = Field(
        None, examples=[{"lat": -33.4489, "lng": -70.6693}],
    )
    # Untyped entries: null or malformed numbers count as unregistered.
    contacts: Optional[List[Any]] = Field(
        None, examples=[["56912345679", "+56 9 8765 4321"]],
    )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class RecipientDetail(BaseModel):
    id: str
    nombre: str
    telefono: str


class EmergencyResponse(BaseModel):
    success: bool = True
    alertaId: Optional[str] = None
    registrados: int
    noRegistrados: int
    detalles: List[RecipientDetail]


class AlertListResponse(BaseModel):
    success: bool = True
    telefono: str
    recibidas: List[Dict[str, Any]]
    enviadas: List[Dict[str, Any]]


class FinalizeResponse(BaseModel):
    success: bool = True
    message: str
