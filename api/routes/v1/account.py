"""
api/routes/v1/account.py -- Endpoints protected by the trust gate.

Routes:
  GET /api/v1/account/identity  -- the Principal the gate attached to this request

Unlike /api/v1/auth/*, these paths are not public, so the trust gate has
already verified any bearer token by the time the handler runs.
require_principal only reads what the gate attached and turns its absence
into a 401.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import IdentityResponse
from auth.dependencies import require_principal
from auth.models import Principal

router = APIRouter()


@router.get("/account/identity", response_model=IdentityResponse)
async def identity(principal: Principal = Depends(require_principal)) -> IdentityResponse:
    return IdentityResponse(subject=principal.subject, authorities=list(principal.authorities))
