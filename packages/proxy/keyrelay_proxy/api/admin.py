"""Read-only admin routes exposing masked rotation, pool and usage status."""

from typing import Any

from fastapi import APIRouter, Depends

from keyrelay.relay import KeyRelay
from keyrelay_proxy.dependencies import get_relay

router = APIRouter()


@router.get("/keys")
async def key_status(relay: KeyRelay = Depends(get_relay)) -> dict[str, Any]:
    """Masked KeyStore snapshot."""
    return relay.key_status()


@router.get("/clients")
async def client_status(relay: KeyRelay = Depends(get_relay)) -> dict[str, Any]:
    """Credential pool statuses. Builds the pool on first call."""
    statuses = relay.pool_statuses()
    return {
        "total": len(statuses),
        "valid": sum(1 for s in statuses if s.is_valid),
        "clients": [s.model_dump(by_alias=True) for s in statuses],
    }


@router.get("/usage")
async def usage_status(relay: KeyRelay = Depends(get_relay)) -> dict[str, Any]:
    """Usage aggregated by masked key and by model."""
    return relay.usage_status()
