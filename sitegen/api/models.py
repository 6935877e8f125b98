import logging
from typing import Any

import httpx
from fastapi import APIRouter, Depends

from sitegen.api.deps import get_services
from sitegen.config import Settings
from sitegen.models import get_model_configs
from sitegen.workflow import Services


logger = logging.getLogger("sitegen.api.models")


router = APIRouter(prefix="/api/models", tags=["models"])


async def fetch_gateway_model_ids(settings: Settings) -> set[str]:
    """Model ids advertised by the gateway's /models listing."""
    url = f"{settings.gateway_base_url.rstrip('/')}/models"
    headers = {"Authorization": f"Bearer {settings.gateway_api_key}"}
    async with httpx.AsyncClient(timeout=15.0) as client:
        resp = await client.get(url, headers=headers)
        resp.raise_for_status()
        data = resp.json()
    return {str(m.get("id")) for m in (data.get("data") or []) if m.get("id")}


@router.get("")
async def list_models(services: Services = Depends(get_services)) -> dict[str, Any]:
    """Return the configured tiers.

    If gateway credentials are configured, only tiers whose model the gateway
    advertises are returned. Otherwise, or on any HTTP error, every tier is.
    """
    tiers = [
        {"tier": tier.value, **config.model_dump()} for tier, config in get_model_configs().items()
    ]
    result = {"models": tiers, "default": "auto"}

    if not services.settings.gateway_api_key:
        return result

    try:
        available_ids = await fetch_gateway_model_ids(services.settings)
    except httpx.HTTPError as e:
        logger.warning("gateway model listing failed: %s", e)
        return result

    intersected = [t for t in tiers if t["model"] in available_ids]
    return {"models": intersected or tiers, "default": "auto"}
