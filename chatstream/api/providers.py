"""Provider configuration API. API keys are write-only."""

import logging

from fastapi import APIRouter, Depends

from chatstream.api.deps import require_user
from chatstream.chat.identity import UserIdentity
from chatstream.db import provider_store
from chatstream.errors import ChatError
from chatstream.models.provider import ProviderCreate, ProviderSummary

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/providers")
async def list_providers(
    user: UserIdentity = Depends(require_user),
) -> list[ProviderSummary]:
    """List configured providers."""
    return await provider_store.list_provider_summaries()


@router.put("/providers")
async def set_providers(
    providers: list[ProviderCreate],
    user: UserIdentity = Depends(require_user),
) -> list[ProviderSummary]:
    """Replace the provider list."""
    saved = await provider_store.replace_providers(providers)
    logger.info(f"User {user.id} replaced providers ({len(saved)} configured)")
    return saved


@router.delete("/providers/{provider_id}")
async def delete_provider(
    provider_id: str,
    user: UserIdentity = Depends(require_user),
) -> dict[str, str]:
    """Remove a provider."""
    if not await provider_store.delete_provider(provider_id):
        raise ChatError("not_found:api", "Provider not found")
    return {"status": "deleted", "id": provider_id}
