"""Database operations for provider configuration."""

import logging
import uuid

import aiosqlite

from chatstream.db.database import get_db
from chatstream.db.secrets import decrypt_secret, encrypt_secret
from chatstream.models.provider import Provider, ProviderCreate, ProviderKind, ProviderSummary

logger = logging.getLogger(__name__)


def _row_to_provider(row: aiosqlite.Row) -> Provider:
    """Convert a database row to a Provider, decrypting its API key."""
    return Provider(
        id=row["id"],
        name=row["name"],
        kind=ProviderKind(row["kind"]),
        base_url=row["base_url"],
        model=row["model"],
        api_key=decrypt_secret(row["api_key_encrypted"]),
        enabled=bool(row["enabled"]),
    )


def _row_to_summary(row: aiosqlite.Row) -> ProviderSummary:
    return ProviderSummary(
        id=row["id"],
        name=row["name"],
        kind=ProviderKind(row["kind"]),
        base_url=row["base_url"],
        model=row["model"],
        enabled=bool(row["enabled"]),
        has_api_key=bool(row["api_key_encrypted"]),
    )


async def list_providers() -> list[Provider]:
    """All providers, in creation order."""
    db = await get_db()
    cursor = await db.execute("SELECT * FROM providers ORDER BY created_at ASC, rowid ASC")
    rows = await cursor.fetchall()
    return [_row_to_provider(row) for row in rows]


async def list_provider_summaries() -> list[ProviderSummary]:
    """All providers without their API keys."""
    db = await get_db()
    cursor = await db.execute("SELECT * FROM providers ORDER BY created_at ASC, rowid ASC")
    rows = await cursor.fetchall()
    return [_row_to_summary(row) for row in rows]


async def get_provider(provider_id: str) -> Provider | None:
    db = await get_db()
    cursor = await db.execute("SELECT * FROM providers WHERE id = ?", [provider_id])
    row = await cursor.fetchone()
    if not row:
        return None
    return _row_to_provider(row)


async def save_provider(data: ProviderCreate) -> ProviderSummary:
    """Create or update a provider."""
    db = await get_db()
    provider_id = data.id or str(uuid.uuid4())

    await db.execute(
        """
        INSERT INTO providers (id, name, kind, base_url, model, api_key_encrypted, enabled)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name = excluded.name,
            kind = excluded.kind,
            base_url = excluded.base_url,
            model = excluded.model,
            api_key_encrypted = excluded.api_key_encrypted,
            enabled = excluded.enabled,
            updated_at = datetime('now')
        """,
        [
            provider_id,
            data.name,
            ProviderKind(data.kind).value,
            data.base_url,
            data.model,
            encrypt_secret(data.api_key),
            int(data.enabled),
        ],
    )
    await db.commit()
    logger.info(f"Saved provider {data.name} ({provider_id})")

    cursor = await db.execute("SELECT * FROM providers WHERE id = ?", [provider_id])
    row = await cursor.fetchone()
    return _row_to_summary(row)


async def replace_providers(providers: list[ProviderCreate]) -> list[ProviderSummary]:
    """Replace the whole provider list."""
    db = await get_db()
    await db.execute("DELETE FROM providers")
    await db.commit()
    return [await save_provider(p) for p in providers]


async def delete_provider(provider_id: str) -> bool:
    db = await get_db()
    cursor = await db.execute("DELETE FROM providers WHERE id = ?", [provider_id])
    await db.commit()
    return cursor.rowcount > 0
