"""Tests for provider storage and API key encryption."""

import pytest

from chatstream.db import provider_store
from chatstream.db.database import get_db
from chatstream.db.secrets import (
    SecretsError,
    decrypt_secret,
    encrypt_secret,
    reset_cipher,
    rotate_encryption_key,
)
from chatstream.models.provider import ProviderCreate


@pytest.fixture(autouse=True)
def fresh_cipher(monkeypatch):
    monkeypatch.setenv("SECRETS_KEY", "test-key")
    reset_cipher()
    yield
    reset_cipher()


def _create(**overrides) -> ProviderCreate:
    data = {
        "id": "prov-1",
        "name": "Local",
        "kind": "openai",
        "baseUrl": "http://upstream.test/v1",
        "model": "test-model",
        "apiKey": "sk-secret",
    }
    data.update(overrides)
    return ProviderCreate.model_validate(data)


class TestSecrets:
    def test_round_trip(self):
        token = encrypt_secret("sk-secret")
        assert token != "sk-secret"
        assert decrypt_secret(token) == "sk-secret"

    def test_wrong_key(self, monkeypatch):
        token = encrypt_secret("sk-secret")
        monkeypatch.setenv("SECRETS_KEY", "another-key")
        reset_cipher()

        with pytest.raises(SecretsError):
            decrypt_secret(token)

    def test_rotation(self, monkeypatch):
        token = encrypt_secret("sk-secret")
        rotated = rotate_encryption_key([token], "test-key", "new-key")

        monkeypatch.setenv("SECRETS_KEY", "new-key")
        reset_cipher()
        assert decrypt_secret(rotated[0]) == "sk-secret"


class TestProviderStore:
    """Tests for provider CRUD."""

    @pytest.mark.asyncio
    async def test_save_and_get(self):
        summary = await provider_store.save_provider(_create())

        assert summary.id == "prov-1"
        assert summary.has_api_key
        provider = await provider_store.get_provider("prov-1")
        assert provider.api_key == "sk-secret"
        assert provider.base_url == "http://upstream.test/v1"

    @pytest.mark.asyncio
    async def test_api_key_encrypted_at_rest(self):
        await provider_store.save_provider(_create())

        db = await get_db()
        cursor = await db.execute("SELECT api_key_encrypted FROM providers WHERE id = ?", ["prov-1"])
        row = await cursor.fetchone()
        assert row["api_key_encrypted"] != "sk-secret"
        assert decrypt_secret(row["api_key_encrypted"]) == "sk-secret"

    @pytest.mark.asyncio
    async def test_generated_id(self):
        summary = await provider_store.save_provider(_create(id=None))
        assert summary.id
        assert await provider_store.get_provider(summary.id) is not None

    @pytest.mark.asyncio
    async def test_update_existing(self):
        await provider_store.save_provider(_create())
        await provider_store.save_provider(_create(model="other-model", enabled=False))

        providers = await provider_store.list_providers()
        assert len(providers) == 1
        assert providers[0].model == "other-model"
        assert providers[0].enabled is False

    @pytest.mark.asyncio
    async def test_replace_and_delete(self):
        await provider_store.save_provider(_create())
        saved = await provider_store.replace_providers(
            [_create(id="a", name="A"), _create(id="b", name="B", kind="anthropic", baseUrl=None)]
        )

        assert [s.id for s in saved] == ["a", "b"]
        assert await provider_store.get_provider("prov-1") is None
        assert [s.kind for s in await provider_store.list_provider_summaries()] == [
            "openai",
            "anthropic",
        ]

        assert await provider_store.delete_provider("a")
        assert not await provider_store.delete_provider("a")
