import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from voice_relay.errors import ProfileResolutionFailure
from voice_relay.models.conversation import DEFAULT_PROFILE
from voice_relay.services.profile_store import (
    InMemoryProfileStore,
    SupabaseProfileStore,
    profile_from_row,
    resolve_profile,
)

ROW = {
    "id": "a-1",
    "name": "Sales Bot",
    "system_prompt": "You are a sales agent.",
    "voice_id": "aura-orion-en",
    "temperature": 0.3,
    "max_tokens": 80,
    "first_message": "Hi, this is Sales Bot.",
}


def test_profile_from_row_maps_fields():
    profile = profile_from_row(ROW)
    assert profile.name == "Sales Bot"
    assert profile.voice_id == "aura-orion-en"
    assert profile.temperature == 0.3
    assert profile.max_reply_tokens == 80
    assert profile.opening_message == "Hi, this is Sales Bot."


def test_profile_from_row_fills_defaults():
    profile = profile_from_row({"name": "Bare"})
    assert profile.system_prompt == DEFAULT_PROFILE.system_prompt
    assert profile.voice_id == DEFAULT_PROFILE.voice_id
    assert profile.opening_message is None


def test_profile_from_row_rejects_invalid_values():
    with pytest.raises(ProfileResolutionFailure):
        profile_from_row({"name": "Hot", "temperature": 9})


@pytest.mark.asyncio
async def test_resolve_profile_demo_skips_store():
    store = AsyncMock()
    profile = await resolve_profile(store, "demo", "demo-user")
    assert profile is DEFAULT_PROFILE
    store.get_profile.assert_not_called()


@pytest.mark.asyncio
async def test_resolve_profile_from_store():
    store = InMemoryProfileStore({"a-1": ROW})
    profile = await resolve_profile(store, "a-1", "u-1")
    assert profile.name == "Sales Bot"


@pytest.mark.asyncio
async def test_resolve_profile_missing_row_uses_default():
    profile = await resolve_profile(InMemoryProfileStore(), "missing", "u-1")
    assert profile is DEFAULT_PROFILE


@pytest.mark.asyncio
async def test_resolve_profile_store_error_uses_default():
    store = AsyncMock()
    store.get_profile.side_effect = ProfileResolutionFailure("down")
    profile = await resolve_profile(store, "a-1", "u-1")
    assert profile is DEFAULT_PROFILE


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [RuntimeError("boom"), asyncio.TimeoutError(), KeyError("id")])
async def test_resolve_profile_unexpected_store_error_uses_default(error):
    store = AsyncMock()
    store.get_profile.side_effect = error
    profile = await resolve_profile(store, "a-1", "u-1")
    assert profile is DEFAULT_PROFILE


@pytest.mark.asyncio
async def test_resolve_profile_non_dict_row_uses_default():
    store = InMemoryProfileStore({"a-1": ["not", "a", "row"]})
    assert await resolve_profile(store, "a-1", "u-1") is DEFAULT_PROFILE


def test_profile_from_row_rejects_non_dict():
    with pytest.raises(ProfileResolutionFailure):
        profile_from_row("Sales Bot")


@pytest.mark.asyncio
async def test_resolve_profile_without_store():
    assert await resolve_profile(None, "a-1", "u-1") is DEFAULT_PROFILE


@pytest.mark.asyncio
async def test_supabase_store_queries_assistants_table():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=[ROW])

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    store = SupabaseProfileStore("https://project.supabase.test/", "service-key", client=client)

    row = await store.get_profile("a-1", "u-1")

    assert row == ROW
    request = requests[0]
    assert request.url.path == "/rest/v1/assistants"
    assert request.url.params["id"] == "eq.a-1"
    assert request.url.params["select"] == "*"
    assert request.headers["apikey"] == "service-key"
    assert request.headers["Authorization"] == "Bearer service-key"


@pytest.mark.asyncio
async def test_supabase_store_empty_result():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[])))
    store = SupabaseProfileStore("https://project.supabase.test", "key", client=client)
    assert await store.get_profile("a-1", "u-1") is None


@pytest.mark.asyncio
async def test_supabase_store_http_error_raises():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    store = SupabaseProfileStore("https://project.supabase.test", "key", client=client)
    with pytest.raises(ProfileResolutionFailure):
        await store.get_profile("a-1", "u-1")
