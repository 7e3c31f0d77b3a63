import aiosqlite
import httpx
import pytest

from app.errors import (
    ChatFailedError,
    MessageValidationError,
    UpstreamAuth,
    UpstreamNetwork,
    UpstreamRateLimit,
    UpstreamTimeout,
)
from app.models import database as db
from app.models.schemas import AIReply, ReplyAction
from app.services.chat import (
    ChatOrchestrator,
    SessionResolutionPolicy,
    resolve_session,
    user_message_for,
)
from app.services.shopify import ShopifyClient
from conftest import FakeCatalog, FakeReplica, make_product


def orchestrator_for(db_path, replica, catalog=None):
    return ChatOrchestrator(
        db_path,
        catalog=catalog or FakeCatalog(),
        replica=replica,
        replica_id="replica-1",
        store_domain="shop.example.com",
    )


async def session_with_product(db_path, user_id="u1", product=None):
    session = await db.create_session(db_path, user_id)
    await db.append_message(db_path, session.id, "user", "do you have tees?")
    await db.append_message(
        db_path, session.id, "assistant", "Check out this tee", products=[product or make_product()]
    )
    return session


@pytest.mark.asyncio
async def test_buy_without_product_in_focus_asks_to_specify(db_path):
    replica = FakeReplica(["Which product would you like?", "Which product would you like?"])
    chat = orchestrator_for(db_path, replica)

    result = await chat.handle_chat_message("u1", "I want to buy this", is_new_chat=True)

    assert "Ask user to specify which product" in replica.prompts[0]
    assert result.message == "Which product would you like?"
    assert await db.cart_items(db_path, "u1") == []
    messages = await db.get_messages(db_path, result.session_id)
    assert [(m.role, m.content) for m in messages] == [
        ("user", "I want to buy this"),
        ("assistant", "Which product would you like?"),
    ]


@pytest.mark.asyncio
async def test_confirmed_purchase_adds_focus_product_to_cart(db_path):
    session = await session_with_product(db_path)
    replica = FakeReplica(["Great choice! I've added it to your cart."])
    chat = orchestrator_for(db_path, replica)

    result = await chat.handle_chat_message("u1", "yes add it", session_id=session.id)

    assert result.session_id == session.id
    assert result.is_new_session is False
    (item,) = await db.cart_items(db_path, "u1")
    assert (item.product_id, item.quantity, item.total) == ("p1", 1, 20.0)
    assert item.product_url == "https://shop.example.com/products/tee"
    assert "Product: Tee" in replica.prompts[0]
    assert "Assistant: Check out this tee" in replica.prompts[0]


@pytest.mark.asyncio
async def test_purchase_not_confirmed_leaves_cart_alone(db_path):
    session = await session_with_product(db_path)
    replica = FakeReplica(["Which size do you need?"])

    await orchestrator_for(db_path, replica).handle_chat_message("u1", "yes add it", session_id=session.id)

    assert await db.cart_items(db_path, "u1") == []


@pytest.mark.asyncio
async def test_purchase_quantity_from_message(db_path):
    session = await session_with_product(db_path)
    replica = FakeReplica(["Added to cart!"])

    await orchestrator_for(db_path, replica).handle_chat_message(
        "u1", "ok, 3 pieces please", session_id=session.id
    )

    (item,) = await db.cart_items(db_path, "u1")
    assert (item.quantity, item.total) == (3, 60.0)


@pytest.mark.asyncio
async def test_cart_removal_drops_most_recent_item(db_path):
    await db.upsert_cart_item(db_path, "u1", "A", "Tee", 20.0)
    await db.upsert_cart_item(db_path, "u1", "B", "Mug", 5.0)
    replica = FakeReplica(["Done, I removed it from your cart."])

    await orchestrator_for(db_path, replica).handle_chat_message("u1", "remove the tee please")

    assert [item.product_name for item in await db.cart_items(db_path, "u1")] == ["Tee"]
    assert "Current cart items: 2" in replica.prompts[0]


@pytest.mark.asyncio
async def test_structured_removal_targets_named_item(db_path):
    await db.upsert_cart_item(db_path, "u1", "A", "Tee", 20.0)
    await db.upsert_cart_item(db_path, "u1", "B", "Mug", 5.0)
    reply = AIReply(content="Done.", action=ReplyAction(type="remove_from_cart", product_name="tee"))

    await orchestrator_for(db_path, FakeReplica([reply])).handle_chat_message("u1", "delete the tee")

    assert [item.product_name for item in await db.cart_items(db_path, "u1")] == ["Mug"]


@pytest.mark.asyncio
async def test_product_search_attaches_products(db_path):
    tee, mug = make_product(), make_product("p2", "Mug", "8", "mug")
    catalog = FakeCatalog([tee, mug])
    replica = FakeReplica(["Here are two picks."])

    result = await orchestrator_for(db_path, replica, catalog).handle_chat_message(
        "u1", "can you recommend a gift under $30", is_new_chat=True
    )

    assert catalog.queries == ["can you recommend a gift under $30"]
    assert result.shopify_products == [tee, mug]
    assert "[PRODUCT SEARCH RESULTS - 2 products found:]" in replica.prompts[0]
    assert "1. **Tee** - $20.00" in replica.prompts[0]
    messages = await db.get_messages(db_path, result.session_id)
    assert messages[-1].shopify_products == [tee, mug]
    assert messages[0].shopify_products is None


@pytest.mark.asyncio
async def test_follow_up_search_uses_conversation_keyword(db_path):
    session = await db.create_session(db_path, "u1")
    await db.append_message(db_path, session.id, "assistant", "Here are some t-shirts you might like")
    catalog = FakeCatalog()

    await orchestrator_for(db_path, FakeReplica(), catalog).handle_chat_message(
        "u1", "anything else?", session_id=session.id
    )

    assert catalog.queries == ["t-shirt anything else?"]


@pytest.mark.asyncio
async def test_catalog_failure_falls_back_to_plain_prompt(db_path):
    replica = FakeReplica(["Let me help another way."])
    chat = orchestrator_for(db_path, replica, FakeCatalog(fail=True))

    result = await chat.handle_chat_message("u1", "recommend something", is_new_chat=True)

    assert result.message == "Let me help another way."
    assert result.shopify_products is None
    assert "search temporarily unavailable" in replica.prompts[0]
    assert "storefront down" not in result.message


@pytest.mark.asyncio
async def test_plain_chat_forwards_message_with_context(db_path):
    session = await db.create_session(db_path, "u1")
    await db.append_message(db_path, session.id, "user", "hi")
    await db.append_message(db_path, session.id, "assistant", "hello!")
    replica = FakeReplica()

    await orchestrator_for(db_path, replica).handle_chat_message("u1", "thanks", session_id=session.id)

    (prompt,) = replica.prompts
    assert prompt.startswith("thanks\n\n[CONVERSATION CONTEXT")
    assert "[SYSTEM DATA" not in prompt
    assert prompt.endswith("Remember what the user was previously discussing.]")


@pytest.mark.asyncio
async def test_new_chat_prompt_is_bare_message(db_path):
    replica = FakeReplica()
    await orchestrator_for(db_path, replica).handle_chat_message("u1", "good morning", is_new_chat=True)
    assert replica.prompts == ["good morning"]


@pytest.mark.asyncio
async def test_response_shape(db_path):
    result = await orchestrator_for(db_path, FakeReplica(["Hi!"])).handle_chat_message("u1", "hello")

    payload = result.model_dump(by_alias=True, exclude_none=True)
    assert set(payload) == {"success", "message", "sessionId", "timestamp", "isNewSession"}
    assert payload["success"] is True
    assert payload["isNewSession"] is True


@pytest.mark.asyncio
async def test_empty_message_is_rejected_before_any_call(db_path):
    replica = FakeReplica()
    with pytest.raises(MessageValidationError):
        await orchestrator_for(db_path, replica).handle_chat_message("u1", "   ")
    assert replica.prompts == []
    assert await db.list_sessions(db_path, "u1") == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, expected",
    [
        (UpstreamTimeout("slow"), "timed out"),
        (UpstreamAuth("401"), "logging out and back in"),
        (UpstreamRateLimit("429"), "Too many requests"),
        (UpstreamNetwork("boom"), "Unable to connect"),
    ],
)
async def test_replica_failure_maps_to_apology_and_saves_nothing(db_path, error, expected):
    chat = orchestrator_for(db_path, FakeReplica(error=error))

    with pytest.raises(ChatFailedError) as excinfo:
        await chat.handle_chat_message("u1", "hello", is_new_chat=True)

    assert expected in excinfo.value.user_message
    (session,) = await db.list_sessions(db_path, "u1")
    assert await db.get_messages(db_path, session.id) == []
    usage = await db.list_api_usage(db_path)
    assert usage[0]["endpoint"] == "chat" and usage[0]["success"] is False


def test_user_message_for_untyped_errors():
    assert "timed out" in user_message_for(RuntimeError("connect timeout"))
    assert "logging out" in user_message_for(RuntimeError("HTTP 401 Unauthorized"))
    assert "Too many requests" in user_message_for(RuntimeError("rate limit hit"))
    assert "internet connection" in user_message_for(RuntimeError("fetch failed"))
    assert "trouble connecting" in user_message_for(RuntimeError("weird"))


@pytest.mark.asyncio
async def test_message_save_failure_is_swallowed(db_path, monkeypatch):
    async def broken_append(*args, **kwargs):
        raise aiosqlite.OperationalError("disk I/O error")

    monkeypatch.setattr(db, "append_message", broken_append)
    result = await orchestrator_for(db_path, FakeReplica(["Hi!"])).handle_chat_message("u1", "hello")

    assert result.success is True
    assert result.message == "Hi!"


@pytest.mark.asyncio
async def test_replica_user_created_once(db_path):
    replica = FakeReplica()
    chat = orchestrator_for(db_path, replica)

    await chat.handle_chat_message("u1", "hello")
    await chat.handle_chat_message("u1", "hello again")

    assert len(replica.created_users) == 1
    assert replica.created_users[0].startswith("customer_u1_")
    endpoints = [row["endpoint"] for row in await db.list_api_usage(db_path)]
    assert endpoints.count("create_user") == 1
    assert endpoints.count("chat") == 2


# --- session resolution ---

@pytest.mark.asyncio
async def test_new_chat_always_creates_distinct_session(db_path):
    chat = orchestrator_for(db_path, FakeReplica())
    first = await chat.handle_chat_message("u1", "hello", is_new_chat=True)
    second = await chat.handle_chat_message("u1", "hello", is_new_chat=True, session_id=first.session_id)

    assert second.session_id != first.session_id
    assert second.is_new_session is True


@pytest.mark.asyncio
async def test_exact_session_is_reused(db_path):
    session = await db.create_session(db_path, "u1")
    resolved, created = await resolve_session(db_path, "u1", SessionResolutionPolicy.REQUIRE_EXACT, session.id)
    assert (resolved.id, created) == (session.id, False)


@pytest.mark.asyncio
async def test_stale_or_foreign_session_id_heals_to_new_session(db_path):
    foreign = await db.create_session(db_path, "someone-else")
    resolved, created = await resolve_session(db_path, "u1", SessionResolutionPolicy.REQUIRE_EXACT, foreign.id)
    assert created is True
    assert resolved.id != foreign.id
    assert resolved.user_id == "u1"


@pytest.mark.asyncio
async def test_fallback_uses_latest_session_or_creates(db_path):
    policy = SessionResolutionPolicy.FALLBACK_TO_LATEST_OR_CREATE
    created_session, created = await resolve_session(db_path, "u1", policy)
    assert created is True

    again, created = await resolve_session(db_path, "u1", policy)
    assert (again.id, created) == (created_session.id, False)


def test_policy_for_request():
    assert SessionResolutionPolicy.for_request(True, "abc") is SessionResolutionPolicy.REQUIRE_NEW
    assert SessionResolutionPolicy.for_request(False, "abc") is SessionResolutionPolicy.REQUIRE_EXACT
    assert SessionResolutionPolicy.for_request(False, None) is SessionResolutionPolicy.FALLBACK_TO_LATEST_OR_CREATE


def storefront_returning(payload):
    return ShopifyClient(
        "shop.example.com",
        "token",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=payload)),
    )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"data": None},
        {"data": {"products": None}},
        {"data": {"products": {"edges": [{"node": {"id": "gid://shopify/Product/1"}}]}}},
        {"data": {"products": {"edges": [{"node": {
            "id": "gid://shopify/Product/1",
            "title": "Tee",
            "priceRange": {"minVariantPrice": {"amount": "free", "currencyCode": "USD"}},
        }}]}}},
    ],
)
async def test_malformed_storefront_payload_falls_back(db_path, payload):
    catalog = storefront_returning(payload)
    replica = FakeReplica(["Let me help another way."])

    result = await orchestrator_for(db_path, replica, catalog).handle_chat_message(
        "u1", "recommend something", is_new_chat=True
    )
    await catalog.close()

    assert result.message == "Let me help another way."
    assert result.shopify_products is None
    assert "search temporarily unavailable" in replica.prompts[0]
    assert len(await db.get_messages(db_path, result.session_id)) == 2


@pytest.mark.asyncio
async def test_catalog_failure_after_system_reply_still_sends_fallback(db_path):
    replica = FakeReplica(["You have not bought anything yet.", "Let me help another way."])
    chat = orchestrator_for(db_path, replica, FakeCatalog(fail=True))

    result = await chat.handle_chat_message("u1", "what did i buy? show me something similar", is_new_chat=True)

    assert len(replica.prompts) == 2
    assert "[SYSTEM DATA - PURCHASE HISTORY]" in replica.prompts[0]
    assert "search temporarily unavailable" in replica.prompts[1]
    assert "[SYSTEM DATA - PURCHASE HISTORY]" not in replica.prompts[1]
    assert result.message == "Let me help another way."


@pytest.mark.asyncio
async def test_products_in_response_use_camel_case(db_path):
    catalog = FakeCatalog([make_product()])
    result = await orchestrator_for(db_path, FakeReplica(), catalog).handle_chat_message(
        "u1", "recommend something", is_new_chat=True
    )

    (product,) = result.model_dump(by_alias=True, exclude_none=True)["shopifyProducts"]
    assert product["imageUrl"] == "https://cdn.example.com/tee.png"
    assert "image_url" not in product
