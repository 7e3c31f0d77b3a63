import logging
import time
from datetime import datetime, timezone
from enum import Enum

import aiosqlite

from app.errors import (
    AssistantError,
    CatalogError,
    ChatFailedError,
    MessageValidationError,
    StorageError,
    UpstreamAuth,
    UpstreamError,
    UpstreamNetwork,
    UpstreamRateLimit,
    UpstreamTimeout,
)
from app.models import database as db
from app.models.schemas import AIReply, ChatSession, ChatTurnResult, ProductRef
from app.services.context import AssembledContext, ContextAssembler
from app.services.intents import (
    Intent,
    classify,
    extract_link,
    matched_phrases,
    product_keyword,
)
from app.services.interpreter import (
    Action,
    AddToCart,
    RemoveMostRecentCartItem,
    RemoveNamedItem,
    ReplyInterpreter,
)
from app.services.shopify import format_products_for_chat, product_url

logger = logging.getLogger("shoppy.chat")

SEARCH_INSTRUCTION = (
    "[SYSTEM: Based on the conversation context above and the product search results, provide "
    "a natural, contextual response. If this is a follow-up question like \"is there any other "
    "option\", acknowledge what was previously discussed and offer relevant alternatives or "
    "additional information about the products shown.]"
)
SEARCH_UNAVAILABLE_INSTRUCTION = (
    "[SYSTEM: Shopify search temporarily unavailable, provide general assistance based on "
    "conversation context]"
)
CONTEXT_INSTRUCTION = (
    "[SYSTEM: Use the conversation context above to provide relevant and contextual responses. "
    "Remember what the user was previously discussing.]"
)


class SessionResolutionPolicy(str, Enum):
    REQUIRE_NEW = "require_new"
    REQUIRE_EXACT = "require_exact"
    FALLBACK_TO_LATEST_OR_CREATE = "fallback_to_latest_or_create"

    @classmethod
    def for_request(cls, is_new_chat: bool, session_id: str | None) -> "SessionResolutionPolicy":
        if is_new_chat:
            return cls.REQUIRE_NEW
        if session_id:
            return cls.REQUIRE_EXACT
        return cls.FALLBACK_TO_LATEST_OR_CREATE


async def resolve_session(
    db_path: str,
    user_id: str,
    policy: SessionResolutionPolicy,
    session_id: str | None = None,
) -> tuple[ChatSession, bool]:
    """Find or create the session for this turn. Returns (session, created)."""
    session = None
    if policy is SessionResolutionPolicy.REQUIRE_EXACT and session_id:
        session = await db.find_session(db_path, user_id, session_id)
        if session is None:
            logger.warning("Session %s not found for user %s, starting a new one", session_id, user_id)
    elif policy is SessionResolutionPolicy.FALLBACK_TO_LATEST_OR_CREATE:
        logger.warning("No sessionId for a continuing chat, falling back to the latest session")
        session = await db.latest_session(db_path, user_id)

    if session is not None:
        return session, False
    session = await db.create_session(db_path, user_id)
    logger.info("Created chat session %s for user %s", session.id, user_id)
    return session, True


def user_message_for(error: Exception) -> str:
    """Pick the apology shown to the shopper for a failed replica call."""
    if isinstance(error, UpstreamError):
        return error.user_message
    text = str(error).lower()
    if "timed out" in text or "timeout" in text:
        return UpstreamTimeout.user_message
    if "401" in text or "unauthorized" in text:
        return UpstreamAuth.user_message
    if "429" in text or "rate limit" in text:
        return UpstreamRateLimit.user_message
    if "fetch failed" in text or "connection" in text:
        return UpstreamNetwork.user_message
    return UpstreamError.user_message


class ChatOrchestrator:
    """Runs one chat turn: session, intents, context, replica call, cart action, persistence."""

    def __init__(
        self,
        db_path: str,
        catalog,
        replica,
        replica_id: str,
        store_domain: str = "",
        search_limit: int = 5,
        assembler: ContextAssembler | None = None,
        interpreter: ReplyInterpreter | None = None,
    ):
        self.db_path = db_path
        self.catalog = catalog
        self.replica = replica
        self.replica_id = replica_id
        self.store_domain = store_domain
        self.search_limit = search_limit
        self.assembler = assembler or ContextAssembler(db_path)
        self.interpreter = interpreter or ReplyInterpreter()

    async def handle_chat_message(
        self,
        user_id: str,
        message: str,
        is_new_chat: bool = False,
        session_id: str | None = None,
    ) -> ChatTurnResult:
        message = (message or "").strip()
        if not message:
            raise MessageValidationError("Message is required")

        policy = SessionResolutionPolicy.for_request(is_new_chat, session_id)
        try:
            session, created = await resolve_session(self.db_path, user_id, policy, session_id)
        except aiosqlite.Error as exc:
            raise StorageError(f"could not resolve session for {user_id}: {exc}") from exc

        intents = classify(message)
        logger.info(
            "Intent analysis for user %s: %s (purchase phrases: %s, cart phrases: %s)",
            user_id,
            sorted(i.value for i in intents),
            matched_phrases("purchase", message),
            matched_phrases("cart_management", message),
        )

        # A session created for this turn has no history worth reading.
        context = await self._assemble(intents, user_id, session, message, is_new_chat or created)

        try:
            reply, products = await self._converse(user_id, message, intents, context, session, is_new_chat or created)
        except Exception as exc:
            logger.exception("Chat turn failed for user %s", user_id)
            await self._log_usage(user_id, "chat", {"message": message}, None, False, str(exc))
            raise ChatFailedError(str(exc), user_message=user_message_for(exc)) from exc

        await self._persist(session, message, reply, products)
        await self._log_usage(user_id, "chat", {"message": message}, reply.raw)

        return ChatTurnResult(
            message=reply.content,
            session_id=session.id,
            timestamp=datetime.now(timezone.utc).isoformat(),
            is_new_session=created,
            shopify_products=products or None,
        )

    async def replica_chat_history(self, user_id: str) -> list[dict]:
        """What the replica itself remembers of its conversations with this user."""
        try:
            replica_user = await self._replica_user(user_id)
            items = await self.replica.get_chat_history(self.replica_id, replica_user)
        except AssistantError as exc:
            logger.error("Error getting Sensay chat history for %s: %s", user_id, exc)
            await self._log_usage(user_id, "get_chat_history", {}, None, False, str(exc))
            raise
        await self._log_usage(user_id, "get_chat_history", {}, {"items": items})
        return items

    # -- Pipeline steps --

    async def _assemble(self, intents, user_id, session, message, is_new_chat) -> AssembledContext:
        try:
            return await self.assembler.assemble(intents, user_id, session, message, is_new_chat)
        except aiosqlite.Error:
            logger.exception("Error gathering system data for user %s", user_id)
            return AssembledContext()

    async def _converse(
        self,
        user_id: str,
        message: str,
        intents: frozenset[Intent],
        context: AssembledContext,
        session: ChatSession,
        is_new_chat: bool,
    ) -> tuple[AIReply, list[ProductRef]]:
        """Talk to the replica. Returns the final reply and any products shown."""
        replica_user = await self._replica_user(user_id)
        conversation = context.conversation_context_block
        reply = None
        products: list[ProductRef] = []
        mutated = False

        if context.system_action is not None:
            prompt = f"{message}{conversation}{context.system_context}"
            reply = await self.replica.chat(self.replica_id, replica_user, prompt)
            logger.info("Replica reply for %s: %.100s", context.system_action.value, reply.content)
            action = self.interpreter.interpret(
                context.system_action, reply, context.focus_product, context.requested_quantity
            )
            mutated = await self._apply(user_id, action)

        if Intent.PRODUCT_SEARCH in intents and not mutated:
            query = await self._search_query(message, intents, session, is_new_chat)
            try:
                products = list(await self.catalog.search_products(query, self.search_limit))
            except CatalogError:
                logger.exception("Error searching Shopify products for %r", query)
                products = []
                prompt = f"{message}{conversation}\n\n{SEARCH_UNAVAILABLE_INSTRUCTION}"
                reply = await self.replica.chat(self.replica_id, replica_user, prompt)
            else:
                prompt = (
                    f"{message}{conversation}\n\n"
                    f"[PRODUCT SEARCH RESULTS - {len(products)} products found:]\n"
                    f"{format_products_for_chat(products)}\n\n"
                    f"{SEARCH_INSTRUCTION}"
                )
                logger.info("Sending search prompt with %d products", len(products))
                reply = await self.replica.chat(self.replica_id, replica_user, prompt)

        if reply is None:
            prompt = f"{message}{conversation}"
            if conversation:
                prompt += f"\n\n{CONTEXT_INSTRUCTION}"
            reply = await self.replica.chat(self.replica_id, replica_user, prompt)

        return reply, products

    async def _search_query(self, message, intents, session, is_new_chat) -> str:
        """Prefix follow-ups ("show me more") with the product being talked about."""
        if Intent.FOLLOW_UP not in intents or is_new_chat:
            return message
        try:
            recent = await db.recent_messages(self.db_path, session.id, 10)
        except aiosqlite.Error:
            logger.exception("Could not read conversation for follow-up search")
            return message
        keyword = product_keyword(" ".join(m.content for m in recent))
        if keyword is None:
            return message
        logger.info("Enhanced follow-up search with context keyword %r", keyword)
        return f"{keyword} {message}"

    async def _apply(self, user_id: str, action: Action) -> bool:
        """Perform a cart mutation. Returns True when the cart changed."""
        try:
            if isinstance(action, AddToCart):
                product = action.product
                item, _ = await db.upsert_cart_item(
                    self.db_path,
                    user_id,
                    product_id=product.id,
                    product_name=product.title,
                    price=product.unit_price,
                    quantity=action.quantity,
                    description=product.description,
                    image_url=product.image_url,
                    product_url=product_url(self.store_domain, product),
                )
                logger.info("Added %s x%d to cart of %s (total %s)", product.title, action.quantity, user_id, item.total)
                return True

            if isinstance(action, (RemoveMostRecentCartItem, RemoveNamedItem)):
                items = await db.cart_items(self.db_path, user_id)
                if isinstance(action, RemoveNamedItem):
                    wanted = action.product_name.lower()
                    items = [item for item in items if wanted in item.product_name.lower()]
                if not items:
                    logger.info("No matching cart items to remove for %s", user_id)
                    return False
                # items are newest first
                await db.delete_cart_item(self.db_path, user_id, items[0].id)
                logger.info("Removed %s from cart of %s", items[0].product_name, user_id)
                return True
        except (aiosqlite.Error, ValueError, StorageError):
            logger.exception("Cart action %r failed for user %s", action, user_id)
        return False

    async def _persist(self, session: ChatSession, message: str, reply: AIReply, products: list[ProductRef]):
        try:
            await db.append_message(self.db_path, session.id, "user", message, link=extract_link(message))
            await db.append_message(
                self.db_path,
                session.id,
                "assistant",
                reply.content,
                products=products or None,
                raw_response=reply.raw,
            )
        except aiosqlite.Error:
            logger.exception("Error saving messages to session %s", session.id)
        try:
            await db.touch_session(self.db_path, session.id)
        except aiosqlite.Error:
            logger.exception("Error updating session %s timestamp", session.id)

    # -- Replica user and auditing --

    async def _replica_user(self, user_id: str) -> str:
        user = await db.ensure_user(self.db_path, user_id)
        if user["sensay_user_id"]:
            return user["sensay_user_id"]
        external_id = f"customer_{user_id}_{int(time.time() * 1000)}"
        try:
            sensay_user_id = await self.replica.create_user(external_id)
        except AssistantError as exc:
            await self._log_usage(user_id, "create_user", {"userId": user_id}, None, False, str(exc))
            raise
        await db.set_sensay_user_id(self.db_path, user_id, sensay_user_id)
        await self._log_usage(user_id, "create_user", {"userId": user_id}, {"id": sensay_user_id})
        return sensay_user_id

    async def _log_usage(self, user_id, endpoint, request_data, response_data, success=True, error_message=None):
        try:
            await db.log_api_usage(
                self.db_path, user_id, endpoint, request_data, response_data, success, error_message
            )
        except aiosqlite.Error:
            logger.exception("Error logging API usage")
