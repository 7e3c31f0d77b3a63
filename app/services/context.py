"""Builds the text blocks that ride along with the user's message to the replica."""
import logging
from dataclasses import dataclass
from datetime import datetime

from app.models import database as db
from app.models.schemas import ChatMessage, ChatSession, ProductRef
from app.services.intents import Intent, extract_quantity, primary_system_action

logger = logging.getLogger("shoppy.chat")

SYSTEM_INSTRUCTION = (
    "[SYSTEM INSTRUCTION: Based on the system data above, provide a natural, conversational "
    "response. If this is a purchase intent, only add to cart if the user clearly wants to buy. "
    "If this is a history inquiry, provide helpful information about their purchase history. "
    "Make the conversation feel natural and human-like. Do not use hardcoded responses - be "
    "conversational and natural.]"
)


@dataclass(frozen=True)
class AssembledContext:
    system_data_block: str = ""
    conversation_context_block: str = ""
    focus_product: ProductRef | None = None
    requested_quantity: int = 1
    system_action: Intent | None = None

    @property
    def system_context(self) -> str:
        """System data followed by the closing instruction, or empty."""
        if not self.system_data_block:
            return ""
        return f"\n\n{self.system_data_block}\n\n{SYSTEM_INSTRUCTION}"


async def resolve_focus_product(db_path: str, session_id: str | None, limit: int = 10) -> ProductRef | None:
    """The product under discussion: the first product attached to the most
    recent assistant message that carries any."""
    if session_id is None:
        return None
    for message in await db.recent_messages(db_path, session_id, limit):
        if message.role == "assistant" and message.shopify_products:
            return message.shopify_products[0]
    return None


def _date(value: str) -> str:
    try:
        return datetime.fromisoformat(value).strftime("%m/%d/%Y")
    except ValueError:
        return value


def _money(value: float) -> str:
    return f"{value:g}" if float(value).is_integer() else f"{value:.2f}"


def format_conversation(messages: list[ChatMessage]) -> str:
    """Wrap chronological messages as ``Role: content`` lines."""
    if not messages:
        return ""
    lines = [f"\n\n[CONVERSATION CONTEXT - Last {len(messages)} messages for context:]"]
    for message in messages:
        role = "User" if message.role == "user" else "Assistant"
        lines.append(f"{role}: {message.content}")
    lines.append("[END CONTEXT]\n")
    return "\n".join(lines)


class ContextAssembler:
    def __init__(self, db_path: str, context_limit: int = 15, focus_scan_limit: int = 10, history_limit: int = 10):
        self.db_path = db_path
        self.context_limit = context_limit
        self.focus_scan_limit = focus_scan_limit
        self.history_limit = history_limit

    async def conversation_context(self, session: ChatSession | None, is_new_chat: bool) -> str:
        if is_new_chat or session is None:
            return ""
        recent = await db.recent_messages(self.db_path, session.id, self.context_limit)
        return format_conversation(list(reversed(recent)))

    async def assemble(
        self,
        intents: frozenset[Intent],
        user_id: str,
        session: ChatSession | None,
        message: str,
        is_new_chat: bool = False,
    ) -> AssembledContext:
        conversation = await self.conversation_context(session, is_new_chat)
        action = primary_system_action(intents)
        quantity = extract_quantity(message)
        if action is None:
            return AssembledContext(conversation_context_block=conversation, requested_quantity=quantity)

        focus = None
        session_id = None if is_new_chat or session is None else session.id
        if action in (Intent.PURCHASE_INTENT, Intent.SPECIFIC_PRODUCT_HISTORY_QUERY):
            focus = await resolve_focus_product(self.db_path, session_id, self.focus_scan_limit)

        if action is Intent.PURCHASE_INTENT:
            block = self._purchase_block(focus, quantity, message)
        elif action is Intent.SPECIFIC_PRODUCT_HISTORY_QUERY:
            block = await self._product_history_block(user_id, focus, message)
        elif action is Intent.PURCHASE_HISTORY_QUERY:
            block = await self._history_block(user_id)
        else:
            block = await self._cart_block(user_id)

        return AssembledContext(
            system_data_block=block,
            conversation_context_block=conversation,
            focus_product=focus,
            requested_quantity=quantity,
            system_action=action,
        )

    def _purchase_block(self, product: ProductRef | None, quantity: int, message: str) -> str:
        if product is None:
            return (
                "[SYSTEM DATA - PURCHASE INTENT DETECTED]\n"
                "No specific product found in conversation context.\n"
                f'User message: "{message}"\n'
                f"Detected quantity: {quantity}\n\n"
                "[SYSTEM ACTION: Ask user to specify which product they want to purchase]"
            )
        return (
            "[SYSTEM DATA - PURCHASE INTENT DETECTED]\n"
            f"Product: {product.title}\n"
            f"Quantity: {quantity}\n"
            f"Price: {product.price} {product.currency}\n"
            f"Description: {product.description}\n"
            f"Product ID: {product.id}\n"
            f"Handle: {product.handle}\n\n"
            "[SYSTEM ACTION AVAILABLE: Add to cart automatically if user confirms purchase intent]"
        )

    async def _history_block(self, user_id: str) -> str:
        purchases = await db.purchase_history(self.db_path, user_id, limit=self.history_limit)
        if not purchases:
            return (
                "[SYSTEM DATA - PURCHASE HISTORY]\n"
                "No purchase history found for this user.\n\n"
                "[SYSTEM ACTION: Encourage user to start shopping]"
            )
        lines = [
            f"{index}. Product: {p.product_name}, Quantity: {p.quantity}, "
            f"Date: {_date(p.purchase_date)}, Price: {_money(p.price)}"
            for index, p in enumerate(purchases, start=1)
        ]
        return (
            "[SYSTEM DATA - PURCHASE HISTORY]\n"
            f"Total purchases: {len(purchases)}\n"
            "Recent purchases:\n"
            + "\n".join(lines)
            + "\n\n[SYSTEM ACTION: Provide natural response about user's purchase history]"
        )

    async def _product_history_block(self, user_id: str, product: ProductRef | None, message: str) -> str:
        if product is None:
            return (
                "[SYSTEM DATA - SPECIFIC PRODUCT HISTORY]\n"
                "No specific product found in conversation context.\n"
                f'User message: "{message}"\n\n'
                "[SYSTEM ACTION: Ask user to specify which product they want to check]"
            )
        purchases = await db.purchase_history(self.db_path, user_id, product_name=product.title)
        if not purchases:
            return (
                "[SYSTEM DATA - SPECIFIC PRODUCT HISTORY]\n"
                f"Product: {product.title}\n"
                "Has been purchased: NO\n"
                "This would be their first time buying this item.\n\n"
                "[SYSTEM ACTION: Inform user they haven't purchased this product before]"
            )
        last = purchases[0]
        return (
            "[SYSTEM DATA - SPECIFIC PRODUCT HISTORY]\n"
            f"Product: {product.title}\n"
            "Has been purchased: YES\n"
            f"Total times purchased: {len(purchases)}\n"
            f"Total quantity bought: {sum(p.quantity for p in purchases)}\n"
            f"Last purchase date: {_date(last.purchase_date)}\n"
            f"Last purchase quantity: {last.quantity}\n\n"
            "[SYSTEM ACTION: Confirm that user has purchased this product before and provide details]"
        )

    async def _cart_block(self, user_id: str) -> str:
        items = await db.cart_items(self.db_path, user_id)
        if not items:
            return (
                "[SYSTEM DATA - CART MANAGEMENT]\n"
                "Cart is empty.\n\n"
                "[SYSTEM ACTION: Inform user that their cart is empty and suggest browsing products.]"
            )
        lines = [
            f"{index}. {item.product_name} - Quantity: {item.quantity}, "
            f"Price: ${_money(item.price)}, Total: ${_money(item.total)}"
            for index, item in enumerate(items, start=1)
        ]
        return (
            "[SYSTEM DATA - CART MANAGEMENT]\n"
            f"Current cart items: {len(items)}\n"
            f"Total cart value: ${_money(sum(item.total for item in items))}\n"
            "Cart contents:\n"
            + "\n".join(lines)
            + "\n\n[SYSTEM ACTION: Provide natural response about cart contents. If user wants to "
            "remove/reduce items, ask for confirmation and provide options.]"
        )
