"""Decides whether the replica's reply should mutate the cart.

A structured ``action`` on the reply wins when the replica sends one. Otherwise
the reply text is scanned for confirmation phrases; false positives and misses
are part of the deal.
"""
import logging
from dataclasses import dataclass
from typing import Union

from app.models.schemas import AIReply, ProductRef
from app.services.intents import Intent

logger = logging.getLogger("shoppy.chat")

ADD_SIGNALS = (
    "added to cart", "successfully added", "cart updated", "added to your cart",
    "i'll add", "i will add", "adding to cart", "add another", "add to your cart",
    "great choice", "perfect", "enjoy your shopping", "enjoy your new",
    "\U0001f6d2", "✅", "✔",
)
# Each pair matches when both words appear anywhere in the reply.
ADD_SIGNAL_PAIRS = (
    ("add", "cart"),
    ("added", "collection"),
)
REMOVE_SIGNALS = (
    "removed", "deleted", "reduced", "updated", "changed", "modified",
    "kurangi", "hapus", "berkurang",
)


@dataclass(frozen=True)
class AddToCart:
    product: ProductRef
    quantity: int = 1


@dataclass(frozen=True)
class RemoveMostRecentCartItem:
    pass


@dataclass(frozen=True)
class RemoveNamedItem:
    product_name: str


@dataclass(frozen=True)
class NoOp:
    pass


Action = Union[AddToCart, RemoveMostRecentCartItem, RemoveNamedItem, NoOp]


def signals_add(reply_text: str) -> bool:
    text = reply_text.lower()
    if any(signal in text for signal in ADD_SIGNALS):
        return True
    return any(all(word in text for word in pair) for pair in ADD_SIGNAL_PAIRS)


def signals_removal(reply_text: str) -> bool:
    text = reply_text.lower()
    return any(signal in text for signal in REMOVE_SIGNALS)


class ReplyInterpreter:
    def interpret(
        self,
        intent: Intent | None,
        reply: AIReply,
        focus_product: ProductRef | None = None,
        quantity: int = 1,
    ) -> Action:
        if reply.action is not None:
            return self._from_structured(intent, reply, focus_product, quantity)

        if intent is Intent.PURCHASE_INTENT and reply.content:
            if not signals_add(reply.content):
                logger.info("Reply does not confirm the purchase")
                return NoOp()
            if focus_product is None:
                logger.info("Reply confirms a purchase but no product is in focus")
                return NoOp()
            return AddToCart(focus_product, quantity)

        if intent is Intent.CART_MANAGEMENT and reply.content and signals_removal(reply.content):
            return RemoveMostRecentCartItem()

        return NoOp()

    def _from_structured(
        self, intent: Intent | None, reply: AIReply, focus_product: ProductRef | None, quantity: int
    ) -> Action:
        action = reply.action
        if action.type == "add_to_cart" and intent is Intent.PURCHASE_INTENT and focus_product is not None:
            return AddToCart(focus_product, quantity)
        if action.type == "remove_from_cart" and intent is Intent.CART_MANAGEMENT:
            if action.product_name:
                return RemoveNamedItem(action.product_name)
            return RemoveMostRecentCartItem()
        return NoOp()
