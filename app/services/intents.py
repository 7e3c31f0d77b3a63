"""Keyword-driven intent detection for incoming chat messages.

Matching is case-insensitive substring matching, so "pesan" also covers
"pesanan" and "order" covers "ordering". The short affirmatives in
``WHOLE_WORD_PHRASES`` are the exception: they match on word boundaries so
that "ok" does not fire on "looking".
"""
import re
from enum import Enum
from types import MappingProxyType


class Intent(str, Enum):
    PRODUCT_SEARCH = "product_search"
    PURCHASE_INTENT = "purchase_intent"
    PURCHASE_HISTORY_QUERY = "purchase_history_query"
    SPECIFIC_PRODUCT_HISTORY_QUERY = "specific_product_history_query"
    CART_MANAGEMENT = "cart_management"
    FOLLOW_UP = "follow_up"
    PLAIN_CHAT = "plain_chat"


# Highest priority first. Only the first one present drives the system-data block.
SYSTEM_ACTION_INTENTS = (
    Intent.PURCHASE_INTENT,
    Intent.SPECIFIC_PRODUCT_HISTORY_QUERY,
    Intent.PURCHASE_HISTORY_QUERY,
    Intent.CART_MANAGEMENT,
)

PHRASES = MappingProxyType({
    "specific_search": (
        "show me", "tampilkan", "cari yang", "search for", "find me",
        "dengan budget", "with budget", "harga", "price range", "under", "di bawah",
        "beli sekarang", "buy now", "add to cart", "tambah ke keranjang",
        "rekomendasi", "recommend", "suggest", "pilihkan", "i want to buy",
        "looking for with", "need something with", "budget of", "around",
    ),
    "detailed_requirement": (
        "untuk", "for", "gaming", "photography", "business", "budget",
        "range", "style", "work", "daily", "professional",
    ),
    "consultation_answer": (
        "mainly", "mostly", "prefer", "important", "need it for",
    ),
    "follow_up": (
        "is there any other", "are there any other", "any other option", "any other choice",
        "what else", "anything else", "other options", "other choices", "alternatives",
        "show me more", "more options", "different", "another", "else",
        "how about", "what about", "can you show", "do you have",
        "any more", "more of", "similar", "like this", "comparable",
    ),
    "purchase": (
        "i want to buy", "i want to order", "i want to purchase", "i want to get",
        "i would like to buy", "i would like to order", "i would like to purchase",
        "i need to buy", "i need to order", "i need to purchase",
        "saya ingin membeli", "saya ingin memesan", "saya ingin order",
        "saya mau beli", "saya mau pesan", "saya mau order",
        "beli", "pesan", "order", "ambil", "dapatkan",
        "add to cart", "tambah ke keranjang", "masukkan ke keranjang",
        "buy this", "order this", "purchase this", "get this",
        "i want this", "i want that", "i want it", "i want one",
        "i want the", "i want a", "i want an",
        "i'll take", "i'll get", "i'll buy", "i'll order",
        "i'll have", "i'll purchase", "i'll grab",
        "take this", "have this", "grab this",
        "yes", "sure", "okay", "ok", "alright", "deal",
        "add it", "put it in", "add to my cart",
    ),
    "history": (
        "have i bought", "have i purchased", "have i ordered", "did i buy", "did i purchase",
        "sudah pernah beli", "sudah pernah pesan", "sudah pernah order",
        "riwayat pembelian", "purchase history", "order history", "buying history",
        "what did i buy", "what have i bought", "my purchases", "my orders",
    ),
    "specific_history": (
        "have i bought this", "have i purchased this", "did i buy this", "did i purchase this",
        "sudah pernah beli ini", "sudah pernah pesan ini", "sudah pernah order ini",
        "pernah beli", "pernah pesan", "pernah order", "bought before", "purchased before",
    ),
    "cart_management": (
        "how much", "how many", "what's in my cart", "what is in my cart",
        "show my cart", "my cart", "cart items", "cart contents",
        "remove", "delete", "reduce", "decrease", "kurangi", "hapus",
        "i don't want", "i don't need", "cancel", "batal",
        "change quantity", "update quantity", "modify quantity",
    ),
})

# Used to sharpen follow-up searches ("show me more") with what was discussed.
PRODUCT_KEYWORDS = (
    "t-shirt", "shirt", "phone", "smartphone", "laptop", "computer",
    "shoes", "bag", "watch", "clothes", "electronics",
)

DETAILED_REQUIREMENT_MIN_LENGTH = 25

QUANTITY_PATTERN = re.compile(r"(\d+)\s*(buah|pieces?|items?|pcs?|unit|satuan)", re.IGNORECASE)
LINK_PATTERN = re.compile(r"https?://\S+")

# Substrings of too many ordinary words ("looking", "eyes", "ensure", "ideal").
WHOLE_WORD_PHRASES = frozenset({"ok", "yes", "sure", "deal"})


def _compile(phrases: tuple[str, ...]) -> re.Pattern:
    parts = []
    for phrase in phrases:
        escaped = re.escape(phrase.lower())
        parts.append(rf"\b{escaped}\b" if phrase in WHOLE_WORD_PHRASES else escaped)
    return re.compile("|".join(parts))


_MATCHERS = MappingProxyType({name: _compile(phrases) for name, phrases in PHRASES.items()})


def matches(group: str, message: str) -> bool:
    return _MATCHERS[group].search(message.lower()) is not None


def matched_phrases(group: str, message: str) -> list[str]:
    """The phrases of ``group`` found in ``message``. Used for logging."""
    lowered = message.lower()
    return [p for p in PHRASES[group] if _compile((p,)).search(lowered)]


def _is_answering_consultation(message: str) -> bool:
    lowered = message.lower()
    if matches("consultation_answer", message):
        return True
    if "$" in message and "-" in message:
        return True
    return bool(re.search(r"\brp\b", lowered)) and ("-" in message or "juta" in lowered)


def classify(message: str) -> frozenset[Intent]:
    """Map a message to its intent tags. Never returns an empty set."""
    intents = set()
    if matches("purchase", message):
        intents.add(Intent.PURCHASE_INTENT)
    if matches("history", message):
        intents.add(Intent.PURCHASE_HISTORY_QUERY)
    if matches("specific_history", message):
        intents.add(Intent.SPECIFIC_PRODUCT_HISTORY_QUERY)
    if matches("cart_management", message):
        intents.add(Intent.CART_MANAGEMENT)

    is_follow_up = matches("follow_up", message)
    if is_follow_up:
        intents.add(Intent.FOLLOW_UP)

    has_detailed_requirements = (
        len(message) > DETAILED_REQUIREMENT_MIN_LENGTH and matches("detailed_requirement", message)
    )
    if (
        matches("specific_search", message)
        or has_detailed_requirements
        or _is_answering_consultation(message)
        or is_follow_up
    ):
        intents.add(Intent.PRODUCT_SEARCH)

    if not intents:
        intents.add(Intent.PLAIN_CHAT)
    return frozenset(intents)


def primary_system_action(intents: frozenset[Intent]) -> Intent | None:
    """The system-action intent that takes precedence, if any."""
    for intent in SYSTEM_ACTION_INTENTS:
        if intent in intents:
            return intent
    return None


def extract_quantity(message: str) -> int:
    """'add 3 pieces to cart' -> 3. Defaults to 1."""
    match = QUANTITY_PATTERN.search(message)
    if match is None:
        return 1
    return max(int(match.group(1)), 1)


def extract_link(message: str) -> str | None:
    match = LINK_PATTERN.search(message)
    return match.group(0) if match else None


def product_keyword(text: str) -> str | None:
    """First known product keyword mentioned in ``text``."""
    lowered = text.lower()
    for keyword in PRODUCT_KEYWORDS:
        if keyword in lowered:
            return keyword
    return None
