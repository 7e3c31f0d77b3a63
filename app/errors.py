"""Error taxonomy shared by the adapters, the chat pipeline and the API layer.

Every error carries a ``user_message`` that is safe to show to a shopper.
"""


class AssistantError(Exception):
    user_message = "Sorry, something went wrong. Please try again."

    def __init__(self, message: str | None = None, user_message: str | None = None):
        super().__init__(message or user_message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class MessageValidationError(AssistantError):
    user_message = "Message is required"


# --- Replica (AI backend) failures ---

class UpstreamError(AssistantError):
    user_message = "Sorry, I'm having trouble connecting right now. Please try again in a moment."


class UpstreamTimeout(UpstreamError):
    user_message = "The request timed out. The AI service might be busy. Please try again."


class UpstreamAuth(UpstreamError):
    user_message = "Authentication error. Please try logging out and back in."


class UpstreamRateLimit(UpstreamError):
    user_message = "Too many requests. Please wait a moment before trying again."


class UpstreamNetwork(UpstreamError):
    user_message = "Unable to connect to the AI service. Please check your internet connection and try again."


class ChatFailedError(AssistantError):
    """Terminal failure of a chat turn; ``user_message`` holds the apology."""


# --- Storage and catalog ---

class StorageError(AssistantError):
    user_message = "Sorry, we could not load your conversation. Please try again."


class CartItemNotFound(StorageError):
    user_message = "Cart item not found"


class EmptyCartError(StorageError):
    user_message = "Cart is empty"


class CatalogError(AssistantError):
    user_message = "Product search is temporarily unavailable."
