from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# --- Catalog snapshot ---

class ProductRef(BaseModel):
    """A catalog product as it was shown to the user. Never refreshed."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    handle: str = ""
    title: str
    description: str = ""
    price: str = "0"
    currency: str = "USD"
    image_url: str | None = None

    @field_validator("price")
    @classmethod
    def price_is_numeric(cls, value: str) -> str:
        float(value)
        return value

    @property
    def unit_price(self) -> float:
        return float(self.price)


# --- Replica reply ---

class ReplyAction(BaseModel):
    type: str
    product_name: str | None = None


class AIReply(BaseModel):
    content: str
    raw: dict = Field(default_factory=dict)
    action: ReplyAction | None = None


# --- Session schemas ---

class ChatSession(BaseModel):
    id: str
    user_id: str
    created_at: str
    updated_at: str


class ChatMessage(BaseModel):
    id: int
    session_id: str
    role: str
    content: str
    timestamp: str
    link: str | None = None
    shopify_products: list[ProductRef] | None = None
    raw_response: dict | None = None


class SessionInfo(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    title: str
    last_message: str
    timestamp: str
    message_count: int


# --- Cart and purchases ---

class CartItem(BaseModel):
    id: str
    user_id: str
    product_id: str
    product_name: str
    description: str | None = None
    price: float
    quantity: int
    total: float
    image_url: str | None = None
    product_url: str | None = None
    created_at: str


class PurchaseRecord(BaseModel):
    id: int
    user_id: str
    product_id: str
    product_name: str
    description: str | None = None
    price: float
    quantity: int
    total: float
    image_url: str | None = None
    product_url: str | None = None
    order_id: str
    purchase_date: str
    status: str


class CartAddRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    product_id: str
    product_name: str
    description: str | None = None
    price: float = Field(gt=0)
    quantity: int = Field(default=1, ge=1)
    image_url: str | None = None
    product_url: str | None = None


class CartUpdateRequest(BaseModel):
    quantity: int = Field(ge=1)


# --- Chat schemas ---

class ChatRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str
    is_new_chat: bool = False
    session_id: str | None = None


class ChatTurnResult(BaseModel):
    """Payload returned to the routing layer for one chat turn."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    message: str
    session_id: str
    timestamp: str
    is_new_session: bool
    shopify_products: list[ProductRef] | None = None


class ProductSearchRequest(BaseModel):
    query: str
    limit: int = Field(default=5, ge=1, le=50)


class StorefrontCartAddRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    cart_id: str
    variant_id: str
    quantity: int = Field(default=1, ge=1)
