import uuid
import json
import time
from datetime import datetime, timezone
from pathlib import Path
import aiosqlite

from app.errors import CartItemNotFound, EmptyCartError
from app.models.schemas import (
    CartItem,
    ChatMessage,
    ChatSession,
    ProductRef,
    PurchaseRecord,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def init_db(db_path: str):
    """Create tables if they don't exist. Called once on app startup."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id              TEXT PRIMARY KEY,
                sensay_user_id  TEXT,
                created_at      TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS chat_sessions (
                id          TEXT PRIMARY KEY,
                user_id     TEXT NOT NULL,
                created_at  TEXT NOT NULL,
                updated_at  TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_sessions_user
                ON chat_sessions(user_id, updated_at);

            CREATE TABLE IF NOT EXISTS chat_messages (
                id                INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id        TEXT NOT NULL REFERENCES chat_sessions(id) ON DELETE CASCADE,
                role              TEXT NOT NULL,
                content           TEXT NOT NULL,
                link              TEXT,
                shopify_products  TEXT,
                raw_response      TEXT,
                timestamp         TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_session
                ON chat_messages(session_id, timestamp);

            CREATE TABLE IF NOT EXISTS cart_items (
                id            TEXT PRIMARY KEY,
                user_id       TEXT NOT NULL,
                product_id    TEXT NOT NULL,
                product_name  TEXT NOT NULL,
                description   TEXT,
                price         REAL NOT NULL,
                quantity      INTEGER NOT NULL CHECK (quantity >= 1),
                total         REAL NOT NULL,
                image_url     TEXT,
                product_url   TEXT,
                created_at    TEXT NOT NULL,
                UNIQUE (user_id, product_id)
            );

            CREATE TABLE IF NOT EXISTS purchase_history (
                id             INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id        TEXT NOT NULL,
                product_id     TEXT NOT NULL,
                product_name   TEXT NOT NULL,
                description    TEXT,
                price          REAL NOT NULL,
                quantity       INTEGER NOT NULL,
                total          REAL NOT NULL,
                image_url      TEXT,
                product_url    TEXT,
                order_id       TEXT NOT NULL,
                purchase_date  TEXT NOT NULL,
                status         TEXT NOT NULL DEFAULT 'completed'
            );

            CREATE INDEX IF NOT EXISTS idx_purchases_user
                ON purchase_history(user_id, purchase_date);

            CREATE TABLE IF NOT EXISTS api_usage (
                id             INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id        TEXT NOT NULL,
                endpoint       TEXT NOT NULL,
                request_data   TEXT,
                response_data  TEXT,
                success        INTEGER NOT NULL,
                error_message  TEXT,
                created_at     TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_usage_endpoint
                ON api_usage(endpoint, created_at);
        """)
        await db.commit()


# --- Users ---

async def ensure_user(db_path: str, user_id: str) -> dict:
    """Fetch a user row, inserting it on first sight."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        await db.execute(
            "INSERT OR IGNORE INTO users (id, created_at) VALUES (?, ?)",
            (user_id, _now()),
        )
        await db.commit()
        cursor = await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = await cursor.fetchone()
        return dict(row)


async def set_sensay_user_id(db_path: str, user_id: str, sensay_user_id: str):
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            "UPDATE users SET sensay_user_id = ? WHERE id = ?",
            (sensay_user_id, user_id),
        )
        await db.commit()


async def list_users(db_path: str) -> list[dict]:
    """All known users, newest first, with how many chat sessions each has."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            """
            SELECT u.id, u.sensay_user_id, u.created_at, COUNT(s.id) AS session_count
            FROM users u
            LEFT JOIN chat_sessions s ON s.user_id = u.id
            GROUP BY u.id
            ORDER BY u.created_at DESC
            """
        )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]


# --- Session CRUD ---

def _session(row) -> ChatSession:
    return ChatSession(
        id=row["id"],
        user_id=row["user_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


async def create_session(db_path: str, user_id: str) -> ChatSession:
    """Create a new chat session owned by ``user_id``."""
    now = _now()
    session_id = str(uuid.uuid4())
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            "INSERT INTO chat_sessions (id, user_id, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (session_id, user_id, now, now),
        )
        await db.commit()
    return ChatSession(id=session_id, user_id=user_id, created_at=now, updated_at=now)


async def find_session(db_path: str, user_id: str, session_id: str) -> ChatSession | None:
    """Fetch a session by ID, scoped to its owner. Returns None if not found."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM chat_sessions WHERE id = ? AND user_id = ?",
            (session_id, user_id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return _session(row)


async def latest_session(db_path: str, user_id: str) -> ChatSession | None:
    """The user's most recently updated session, if any."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM chat_sessions WHERE user_id = ? ORDER BY updated_at DESC LIMIT 1",
            (user_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return _session(row)


async def list_sessions(db_path: str, user_id: str, limit: int = 20, offset: int = 0) -> list[ChatSession]:
    """List a user's sessions, most recent first."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM chat_sessions WHERE user_id = ? ORDER BY updated_at DESC LIMIT ? OFFSET ?",
            (user_id, limit, offset),
        )
        rows = await cursor.fetchall()
        return [_session(row) for row in rows]


async def touch_session(db_path: str, session_id: str):
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            "UPDATE chat_sessions SET updated_at = ? WHERE id = ?",
            (_now(), session_id),
        )
        await db.commit()


async def delete_session(db_path: str, session_id: str):
    async with aiosqlite.connect(db_path) as db:
        await db.execute("DELETE FROM chat_messages WHERE session_id = ?", (session_id,))
        await db.execute("DELETE FROM chat_sessions WHERE id = ?", (session_id,))
        await db.commit()


# --- Message CRUD ---

def _message(row) -> ChatMessage:
    products = json.loads(row["shopify_products"]) if row["shopify_products"] else None
    return ChatMessage(
        id=row["id"],
        session_id=row["session_id"],
        role=row["role"],
        content=row["content"],
        timestamp=row["timestamp"],
        link=row["link"],
        shopify_products=[ProductRef.model_validate(p) for p in products] if products else None,
        raw_response=json.loads(row["raw_response"]) if row["raw_response"] else None,
    )


async def append_message(
    db_path: str,
    session_id: str,
    role: str,
    content: str,
    link: str | None = None,
    products: list[ProductRef] | None = None,
    raw_response: dict | None = None,
) -> ChatMessage:
    """Save a message to the conversation and bump the session timestamp."""
    now = _now()
    products_json = json.dumps([p.model_dump() for p in products]) if products else None
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            "INSERT INTO chat_messages (session_id, role, content, link, shopify_products, raw_response, timestamp) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                session_id,
                role,
                content,
                link,
                products_json,
                json.dumps(raw_response) if raw_response else None,
                now,
            ),
        )
        # Update the session's updated_at timestamp
        await db.execute(
            "UPDATE chat_sessions SET updated_at = ? WHERE id = ?",
            (now, session_id),
        )
        await db.commit()
        message_id = cursor.lastrowid
    return ChatMessage(
        id=message_id,
        session_id=session_id,
        role=role,
        content=content,
        timestamp=now,
        link=link,
        shopify_products=list(products) if products else None,
        raw_response=raw_response,
    )


async def recent_messages(db_path: str, session_id: str, limit: int) -> list[ChatMessage]:
    """The last ``limit`` messages of a session, newest first."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM chat_messages WHERE session_id = ? ORDER BY timestamp DESC, id DESC LIMIT ?",
            (session_id, limit),
        )
        rows = await cursor.fetchall()
        return [_message(row) for row in rows]


async def get_messages(db_path: str, session_id: str) -> list[ChatMessage]:
    """Load all messages for a session, oldest first."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM chat_messages WHERE session_id = ? ORDER BY timestamp ASC, id ASC",
            (session_id,),
        )
        rows = await cursor.fetchall()
        return [_message(row) for row in rows]


# --- Cart ---

def _cart_item(row) -> CartItem:
    return CartItem(**dict(row))


async def cart_items(db_path: str, user_id: str) -> list[CartItem]:
    """Current cart for a user, most recently added first."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM cart_items WHERE user_id = ? ORDER BY created_at DESC, rowid DESC",
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [_cart_item(row) for row in rows]


async def upsert_cart_item(
    db_path: str,
    user_id: str,
    product_id: str,
    product_name: str,
    price: float,
    quantity: int = 1,
    description: str | None = None,
    image_url: str | None = None,
    product_url: str | None = None,
) -> tuple[CartItem, bool]:
    """Add ``quantity`` of a product to the cart.

    A single INSERT ... ON CONFLICT statement does the read-modify-write, so
    concurrent adds of the same (user, product) never lose an increment. An
    existing row keeps its unit price and has its total recomputed from it.
    Returns the stored item and whether an existing row was updated.
    """
    if quantity < 1:
        raise ValueError("quantity must be at least 1")
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("BEGIN IMMEDIATE")
        cursor = await db.execute(
            "SELECT 1 FROM cart_items WHERE user_id = ? AND product_id = ?",
            (user_id, product_id),
        )
        existed = await cursor.fetchone() is not None
        await db.execute(
            """
            INSERT INTO cart_items
                (id, user_id, product_id, product_name, description, price, quantity, total,
                 image_url, product_url, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (user_id, product_id) DO UPDATE SET
                quantity = cart_items.quantity + excluded.quantity,
                total = cart_items.price * (cart_items.quantity + excluded.quantity)
            """,
            (
                str(uuid.uuid4()),
                user_id,
                product_id,
                product_name,
                description,
                float(price),
                quantity,
                float(price) * quantity,
                image_url,
                product_url,
                _now(),
            ),
        )
        cursor = await db.execute(
            "SELECT * FROM cart_items WHERE user_id = ? AND product_id = ?",
            (user_id, product_id),
        )
        row = await cursor.fetchone()
        await db.commit()
        return _cart_item(row), existed


async def set_cart_item_quantity(db_path: str, user_id: str, item_id: str, quantity: int) -> CartItem:
    if quantity < 1:
        raise ValueError("quantity must be at least 1")
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "UPDATE cart_items SET quantity = ?, total = price * ? WHERE id = ? AND user_id = ?",
            (quantity, quantity, item_id, user_id),
        )
        if cursor.rowcount == 0:
            raise CartItemNotFound(f"cart item {item_id} not found")
        cursor = await db.execute("SELECT * FROM cart_items WHERE id = ?", (item_id,))
        row = await cursor.fetchone()
        await db.commit()
        return _cart_item(row)


async def delete_cart_item(db_path: str, user_id: str, item_id: str):
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            "DELETE FROM cart_items WHERE id = ? AND user_id = ?",
            (item_id, user_id),
        )
        await db.commit()
        if cursor.rowcount == 0:
            raise CartItemNotFound(f"cart item {item_id} not found")


async def clear_cart(db_path: str, user_id: str):
    async with aiosqlite.connect(db_path) as db:
        await db.execute("DELETE FROM cart_items WHERE user_id = ?", (user_id,))
        await db.commit()


async def cart_summary(db_path: str, user_id: str) -> dict:
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            "SELECT COUNT(id), COALESCE(SUM(total), 0) FROM cart_items WHERE user_id = ?",
            (user_id,),
        )
        count, total = await cursor.fetchone()
        return {"count": count, "total": float(total)}


# --- Purchase history ---

def _purchase(row) -> PurchaseRecord:
    return PurchaseRecord(**dict(row))


async def purchase_history(
    db_path: str,
    user_id: str,
    product_name: str | None = None,
    limit: int | None = None,
) -> list[PurchaseRecord]:
    """Purchases newest first, optionally only those whose name contains ``product_name``."""
    query = "SELECT * FROM purchase_history WHERE user_id = ?"
    params: list = [user_id]
    if product_name:
        query += " AND instr(lower(product_name), lower(?)) > 0"
        params.append(product_name)
    query += " ORDER BY purchase_date DESC, id DESC"
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(query, params)
        rows = await cursor.fetchall()
        return [_purchase(row) for row in rows]


async def checkout(db_path: str, user_id: str) -> dict:
    """Move every cart item into purchase history under one order id."""
    order_id = f"ORDER_{int(time.time() * 1000)}_{user_id}"
    purchase_date = _now()
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("BEGIN IMMEDIATE")
        cursor = await db.execute(
            "SELECT * FROM cart_items WHERE user_id = ? ORDER BY created_at ASC",
            (user_id,),
        )
        items = await cursor.fetchall()
        if not items:
            await db.rollback()
            raise EmptyCartError(f"cart for {user_id} is empty")
        await db.executemany(
            """
            INSERT INTO purchase_history
                (user_id, product_id, product_name, description, price, quantity, total,
                 image_url, product_url, order_id, purchase_date, status)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'completed')
            """,
            [
                (
                    item["user_id"],
                    item["product_id"],
                    item["product_name"],
                    item["description"],
                    item["price"],
                    item["quantity"],
                    item["total"],
                    item["image_url"],
                    item["product_url"],
                    order_id,
                    purchase_date,
                )
                for item in items
            ],
        )
        await db.execute("DELETE FROM cart_items WHERE user_id = ?", (user_id,))
        await db.commit()
    purchases = await purchase_history(db_path, user_id)
    purchases = [p for p in purchases if p.order_id == order_id]
    return {
        "orderId": order_id,
        "purchases": purchases,
        "totalAmount": sum(p.total for p in purchases),
    }


# --- API usage logging ---

async def log_api_usage(
    db_path: str,
    user_id: str,
    endpoint: str,
    request_data: dict | None = None,
    response_data: dict | None = None,
    success: bool = True,
    error_message: str | None = None,
):
    """Record one call to the replica backend for auditing."""
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            "INSERT INTO api_usage (user_id, endpoint, request_data, response_data, success, error_message, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                user_id,
                endpoint,
                json.dumps(request_data) if request_data else None,
                json.dumps(response_data, default=str) if response_data else None,
                int(success),
                error_message,
                _now(),
            ),
        )
        await db.commit()


async def list_api_usage(db_path: str, limit: int = 100) -> list[dict]:
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM api_usage ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        rows = await cursor.fetchall()

    usage = []
    for row in rows:
        record = dict(row)
        record["success"] = bool(record["success"])
        for key in ("request_data", "response_data"):
            record[key] = json.loads(record[key]) if record[key] else None
        usage.append(record)
    return usage
