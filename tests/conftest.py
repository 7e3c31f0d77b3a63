import pytest
import pytest_asyncio

from app.errors import CatalogError
from app.models.database import init_db
from app.models.schemas import AIReply, ProductRef


@pytest_asyncio.fixture
async def db_path(tmp_path):
    path = str(tmp_path / "test.db")
    await init_db(path)
    return path


def make_product(product_id="p1", title="Tee", price="20", handle="tee"):
    return ProductRef(
        id=product_id,
        handle=handle,
        title=title,
        description=f"A {title.lower()}",
        price=price,
        currency="USD",
        image_url=f"https://cdn.example.com/{handle}.png",
    )


class FakeReplica:
    """Records prompts and answers with queued replies."""

    def __init__(self, replies=None, error=None):
        self.replies = list(replies or [])
        self.error = error
        self.prompts = []
        self.created_users = []
        self.history = []

    async def create_user(self, external_id):
        self.created_users.append(external_id)
        return f"sensay-{external_id}"

    async def chat(self, replica_id, external_user_id, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        content = self.replies.pop(0) if self.replies else "Happy to help!"
        if isinstance(content, AIReply):
            reply = content
        else:
            reply = AIReply(content=content, raw={"success": True, "content": content})
        self.history.append({"user": external_user_id, "role": "assistant", "content": reply.content})
        return reply

    async def get_chat_history(self, replica_id, external_user_id):
        if self.error is not None:
            raise self.error
        return [item for item in self.history if item["user"] == external_user_id]


class FakeCatalog:
    def __init__(self, products=None, fail=False):
        self.products = list(products or [])
        self.fail = fail
        self.queries = []

    async def search_products(self, query, limit=5):
        self.queries.append(query)
        if self.fail:
            raise CatalogError("storefront down")
        return self.products[:limit]

    async def get_product_by_handle(self, handle):
        return next((p for p in self.products if p.handle == handle), None)

    async def get_featured_products(self, limit=10):
        return self.products[:limit]
