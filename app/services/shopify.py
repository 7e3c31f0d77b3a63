import logging

import httpx

from app.errors import CatalogError
from app.models.schemas import ProductRef

logger = logging.getLogger("shoppy.shopify")

PRODUCT_FIELDS = """
    id
    title
    description
    handle
    priceRange {
        minVariantPrice { amount currencyCode }
    }
    images(first: 1) {
        edges { node { url altText } }
    }
"""

CART_FIELDS = """
    id
    checkoutUrl
    totalQuantity
    cost {
        totalAmount { amount currencyCode }
    }
    lines(first: 50) {
        edges {
            node {
                id
                quantity
                merchandise {
                    ... on ProductVariant {
                        id
                        title
                        product { title handle }
                    }
                }
            }
        }
    }
"""


class ShopifyClient:
    def __init__(
        self,
        store_domain: str,
        storefront_token: str,
        admin_token: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.store_domain = store_domain
        self.storefront_url = f"https://{store_domain}/api/2025-01/graphql.json"
        self.admin_url = f"https://{store_domain}/admin/api/2025-01/graphql.json"
        self.has_admin_access = bool(admin_token)
        self._client = httpx.AsyncClient(timeout=15.0, transport=transport)

        self.storefront_headers = {
            "X-Shopify-Storefront-Access-Token": storefront_token,
            "Content-Type": "application/json",
        }
        self.admin_headers = {
            "X-Shopify-Access-Token": admin_token,
            "Content-Type": "application/json",
        }

    # -- Low-level helpers --

    async def _graphql(self, api: str, url: str, headers: dict, query: str, variables: dict | None) -> dict:
        try:
            response = await self._client.post(
                url,
                headers=headers,
                json={"query": query, "variables": variables or {}},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise CatalogError(f"Shopify {api} API request failed: {exc}") from exc
        if not isinstance(data, dict):
            raise CatalogError(f"Shopify {api} API returned a non-object payload")
        if "errors" in data:
            raise CatalogError(f"Shopify {api} API error: {data['errors']}")
        if not isinstance(data.get("data"), dict):
            raise CatalogError(f"Shopify {api} API response has no data")
        return data["data"]

    async def _storefront_query(self, query: str, variables: dict | None = None) -> dict:
        """Send a GraphQL query to the Storefront API."""
        return await self._graphql("Storefront", self.storefront_url, self.storefront_headers, query, variables)

    async def _admin_query(self, query: str, variables: dict | None = None) -> dict:
        """Send a GraphQL query to the Admin API."""
        if not self.has_admin_access:
            raise CatalogError("Shopify Admin API token is not configured")
        return await self._graphql("Admin", self.admin_url, self.admin_headers, query, variables)

    # -- Product methods --

    async def search_products(self, query: str, limit: int = 5) -> list[ProductRef]:
        """Search the store catalog by keyword. Returns product snapshots."""
        gql = f"""
        query SearchProducts($query: String!, $first: Int!) {{
            products(query: $query, first: $first, sortKey: RELEVANCE) {{
                edges {{ node {{ {PRODUCT_FIELDS} }} }}
            }}
        }}
        """
        logger.info("Shopify search %r (limit %d)", query, limit)
        data = await self._storefront_query(gql, {"query": query, "first": limit})
        return self._parse_edges(data)

    async def get_product_by_handle(self, handle: str) -> ProductRef | None:
        """Get a single product by its URL handle."""
        gql = f"""
        query GetProductByHandle($handle: String!) {{
            product(handle: $handle) {{ {PRODUCT_FIELDS} }}
        }}
        """
        data = await self._storefront_query(gql, {"handle": handle})
        if data.get("product") is None:
            return None
        try:
            return self._parse_product(data["product"])
        except (KeyError, TypeError, ValueError) as exc:
            raise CatalogError(f"Malformed Shopify product {handle!r}: {exc!r}") from exc

    async def get_featured_products(self, limit: int = 10) -> list[ProductRef]:
        """Best sellers first."""
        gql = f"""
        query FeaturedProducts($first: Int!) {{
            products(first: $first, sortKey: BEST_SELLING) {{
                edges {{ node {{ {PRODUCT_FIELDS} }} }}
            }}
        }}
        """
        data = await self._storefront_query(gql, {"first": limit})
        return self._parse_edges(data)

    # -- Storefront cart methods --

    async def create_cart(self) -> dict:
        """Create an empty Storefront cart. Its checkoutUrl hands off to Shopify checkout."""
        gql = f"""
        mutation CartCreate {{
            cartCreate {{
                cart {{ {CART_FIELDS} }}
                userErrors {{ field message }}
            }}
        }}
        """
        data = await self._storefront_query(gql)
        return self._cart_from_mutation(data, "cartCreate")

    async def add_to_cart(self, cart_id: str, variant_id: str, quantity: int = 1) -> dict:
        gql = f"""
        mutation CartLinesAdd($cartId: ID!, $lines: [CartLineInput!]!) {{
            cartLinesAdd(cartId: $cartId, lines: $lines) {{
                cart {{ {CART_FIELDS} }}
                userErrors {{ field message }}
            }}
        }}
        """
        variables = {"cartId": cart_id, "lines": [{"merchandiseId": variant_id, "quantity": quantity}]}
        logger.info("Adding variant %s x%d to Shopify cart %s", variant_id, quantity, cart_id)
        data = await self._storefront_query(gql, variables)
        return self._cart_from_mutation(data, "cartLinesAdd")

    async def get_cart(self, cart_id: str) -> dict | None:
        gql = f"""
        query GetCart($id: ID!) {{
            cart(id: $id) {{ {CART_FIELDS} }}
        }}
        """
        data = await self._storefront_query(gql, {"id": cart_id})
        if data.get("cart") is None:
            return None
        return self._parse_cart(data["cart"])

    # -- Admin order lookup --

    async def get_order_status(self, order_name: str) -> dict | None:
        """Look up an order by its name ("#1001" or "1001")."""
        gql = """
        query OrderByName($query: String!) {
            orders(first: 1, query: $query) {
                edges {
                    node {
                        id
                        name
                        createdAt
                        displayFinancialStatus
                        displayFulfillmentStatus
                        totalPriceSet { shopMoney { amount currencyCode } }
                    }
                }
            }
        }
        """
        name = order_name if order_name.startswith("#") else f"#{order_name}"
        data = await self._admin_query(gql, {"query": f"name:{name}"})
        try:
            edges = data["orders"]["edges"]
            if not edges:
                return None
            node = edges[0]["node"]
            total = node["totalPriceSet"]["shopMoney"]
            return {
                "id": node["id"],
                "name": node["name"],
                "createdAt": node.get("createdAt"),
                "financialStatus": node.get("displayFinancialStatus"),
                "fulfillmentStatus": node.get("displayFulfillmentStatus"),
                "totalAmount": total["amount"],
                "currency": total["currencyCode"],
            }
        except (KeyError, TypeError) as exc:
            raise CatalogError(f"Malformed Shopify order {name!r}: {exc!r}") from exc

    # -- Cart payload helpers --

    def _cart_from_mutation(self, data: dict, mutation: str) -> dict:
        payload = data.get(mutation) or {}
        errors = payload.get("userErrors") or []
        if errors:
            raise CatalogError(f"Shopify {mutation} failed: {'; '.join(e.get('message', '') for e in errors)}")
        if payload.get("cart") is None:
            raise CatalogError(f"Shopify {mutation} returned no cart")
        return self._parse_cart(payload["cart"])

    def _parse_cart(self, cart: dict) -> dict:
        try:
            total = cart["cost"]["totalAmount"]
            lines = []
            for edge in cart["lines"]["edges"]:
                node = edge["node"]
                merchandise = node.get("merchandise") or {}
                product = merchandise.get("product") or {}
                lines.append({
                    "id": node["id"],
                    "quantity": node["quantity"],
                    "variantId": merchandise.get("id"),
                    "variantTitle": merchandise.get("title"),
                    "productTitle": product.get("title"),
                    "productHandle": product.get("handle"),
                })
            return {
                "id": cart["id"],
                "checkoutUrl": cart.get("checkoutUrl"),
                "totalQuantity": cart.get("totalQuantity", 0),
                "totalAmount": total["amount"],
                "currency": total["currencyCode"],
                "lines": lines,
            }
        except (KeyError, TypeError) as exc:
            raise CatalogError(f"Malformed Shopify cart payload: {exc!r}") from exc

    # -- Helper to clean up raw GraphQL into ProductRef snapshots --

    def _parse_edges(self, data: dict) -> list[ProductRef]:
        try:
            return [self._parse_product(edge["node"]) for edge in data["products"]["edges"]]
        except (KeyError, TypeError, ValueError) as exc:
            raise CatalogError(f"Malformed Shopify products payload: {exc!r}") from exc

    def _parse_product(self, node: dict) -> ProductRef:
        """Turn a raw GraphQL product node into a ProductRef."""
        images = [edge["node"]["url"] for edge in (node.get("images") or {}).get("edges", [])]
        min_price = ((node.get("priceRange") or {}).get("minVariantPrice") or {})
        return ProductRef(
            id=node["id"],
            title=node["title"],
            description=node.get("description") or "",
            handle=node.get("handle") or "",
            price=str(min_price.get("amount", "0")),
            currency=min_price.get("currencyCode", "USD"),
            image_url=images[0] if images else None,
        )

    async def close(self):
        """Close the underlying HTTP client."""
        await self._client.aclose()


# -- Formatting for chat prompts --

def format_price(amount: str | float, currency: str) -> str:
    value = float(amount)
    if currency == "IDR":
        return f"Rp {value:,.0f}".replace(",", ".")
    if currency == "USD":
        return f"${value:,.2f}"
    return f"{value:,.2f} {currency}"


def format_products_for_chat(products: list[ProductRef]) -> str:
    if not products:
        return "No products found matching your criteria."
    return "\n".join(
        f"{index}. **{product.title}** - {format_price(product.price, product.currency)}"
        for index, product in enumerate(products, start=1)
    )


def product_url(store_domain: str, product: ProductRef) -> str | None:
    if not store_domain or not product.handle:
        return None
    return f"https://{store_domain}/products/{product.handle}"
