import logging

import httpx

from app.errors import UpstreamAuth, UpstreamNetwork, UpstreamRateLimit, UpstreamTimeout
from app.models.schemas import AIReply, ReplyAction

logger = logging.getLogger("shoppy.sensay")


class SensayClient:
    """Async client for the Sensay replica API (the shop's AI persona)."""

    def __init__(
        self,
        base_url: str,
        organization_secret: str,
        api_version: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self.headers = {
            "X-ORGANIZATION-SECRET": organization_secret,
            "X-API-Version": api_version,
            "Content-Type": "application/json",
        }

    # -- Low-level helpers --

    async def _request(self, method: str, path: str, payload: dict | None = None, user_id: str | None = None) -> dict:
        """Call the API, translating transport failures into Upstream* errors."""
        headers = dict(self.headers)
        if user_id:
            headers["X-USER-ID"] = user_id
        try:
            response = await self._client.request(method, f"{self.base_url}{path}", headers=headers, json=payload)
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(f"Sensay request to {path} timed out") from exc
        except httpx.TransportError as exc:
            raise UpstreamNetwork(f"Sensay request to {path} failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise UpstreamAuth(f"Sensay rejected credentials ({response.status_code})")
        if response.status_code == 429:
            raise UpstreamRateLimit("Sensay rate limit exceeded (429)")
        if response.is_error:
            raise UpstreamNetwork(f"Sensay returned HTTP {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamNetwork("Sensay returned a non-JSON body") from exc

    # -- Users --

    async def create_user(self, external_id: str) -> str:
        """Create a Sensay user and return its id."""
        data = await self._request("POST", "/v1/users", {"id": external_id})
        user_id = data.get("id") or external_id
        logger.info("Created Sensay user %s", user_id)
        return user_id

    # -- Chat --

    async def chat(self, replica_id: str, external_user_id: str, prompt: str) -> AIReply:
        """Send one prompt to a replica and return its reply."""
        data = await self._request(
            "POST",
            f"/v1/replicas/{replica_id}/chat/completions",
            {"content": prompt, "skip_chat_history": False, "source": "web"},
            user_id=external_user_id,
        )
        if data.get("success") is False:
            raise UpstreamNetwork(f"Sensay chat failed: {data.get('error', 'unknown error')}")
        return parse_reply(data)

    async def get_chat_history(self, replica_id: str, external_user_id: str) -> list[dict]:
        """The replica's own record of its conversation with this user."""
        data = await self._request("GET", f"/v1/replicas/{replica_id}/chat/history", user_id=external_user_id)
        if data.get("success") is False:
            raise UpstreamNetwork(f"Sensay chat history failed: {data.get('error', 'unknown error')}")
        return list(data.get("items") or [])

    async def close(self):
        await self._client.aclose()


def parse_reply(data: dict) -> AIReply:
    """Build an AIReply from a raw chat-completion payload."""
    action = data.get("action")
    if isinstance(action, dict) and action.get("type"):
        action = ReplyAction(type=str(action["type"]), product_name=action.get("product_name"))
    else:
        action = None
    return AIReply(content=str(data.get("content") or ""), raw=data, action=action)
