# src/convocore/upstream/http_client.py
"""
HTTP client for an agent-hosting reasoning service.

Messages are posted to ``{base_url}/v1/agents/{target_id}/messages`` as::

    {"messages": [{"role": "user", "content": "..."}], "sender_id": "..."}

and the reply text is taken from the first ``assistant_message`` in the
response, falling back to the first message carrying content.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from ..config.models import UpstreamConfig
from ..exceptions import UpstreamError
from .base import BaseReasoningClient

logger = logging.getLogger(__name__)


class HttpReasoningClient(BaseReasoningClient):
    """aiohttp-based implementation of :class:`BaseReasoningClient`."""

    _session: Optional[aiohttp.ClientSession] = None

    def __init__(self, config: Optional[UpstreamConfig] = None):
        self._config = config or UpstreamConfig()
        self._base_url = self._config.base_url
        self._timeout = self._config.request_timeout_seconds
        logger.info("HttpReasoningClient configured for %s", self._base_url)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            api_key = self._config.api_key
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=headers,
            )
            logger.debug("Created new aiohttp.ClientSession for HttpReasoningClient.")
        return self._session

    @staticmethod
    def extract_reply(payload: Dict[str, Any]) -> Optional[str]:
        messages: List[Dict[str, Any]] = payload.get("messages") or []
        if not isinstance(messages, list):
            return None
        messages = [m for m in messages if isinstance(m, dict)]
        for message in messages:
            if message.get("message_type") == "assistant_message" and message.get("content"):
                return message["content"]
        for message in messages:
            if message.get("content"):
                return message["content"]
        return None

    async def send(self, target_id: str, sender_id: str, message: str, role: str = "user") -> str:
        url = f"{self._base_url}/v1/agents/{target_id}/messages"
        body = {"messages": [{"role": role, "content": message}], "sender_id": sender_id}
        session = await self._get_session()
        try:
            async with session.post(url, json=body) as resp:
                if resp.status >= 400:
                    detail = await resp.text()
                    raise UpstreamError(target_id, f"HTTP {resp.status}: {detail[:200]}")
                payload = await resp.json()
        except UpstreamError:
            raise
        except asyncio.TimeoutError as e:
            logger.error("Request to agent %s timed out after %ss", target_id, self._timeout)
            raise UpstreamError(target_id, f"Request timed out after {self._timeout}s.") from e
        except aiohttp.ClientError as e:
            logger.error("Request to agent %s failed: %s", target_id, e)
            raise UpstreamError(target_id, str(e) or type(e).__name__) from e
        except ValueError as e:
            logger.error("Agent %s returned a body that is not JSON: %s", target_id, e)
            raise UpstreamError(target_id, f"Invalid JSON response: {e}") from e

        if not isinstance(payload, dict):
            raise UpstreamError(target_id, f"Expected a JSON object, got {type(payload).__name__}.")
        reply = self.extract_reply(payload)
        if reply is None:
            raise UpstreamError(target_id, "Response contained no message content.")
        return reply

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Closed aiohttp.ClientSession for HttpReasoningClient.")
        self._session = None
