# src/convocore/upstream/base.py
"""
Interfaces to the external reasoning service.

The engine never talks to a model directly. It sends text messages to
agents hosted by a reasoning service and looks up which agents serve a
given user through an agent directory.
"""

import abc
import logging
from typing import Dict, Optional

from ..exceptions import ValidationError
from ..models import AgentMapping

logger = logging.getLogger(__name__)


class BaseReasoningClient(abc.ABC):
    """Sends a message to an agent of the reasoning service and returns its reply."""

    @abc.abstractmethod
    async def send(self, target_id: str, sender_id: str, message: str, role: str = "user") -> str:
        """
        Deliver ``message`` to the agent ``target_id`` on behalf of ``sender_id``.

        Args:
            target_id: Identifier of the receiving agent.
            sender_id: Identity the message is sent as.
            message: Message text.
            role: Message role understood by the service ("user" or "system").

        Returns:
            The agent's reply text.

        Raises:
            UpstreamError: If the service fails or returns no reply.
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        pass


class BaseAgentDirectory(abc.ABC):
    """Resolves the agents serving a user."""

    @abc.abstractmethod
    async def get_agents(self, user_id: str) -> AgentMapping:
        """
        Return the agent mapping of ``user_id``.

        Raises:
            ValidationError: If the user cannot be resolved.
        """
        pass


class InMemoryAgentDirectory(BaseAgentDirectory):
    """
    Agent directory held in memory.

    Registered mappings win; unknown users get deterministic identifiers
    derived from the user id unless ``auto_provision`` is disabled.
    """

    def __init__(self, mappings: Optional[Dict[str, AgentMapping]] = None, auto_provision: bool = True):
        self._mappings: Dict[str, AgentMapping] = dict(mappings or {})
        self._auto_provision = auto_provision

    def register(self, mapping: AgentMapping) -> None:
        self._mappings[mapping.user_id] = mapping

    async def get_agents(self, user_id: str) -> AgentMapping:
        if not user_id:
            raise ValidationError("A user id is required to resolve agents.")
        mapping = self._mappings.get(user_id)
        if mapping is None:
            if not self._auto_provision:
                raise ValidationError(f"No agents registered for user '{user_id}'.")
            mapping = AgentMapping(
                user_id=user_id,
                identity_id=f"identity-{user_id}",
                context_extractor_id=f"context-extractor-{user_id}",
                general_health_id=f"general-health-{user_id}",
                mental_health_id=f"mental-health-{user_id}",
            )
            self._mappings[user_id] = mapping
            logger.debug("Provisioned agent mapping for user %s", user_id)
        return mapping
