"""
Session gateway.

Operations behind the local HTTP API. The gateway reads and updates state
owned by the lifecycle controller; it never provisions on its own.
"""

import logging
import time
from typing import TYPE_CHECKING, Optional

from devphone.core.models import PhoneNumber, PluginSettings

if TYPE_CHECKING:
    from devphone.core.lifecycle.controller import LifecycleController

logger = logging.getLogger(__name__)


class SessionGateway:
    """
    Serves session state, phone numbers, SMS and tokens to the UI.

    The phone number listing is cached for ``phone_number_cache_ttl``
    seconds since numbers rarely change during a session.
    """

    def __init__(self, controller: "LifecycleController"):
        self.controller = controller
        self._numbers: Optional[list[PhoneNumber]] = None
        self._numbers_fetched_at: float = 0.0

    @property
    def cache_ttl(self) -> float:
        return self.controller.settings.phone_number_cache_ttl

    def plugin_settings(self) -> dict:
        """Current session settings."""
        controller = self.controller
        return PluginSettings(
            dev_phone_name=controller.session.name,
            force_mode=controller.settings.force,
            phone_number=controller.binding,
            conversation=controller.resources.conversation_dict(),
        ).to_dict()

    async def list_phone_numbers(self) -> dict:
        """Incoming phone numbers on the account."""
        if self._numbers is None or self._cache_expired():
            self._numbers = await self.controller.account.list_phone_numbers()
            self._numbers_fetched_at = time.monotonic()
            logger.debug(f"Fetched {len(self._numbers)} phone numbers")
        return {"phone-numbers": [n.to_dict() for n in self._numbers]}

    def invalidate_phone_numbers(self) -> None:
        """Drop the cached phone number listing."""
        self._numbers = None

    def _cache_expired(self) -> bool:
        return time.monotonic() - self._numbers_fetched_at > self.cache_ttl

    async def send_sms(self, body: str, from_: str, to: str) -> dict:
        """Send an SMS from one of the account's numbers."""
        message = await self.controller.account.send_message(body=body, from_=from_, to=to)
        logger.info(f"Sent SMS {message.get('sid')} from {from_} to {to}")
        return {"result": message}

    async def choose_phone_number(self, phone_number: str) -> dict:
        """
        Bind the dev phone to another number.

        Raises:
            NotFoundError: Zero or several numbers match; current binding kept
            ConflictError: The number has webhooks and force mode is off
        """
        binding = await self.controller.rebind(phone_number)
        self.invalidate_phone_numbers()
        return {
            "phoneNumber": binding.to_dict(),
            "message": "Phone number updated!",
        }

    async def client_token(self) -> dict:
        """Access token for the browser client, issued on first request."""
        token = await self.controller.current_token()
        return {"token": token.value}
