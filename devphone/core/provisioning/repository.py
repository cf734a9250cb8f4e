"""
Remote resource repository.

The dev phone keeps no local record of what it created. Every lookup lists
the remote resources of a kind and filters them by label, so the matching
rule lives here and can be tested without a network.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from devphone.core.models import (
    Credential,
    ManagedResource,
    PhoneNumber,
    ResourceKind,
)
from devphone.core.naming import filter_by_label_prefix

# Receives status events while the webhook backend deploys.
DeployListener = Callable[[dict], None]


class ResourceRepository(ABC):
    """
    Create, list and remove the resource kinds a session owns.

    Implementations raise ProvisionError for any remote failure.
    """

    @abstractmethod
    async def list_resources(self, kind: ResourceKind) -> list[ManagedResource]:
        """List every resource of a kind on the account."""

    @abstractmethod
    async def remove(self, resource: ManagedResource) -> None:
        """Remove a single resource."""

    async def find_by_label_prefix(
        self,
        kind: ResourceKind,
        prefix: str,
    ) -> list[ManagedResource]:
        """List resources of a kind whose label starts with prefix."""
        return filter_by_label_prefix(await self.list_resources(kind), prefix)

    @abstractmethod
    async def create_credential(self, label: str) -> Credential:
        """Mint a new API key labelled with label."""

    @abstractmethod
    async def create_call_history_store(
        self,
        label: str,
        map_name: str,
    ) -> ManagedResource:
        """Create a Sync service holding an empty call log map."""

    @abstractmethod
    async def create_conversation(
        self,
        label: str,
        identity: str,
    ) -> ManagedResource:
        """Create a conversation service, a conversation and add identity to it.

        The returned resource carries ``service_sid`` and ``conversation_sid``.
        """

    @abstractmethod
    async def deploy_webhook_backend(
        self,
        label: str,
        env: dict[str, str],
        on_update: Optional[DeployListener] = None,
    ) -> ManagedResource:
        """Deploy the webhook handlers. The resource carries ``domain``."""

    @abstractmethod
    async def create_voice_app(self, label: str, voice_url: str) -> ManagedResource:
        """Create a TwiML App routing outbound browser calls to voice_url."""


class PhoneNumberClient(ABC):
    """Phone number and messaging operations on the account."""

    @abstractmethod
    async def list_phone_numbers(
        self,
        phone_number: Optional[str] = None,
    ) -> list[PhoneNumber]:
        """List incoming phone numbers, optionally filtered by number."""

    @abstractmethod
    async def update_phone_number(
        self,
        sid: str,
        voice_url: str,
        sms_url: str,
        status_callback: str,
    ) -> PhoneNumber:
        """Set the webhook URLs of a phone number."""

    @abstractmethod
    async def send_message(self, body: str, from_: str, to: str) -> dict:
        """Send an SMS and return the created message."""


class TwilioAccountClient(ResourceRepository, PhoneNumberClient):
    """Everything the dev phone needs from a Twilio account."""


Factory = Callable[[], Awaitable[ManagedResource]]
