"""
Twilio account adapter.

Implements the resource repository and phone number operations on top of the
Twilio helper library. The helper library is synchronous, so every call runs
in the default executor and is bounded by ``remote_timeout``.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Type

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from devphone.config import Settings
from devphone.core.errors import ProvisionError, RemoteError
from devphone.core.models import (
    Credential,
    ManagedResource,
    PhoneNumber,
    ResourceKind,
)
from devphone.core.provisioning.repository import DeployListener, TwilioAccountClient
from devphone.infra.serverless import ServerlessDeployer

logger = logging.getLogger(__name__)


def create_client(settings: Settings) -> Client:
    """Create a Twilio REST client for the active profile."""
    if not settings.has_credentials:
        raise ProvisionError(
            "Twilio credentials are not configured. Set TWILIO_ACCOUNT_SID and "
            "either TWILIO_API_KEY/TWILIO_API_SECRET or TWILIO_AUTH_TOKEN."
        )
    profile = settings.profile
    return Client(
        profile.api_key,
        profile.api_secret,
        profile.account_sid,
        user_agent_extensions=[
            f"dev-phone/{settings.version}",
            "dev-phone/helper-library",
        ],
    )


def _message_to_dict(message: Any) -> dict:
    date_created = getattr(message, "date_created", None)
    return {
        "sid": message.sid,
        "accountSid": getattr(message, "account_sid", None),
        "body": message.body,
        "from": getattr(message, "from_", None),
        "to": message.to,
        "status": getattr(message, "status", None),
        "direction": getattr(message, "direction", None),
        "numSegments": getattr(message, "num_segments", None),
        "errorCode": getattr(message, "error_code", None),
        "errorMessage": getattr(message, "error_message", None),
        "dateCreated": date_created.isoformat() if date_created else None,
    }


def _phone_number(instance: Any) -> PhoneNumber:
    return PhoneNumber(
        sid=instance.sid,
        phone_number=instance.phone_number,
        friendly_name=instance.friendly_name,
        sms_url=instance.sms_url,
        voice_url=instance.voice_url,
        status_callback=instance.status_callback,
    )


class TwilioAccount(TwilioAccountClient):
    """
    Twilio-backed resource repository.

    Resource kinds map to:
    - CREDENTIAL: API keys
    - CALL_HISTORY_STORE: Sync services
    - CONVERSATION: Conversations services
    - WEBHOOK_BACKEND: Serverless services
    - VOICE_APP: TwiML Apps
    """

    def __init__(
        self,
        client: Client,
        settings: Settings,
        deployer: Optional[ServerlessDeployer] = None,
    ):
        self.client = client
        self.settings = settings
        self.timeout = settings.remote_timeout
        self.deployer = deployer or ServerlessDeployer(self, settings)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TwilioAccount":
        return cls(create_client(settings), settings)

    async def call(
        self,
        description: str,
        fn: Callable[..., Any],
        *args: Any,
        error_class: Type[RemoteError] = ProvisionError,
        **kwargs: Any,
    ) -> Any:
        """
        Run a blocking helper library call in the executor.

        Raises:
            error_class: The API returned an error, the call timed out or the
                connection failed
        """
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, lambda: fn(*args, **kwargs)),
                timeout=self.timeout,
            )
        except TwilioRestException as e:
            logger.debug(f"{description} failed: {e.status} {e.code} {e.msg}")
            raise error_class(
                f"{description} failed: {e.msg}",
                status_code=e.status,
                code=e.code,
            ) from e
        except asyncio.TimeoutError as e:
            raise error_class(
                f"{description} timed out after {self.timeout:.0f}s",
                status_code=504,
            ) from e
        except OSError as e:
            # requests' connection errors subclass OSError
            logger.debug(f"{description} failed: {type(e).__name__}: {e}")
            raise error_class(f"{description} failed: {e}") from e

    # === Resources ===

    def _collection(self, kind: ResourceKind) -> Any:
        if kind == ResourceKind.CREDENTIAL:
            return self.client.keys
        if kind == ResourceKind.CALL_HISTORY_STORE:
            return self.client.sync.v1.services
        if kind == ResourceKind.CONVERSATION:
            return self.client.conversations.v1.services
        if kind == ResourceKind.WEBHOOK_BACKEND:
            return self.client.serverless.v1.services
        if kind == ResourceKind.VOICE_APP:
            return self.client.applications
        raise ValueError(f"Unknown resource kind: {kind}")

    async def list_resources(self, kind: ResourceKind) -> list[ManagedResource]:
        instances = await self.call(f"Listing {kind.value}", self._collection(kind).list)
        return [
            ManagedResource(kind=kind, remote_id=i.sid, label=i.friendly_name)
            for i in instances
        ]

    async def remove(self, resource: ManagedResource) -> None:
        context = self._collection(resource.kind)(resource.remote_id)
        await self.call(f"Removing {resource.kind.value} {resource.remote_id}", context.delete)

    async def create_credential(self, label: str) -> Credential:
        key = await self.call("Creating API key", self.client.new_keys.create, friendly_name=label)
        return Credential(sid=key.sid, secret=key.secret, minted=True)

    async def create_call_history_store(self, label: str, map_name: str) -> ManagedResource:
        services = self.client.sync.v1.services
        service = await self.call("Creating Sync service", services.create, friendly_name=label)
        await self.call(
            "Creating call log map",
            services(service.sid).sync_maps.create,
            unique_name=map_name,
        )
        return ManagedResource(
            kind=ResourceKind.CALL_HISTORY_STORE,
            remote_id=service.sid,
            label=service.friendly_name,
            fields={"map_name": map_name},
        )

    async def create_conversation(self, label: str, identity: str) -> ManagedResource:
        services = self.client.conversations.v1.services
        service = await self.call(
            "Creating Conversations service", services.create, friendly_name=label
        )
        conversations = services(service.sid).conversations
        conversation = await self.call(
            "Creating conversation", conversations.create, friendly_name=label
        )
        await self.call(
            "Adding conversation participant",
            conversations(conversation.sid).participants.create,
            identity=identity,
        )
        logger.info(f"Using the conversation {conversation.sid} from service {service.sid}")
        return ManagedResource(
            kind=ResourceKind.CONVERSATION,
            remote_id=service.sid,
            label=service.friendly_name,
            fields={"service_sid": service.sid, "conversation_sid": conversation.sid},
        )

    async def deploy_webhook_backend(
        self,
        label: str,
        env: dict[str, str],
        on_update: Optional[DeployListener] = None,
    ) -> ManagedResource:
        return await self.deployer.deploy(label, env, on_update=on_update)

    async def create_voice_app(self, label: str, voice_url: str) -> ManagedResource:
        app = await self.call(
            "Creating TwiML App",
            self.client.applications.create,
            voice_url=voice_url,
            friendly_name=label,
        )
        return ManagedResource(
            kind=ResourceKind.VOICE_APP,
            remote_id=app.sid,
            label=app.friendly_name,
            fields={"voice_url": voice_url},
        )

    # === Phone numbers ===

    async def list_phone_numbers(self, phone_number: Optional[str] = None) -> list[PhoneNumber]:
        kwargs: dict = {}
        if phone_number:
            kwargs = {"phone_number": phone_number, "limit": 20}
        instances = await self.call(
            "Listing phone numbers",
            self.client.incoming_phone_numbers.list,
            error_class=RemoteError,
            **kwargs,
        )
        return [_phone_number(i) for i in instances]

    async def update_phone_number(
        self,
        sid: str,
        voice_url: str,
        sms_url: str,
        status_callback: str,
    ) -> PhoneNumber:
        instance = await self.call(
            f"Updating phone number {sid}",
            self.client.incoming_phone_numbers(sid).update,
            error_class=RemoteError,
            voice_url=voice_url,
            sms_url=sms_url,
            status_callback=status_callback,
        )
        return _phone_number(instance)

    async def send_message(self, body: str, from_: str, to: str) -> dict:
        message = await self.call(
            "Sending SMS",
            self.client.messages.create,
            error_class=RemoteError,
            body=body,
            from_=from_,
            to=to,
        )
        return _message_to_dict(message)
