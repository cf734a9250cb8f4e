"""
Resource provisioner.

Creates a session's resources in dependency order and sweeps them away again.
Every kind except the credential is created through ``ensure_fresh``, which
removes same-label leftovers first, so running the same session twice never
leaves two resources of one kind behind.
"""

import logging
from typing import Optional

from devphone.config import Settings, TwilioProfile
from devphone.core.errors import ProvisionError, RemoteError
from devphone.core.models import (
    ManagedResource,
    PhoneNumber,
    ProvisionedResources,
    ResourceKind,
    Session,
    TEARDOWN_ORDER,
    WebhookUrls,
)
from devphone.core.naming import FAMILY_PREFIX, FAMILY_WEBHOOK_PREFIX
from devphone.core.provisioning.credentials import CredentialManager
from devphone.core.provisioning.repository import (
    DeployListener,
    Factory,
    TwilioAccountClient,
)

logger = logging.getLogger(__name__)

_KIND_NAMES = {
    ResourceKind.CREDENTIAL: "API Keys",
    ResourceKind.CALL_HISTORY_STORE: "Sync Service",
    ResourceKind.CONVERSATION: "Conversation Service",
    ResourceKind.WEBHOOK_BACKEND: "Serverless Functions",
    ResourceKind.VOICE_APP: "TwiML App",
}


def log_deploy_event(event: dict) -> None:
    """Log a webhook backend deploy status event."""
    message = event.get("message", "")
    if event.get("status") == "building":
        logger.debug(f"Webhook backend: {message}")
    else:
        logger.info(f"Webhook backend: {message}")


class ResourceProvisioner:
    """
    Creates and destroys the resources of a session.

    Usage:
        provisioner = ResourceProvisioner(account, settings)
        resources = ProvisionedResources()
        resources.add(await provisioner.provision(ResourceKind.CONVERSATION, session, resources))
        ...
        await provisioner.destroy_session(session)
    """

    def __init__(
        self,
        account: TwilioAccountClient,
        settings: Settings,
        credentials: Optional[CredentialManager] = None,
        on_deploy_update: Optional[DeployListener] = None,
    ):
        self.account = account
        self.settings = settings
        self.credentials = credentials or CredentialManager(account)
        self.on_deploy_update = on_deploy_update or log_deploy_event

    @property
    def profile(self) -> TwilioProfile:
        return self.settings.profile

    async def ensure_fresh(
        self,
        kind: ResourceKind,
        label: str,
        create: Factory,
    ) -> ManagedResource:
        """
        Destroy resources of kind labelled with label, then create one.

        Args:
            kind: Resource kind
            label: Label the new resource will carry
            create: Coroutine factory creating the resource

        Returns:
            The created resource
        """
        await self._destroy_matching(kind, label, strict=True)
        resource = await create()
        logger.info(f"Using {_KIND_NAMES[kind]} {resource.remote_id}")
        return resource

    async def provision(
        self,
        kind: ResourceKind,
        session: Session,
        resources: ProvisionedResources,
    ) -> ManagedResource:
        """
        Create the resource of kind for session.

        Args:
            kind: Kind to create. CREDENTIAL is delegated to CredentialManager
            session: Owning session
            resources: Resources created so far; later kinds read ids from it

        Returns:
            The created resource

        Raises:
            ProvisionError: The remote API failed or a dependency is missing
        """
        label = session.name

        if kind == ResourceKind.CREDENTIAL:
            credential = await self.credentials.obtain(self.profile, session)
            return ManagedResource(
                kind=kind,
                remote_id=credential.sid,
                label=label if credential.minted else None,
                fields={"secret": credential.secret, "minted": credential.minted},
            )

        if kind == ResourceKind.CALL_HISTORY_STORE:
            logger.info("Creating a new sync list for call history...")
            return await self.ensure_fresh(
                kind,
                label,
                lambda: self.account.create_call_history_store(
                    label, self.settings.call_log_map_name
                ),
            )

        if kind == ResourceKind.CONVERSATION:
            logger.info("Creating a new conversation...")
            return await self.ensure_fresh(
                kind,
                label,
                lambda: self.account.create_conversation(label, identity=session.name),
            )

        if kind == ResourceKind.WEBHOOK_BACKEND:
            logger.info("Deploying a Functions Service to handle incoming calls and SMS...")
            env = self.webhook_environment(session, resources)
            return await self.ensure_fresh(
                kind,
                label,
                lambda: self.account.deploy_webhook_backend(
                    label, env, on_update=self.on_deploy_update
                ),
            )

        if kind == ResourceKind.VOICE_APP:
            logger.info("Creating a new TwiML App to allow voice calls from your browser...")
            urls = self.webhook_urls(resources)
            return await self.ensure_fresh(
                kind,
                label,
                lambda: self.account.create_voice_app(label, urls.voice_outbound_url),
            )

        raise ValueError(f"Unknown resource kind: {kind}")

    def webhook_environment(
        self,
        session: Session,
        resources: ProvisionedResources,
    ) -> dict[str, str]:
        """Environment the webhook backend is deployed with."""
        store = resources.get(ResourceKind.CALL_HISTORY_STORE)
        conversation = resources.get(ResourceKind.CONVERSATION)
        if store is None or conversation is None:
            raise ProvisionError(
                "The webhook backend needs the call history store and the conversation"
            )
        return {
            "SYNC_SERVICE_SID": store.remote_id,
            "CONVERSATION_SID": conversation.fields["conversation_sid"],
            "CONVERSATION_SERVICE_SID": conversation.fields["service_sid"],
            "DEV_PHONE_NAME": session.name,
            "DEV_PHONE_VERSION": self.settings.version,
            "CALL_LOG_MAP_NAME": self.settings.call_log_map_name,
        }

    @staticmethod
    def webhook_urls(resources: ProvisionedResources) -> WebhookUrls:
        """Handler URLs of the deployed webhook backend."""
        backend = resources.get(ResourceKind.WEBHOOK_BACKEND)
        if backend is None or not backend.fields.get("domain"):
            raise ProvisionError("The webhook backend has not been deployed")
        return WebhookUrls.for_domain(backend.fields["domain"])

    # === Teardown ===

    async def destroy_session(self, session: Session) -> int:
        """
        Remove every resource labelled with the session name.

        Best effort: a failure on one resource is logged and the sweep goes on.

        Returns:
            Number of resources removed
        """
        return await self._sweep(session.name, f"for {session.name}")

    async def destroy_family(self) -> int:
        """
        Remove the resources of every dev phone session on the account and
        reset the webhooks of numbers still pointing at a dev phone backend.

        Returns:
            Number of resources removed, phone numbers included
        """
        removed = await self._sweep(FAMILY_PREFIX, "for existing dev phones")
        removed += await self.reset_family_webhooks()
        return removed

    async def reset_family_webhooks(self) -> int:
        """Clear the webhooks of numbers bound to any dev phone backend."""
        try:
            numbers = await self.account.list_phone_numbers()
        except RemoteError as e:
            logger.error(f"Failed to list phone numbers: {e}")
            return 0

        bound = [n for n in numbers if _points_at_dev_phone(n)]
        if bound:
            logger.info("Removing all number webhooks for dev phone")

        reset = 0
        for number in bound:
            try:
                await self.account.update_phone_number(
                    number.sid, voice_url="", sms_url="", status_callback=""
                )
                reset += 1
            except RemoteError as e:
                logger.error(f"Failed to reset webhooks of {number.phone_number}: {e}")
        return reset

    async def _sweep(self, prefix: str, description: str) -> int:
        removed = 0
        for kind in TEARDOWN_ORDER:
            if kind == ResourceKind.CREDENTIAL and self.profile.has_api_key:
                # The profile's own key was reused; nothing was minted.
                continue
            removed += await self._destroy_matching(kind, prefix, description=description)
        return removed

    async def _destroy_matching(
        self,
        kind: ResourceKind,
        prefix: str,
        strict: bool = False,
        description: Optional[str] = None,
    ) -> int:
        """
        Remove resources of kind whose label starts with prefix.

        With strict, a remote failure is raised (used before
        creating). Otherwise failures are logged and skipped.
        """
        try:
            matches = await self.account.find_by_label_prefix(kind, prefix)
        except RemoteError as e:
            if strict:
                raise
            logger.error(f"Failed to list {_KIND_NAMES[kind]}: {e}")
            return 0

        if not matches:
            return 0

        logger.info(f"Removing {_KIND_NAMES[kind]} {description or f'for {prefix}'}")

        removed = 0
        for resource in matches:
            try:
                await self.account.remove(resource)
                removed += 1
            except RemoteError as e:
                if strict:
                    raise
                logger.error(
                    f"Failed to remove {_KIND_NAMES[kind]} {resource.remote_id}: {e}"
                )
        return removed


def _points_at_dev_phone(number: PhoneNumber) -> bool:
    return bool(
        number.sms_url
        and number.voice_url
        and number.sms_url.startswith(FAMILY_WEBHOOK_PREFIX)
        and number.voice_url.startswith(FAMILY_WEBHOOK_PREFIX)
    )
