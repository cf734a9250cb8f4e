"""
Shared fixtures for the dev phone test suite.

FakeTwilioAccount keeps every resource in memory and discovers them by label
the same way the real account adapter does, so provisioning and teardown can
be checked end to end without network access.
"""

import copy
from typing import Optional

import pytest

from devphone.config import Settings
from devphone.core.errors import ProvisionError, RemoteError
from devphone.core.lifecycle import LifecycleController
from devphone.core.models import (
    Credential,
    ManagedResource,
    PhoneNumber,
    ResourceKind,
    Session,
)
from devphone.core.naming import has_label_prefix
from devphone.core.provisioning.repository import DeployListener, TwilioAccountClient

ACCOUNT_SID = "AC" + "0" * 32
SESSION_NAME = "dev-phone-1234"
PHONE_NUMBER = "+15551234567"


class FakeTwilioAccount(TwilioAccountClient):
    """In-memory Twilio account."""

    def __init__(self):
        self.resources: dict[ResourceKind, list[ManagedResource]] = {
            kind: [] for kind in ResourceKind
        }
        self.numbers: list[PhoneNumber] = []
        self.sent: list[dict] = []
        self.deployed_env: dict[str, str] = {}
        self.calls: list[str] = []
        self.failures: dict[str, Exception] = {}
        self._counter = 0

    # === Helpers ===

    def _sid(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self._counter:032d}"

    def _record(self, operation: str, error_class: type = ProvisionError) -> None:
        self.calls.append(operation)
        if operation not in self.failures:
            return
        error = self.failures[operation]
        if isinstance(error, OSError):
            # Connection failures reach callers the way TwilioAccount.call reports them
            raise error_class(f"{operation} failed: {error}") from error
        raise error

    def fail(self, operation: str, error: Optional[Exception] = None) -> None:
        """Make operation (e.g. ``create:conversation``) raise."""
        self.failures[operation] = error or ProvisionError(
            f"{operation} failed", status_code=500
        )

    def seed(self, kind: ResourceKind, label: Optional[str]) -> ManagedResource:
        """Add a pre-existing resource."""
        resource = ManagedResource(kind=kind, remote_id=self._sid("XX"), label=label)
        self.resources[kind].append(resource)
        return resource

    def add_number(
        self,
        phone_number: str = PHONE_NUMBER,
        sms_url: str = "",
        voice_url: str = "",
        status_callback: str = "",
    ) -> PhoneNumber:
        number = PhoneNumber(
            sid=self._sid("PN"),
            phone_number=phone_number,
            friendly_name=f"Number {phone_number}",
            sms_url=sms_url,
            voice_url=voice_url,
            status_callback=status_callback,
        )
        self.numbers.append(number)
        return number

    def labelled(self, prefix: str, kind: Optional[ResourceKind] = None) -> list[ManagedResource]:
        """Resources whose label starts with prefix."""
        kinds = [kind] if kind else list(ResourceKind)
        return [
            r
            for k in kinds
            for r in self.resources[k]
            if has_label_prefix(r.label, prefix)
        ]

    def number(self, phone_number: str = PHONE_NUMBER) -> PhoneNumber:
        return next(n for n in self.numbers if n.phone_number == phone_number)

    def _add(self, resource: ManagedResource) -> ManagedResource:
        self.resources[resource.kind].append(resource)
        return resource

    # === ResourceRepository ===

    async def list_resources(self, kind: ResourceKind) -> list[ManagedResource]:
        self._record(f"list:{kind.value}")
        return list(self.resources[kind])

    async def remove(self, resource: ManagedResource) -> None:
        self._record(f"remove:{resource.kind.value}")
        self.resources[resource.kind] = [
            r for r in self.resources[resource.kind] if r.remote_id != resource.remote_id
        ]

    async def create_credential(self, label: str) -> Credential:
        self._record("create:credential")
        sid = self._sid("SK")
        self._add(ManagedResource(kind=ResourceKind.CREDENTIAL, remote_id=sid, label=label))
        return Credential(sid=sid, secret=f"secret-{sid}", minted=True)

    async def create_call_history_store(self, label: str, map_name: str) -> ManagedResource:
        self._record("create:call_history_store")
        return self._add(ManagedResource(
            kind=ResourceKind.CALL_HISTORY_STORE,
            remote_id=self._sid("IS"),
            label=label,
            fields={"map_name": map_name},
        ))

    async def create_conversation(self, label: str, identity: str) -> ManagedResource:
        self._record("create:conversation")
        service_sid = self._sid("IS")
        return self._add(ManagedResource(
            kind=ResourceKind.CONVERSATION,
            remote_id=service_sid,
            label=label,
            fields={
                "service_sid": service_sid,
                "conversation_sid": self._sid("CH"),
                "participant": identity,
            },
        ))

    async def deploy_webhook_backend(
        self,
        label: str,
        env: dict[str, str],
        on_update: Optional[DeployListener] = None,
    ) -> ManagedResource:
        self._record("create:webhook_backend")
        self.deployed_env = dict(env)
        if on_update:
            on_update({"status": "deployed", "message": "Deployed"})
        return self._add(ManagedResource(
            kind=ResourceKind.WEBHOOK_BACKEND,
            remote_id=self._sid("ZS"),
            label=label,
            fields={"domain": f"{label}-4321-dev.twil.io"},
        ))

    async def create_voice_app(self, label: str, voice_url: str) -> ManagedResource:
        self._record("create:voice_app")
        return self._add(ManagedResource(
            kind=ResourceKind.VOICE_APP,
            remote_id=self._sid("AP"),
            label=label,
            fields={"voice_url": voice_url},
        ))

    # === PhoneNumberClient ===

    async def list_phone_numbers(self, phone_number: Optional[str] = None) -> list[PhoneNumber]:
        self._record("list:phone_numbers", RemoteError)
        return [
            copy.copy(n)
            for n in self.numbers
            if phone_number is None or n.phone_number == phone_number
        ]

    async def update_phone_number(
        self,
        sid: str,
        voice_url: str,
        sms_url: str,
        status_callback: str,
    ) -> PhoneNumber:
        self._record("update:phone_number", RemoteError)
        number = next(n for n in self.numbers if n.sid == sid)
        number.voice_url = voice_url
        number.sms_url = sms_url
        number.status_callback = status_callback
        return copy.copy(number)

    async def send_message(self, body: str, from_: str, to: str) -> dict:
        self._record("send:message", RemoteError)
        message = {"sid": self._sid("SM"), "body": body, "from": from_, "to": to, "status": "queued"}
        self.sent.append(message)
        return message


def make_settings(**overrides) -> Settings:
    """Settings isolated from the environment and any .env file."""
    values = {
        "twilio_account_sid": ACCOUNT_SID,
        "twilio_auth_token": "auth-token",
        "twilio_api_key": "",
        "twilio_api_secret": "",
        "port": 1337,
        "phone_number": None,
        "force": False,
        "clear": False,
        "headless": True,
        "debug": False,
        "ui_dir": None,
        "sweep_on_failure": True,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    """Settings for a profile configured with account credentials."""
    return make_settings()


@pytest.fixture
def api_key_settings() -> Settings:
    """Settings for a profile carrying its own API key."""
    return make_settings(twilio_api_key="SK" + "1" * 32, twilio_api_secret="profile-secret")


@pytest.fixture
def account() -> FakeTwilioAccount:
    return FakeTwilioAccount()


@pytest.fixture
def session() -> Session:
    return Session(name=SESSION_NAME)


@pytest.fixture
def controller(settings, account, session) -> LifecycleController:
    return LifecycleController(settings, account, session=session)

