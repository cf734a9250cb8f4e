"""
Data models for a dev phone session.

A session owns a fixed graph of remote resources. Resources are never tracked
by id locally beyond the running process; they are rediscovered by label.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ResourceKind(str, Enum):
    """Kinds of remote resources a session provisions."""

    CREDENTIAL = "credential"
    CALL_HISTORY_STORE = "call_history_store"
    CONVERSATION = "conversation"
    WEBHOOK_BACKEND = "webhook_backend"
    VOICE_APP = "voice_app"


# Creation order. Later kinds embed identifiers of earlier ones.
CREATION_ORDER: tuple[ResourceKind, ...] = (
    ResourceKind.CREDENTIAL,
    ResourceKind.CALL_HISTORY_STORE,
    ResourceKind.CONVERSATION,
    ResourceKind.WEBHOOK_BACKEND,
    ResourceKind.VOICE_APP,
)

TEARDOWN_ORDER: tuple[ResourceKind, ...] = tuple(reversed(CREATION_ORDER))


@dataclass
class Session:
    """One run of the dev phone."""

    name: str
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class ManagedResource:
    """
    A remote resource owned by a session.

    Attributes:
        kind: Resource kind
        remote_id: Twilio SID of the resource
        label: Friendly name; starts with the owning session's name
        fields: Kind-specific values, e.g. ``service_sid`` for a conversation
            or ``domain`` for the webhook backend
    """

    kind: ResourceKind
    remote_id: str
    label: Optional[str]
    fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary (secrets excluded)."""
        return {
            "kind": self.kind.value,
            "sid": self.remote_id,
            "label": self.label,
            **{k: v for k, v in self.fields.items() if k != "secret"},
        }


@dataclass(frozen=True)
class Credential:
    """API key used to sign access tokens. The secret lives in memory only."""

    sid: str
    secret: str
    minted: bool = False


@dataclass(frozen=True)
class WebhookUrls:
    """URLs of the deployed webhook backend."""

    voice_url: str
    sms_url: str
    status_callback: str
    voice_outbound_url: str

    @classmethod
    def for_domain(cls, domain: str) -> "WebhookUrls":
        """Build the handler URLs for a deployed backend domain."""
        base = f"https://{domain}"
        return cls(
            voice_url=f"{base}/incoming-call-handler",
            sms_url=f"{base}/incoming-message-handler",
            status_callback=f"{base}/sync-call-history",
            voice_outbound_url=f"{base}/outbound-call-handler",
        )


@dataclass
class PhoneNumber:
    """An incoming phone number on the account."""

    sid: str
    phone_number: str
    friendly_name: Optional[str] = None
    sms_url: Optional[str] = None
    voice_url: Optional[str] = None
    status_callback: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to the shape the UI expects."""
        return {
            "phoneNumber": self.phone_number,
            "friendlyName": self.friendly_name,
            "smsUrl": self.sms_url,
            "voiceUrl": self.voice_url,
            "sid": self.sid,
        }


@dataclass
class PhoneNumberBinding:
    """
    Association between a phone number and the session's webhook backend.

    The prior_* fields capture the configuration found on the number when it
    was bound, so a forced overwrite can be inspected afterwards.
    """

    phone_number: str
    sid: str
    friendly_name: Optional[str] = None
    prior_voice_url: Optional[str] = None
    prior_sms_url: Optional[str] = None
    prior_status_callback: Optional[str] = None
    voice_url: str = ""
    sms_url: str = ""
    status_callback: str = ""
    bound: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "phoneNumber": self.phone_number,
            "friendlyName": self.friendly_name,
            "smsUrl": self.sms_url,
            "voiceUrl": self.voice_url,
            "statusCallback": self.status_callback,
            "sid": self.sid,
            "prior": {
                "smsUrl": self.prior_sms_url,
                "voiceUrl": self.prior_voice_url,
                "statusCallback": self.prior_status_callback,
            },
        }


@dataclass(frozen=True)
class GrantTargets:
    """Resource SIDs an access token grants access to."""

    messaging: Optional[str]
    voice: Optional[str]
    call_history: Optional[str]

    def missing(self) -> list[str]:
        """Names of grant targets without an id."""
        return [
            name
            for name, value in (
                ("messaging", self.messaging),
                ("voice", self.voice),
                ("call_history", self.call_history),
            )
            if not value
        ]

    def to_dict(self) -> dict:
        return {
            "messaging": self.messaging,
            "voice": self.voice,
            "callHistory": self.call_history,
        }


@dataclass(frozen=True)
class SessionToken:
    """A signed access token. Superseded, never revoked."""

    value: str
    expires_at: datetime
    grants: GrantTargets

    @property
    def is_expired(self) -> bool:
        return _utcnow() >= self.expires_at


@dataclass
class ProvisionedResources:
    """Resources created for the current session, by kind."""

    items: dict[ResourceKind, ManagedResource] = field(default_factory=dict)

    def get(self, kind: ResourceKind) -> Optional[ManagedResource]:
        return self.items.get(kind)

    def add(self, resource: ManagedResource) -> None:
        self.items[resource.kind] = resource

    @property
    def credential(self) -> Optional[Credential]:
        """Signing credential, when one has been obtained."""
        resource = self.get(ResourceKind.CREDENTIAL)
        if resource is None:
            return None
        return Credential(
            sid=resource.remote_id,
            secret=resource.fields.get("secret", ""),
            minted=resource.fields.get("minted", False),
        )

    @property
    def grant_targets(self) -> GrantTargets:
        """Grant targets derived from what has been provisioned so far."""
        conversation = self.get(ResourceKind.CONVERSATION)
        voice_app = self.get(ResourceKind.VOICE_APP)
        store = self.get(ResourceKind.CALL_HISTORY_STORE)
        return GrantTargets(
            messaging=conversation.fields.get("service_sid") if conversation else None,
            voice=voice_app.remote_id if voice_app else None,
            call_history=store.remote_id if store else None,
        )

    def conversation_dict(self) -> Optional[dict]:
        """Conversation ids in the shape the UI expects."""
        conversation = self.get(ResourceKind.CONVERSATION)
        if conversation is None:
            return None
        return {
            "serviceSid": conversation.fields.get("service_sid"),
            "sid": conversation.fields.get("conversation_sid"),
        }


@dataclass
class PluginSettings:
    """Read model served to the UI."""

    dev_phone_name: str
    force_mode: bool = False
    phone_number: Optional[PhoneNumberBinding] = None
    conversation: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "forceMode": self.force_mode,
            "phoneNumber": self.phone_number.to_dict() if self.phone_number else None,
            "devPhoneName": self.dev_phone_name,
            "conversation": self.conversation,
        }
