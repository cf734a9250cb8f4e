"""
Access token issuance.

The browser client authenticates with a single JWT carrying three grants:
Conversations (messaging), Voice (TwiML App, inbound allowed) and Sync
(call history).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from twilio.jwt.access_token import AccessToken
from twilio.jwt.access_token.grants import ChatGrant, SyncGrant, VoiceGrant

from devphone.core.errors import SigningError
from devphone.core.models import Credential, GrantTargets, Session, SessionToken

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = 24 * 60 * 60


class TokenIssuer:
    """Signs access tokens for the session identity."""

    def __init__(self, account_sid: str, ttl: int = DEFAULT_TOKEN_TTL):
        self.account_sid = account_sid
        self.ttl = ttl

    def issue(
        self,
        session: Session,
        credential: Optional[Credential],
        grants: GrantTargets,
    ) -> SessionToken:
        """
        Build a signed token for session.

        Args:
            session: Session whose name becomes the token identity
            credential: API key and secret to sign with
            grants: Conversation service, TwiML App and Sync service SIDs

        Returns:
            SessionToken valid for ``ttl`` seconds

        Raises:
            SigningError: No credential, or a grant target does not exist yet
        """
        if credential is None or not credential.sid or not credential.secret:
            raise SigningError("No API key is available to sign the access token")

        missing = grants.missing()
        if missing:
            raise SigningError(
                f"Cannot issue an access token before these resources exist: {', '.join(missing)}"
            )
        if not self.account_sid:
            raise SigningError("No account SID is configured")

        token = AccessToken(
            self.account_sid,
            credential.sid,
            credential.secret,
            identity=session.name,
            ttl=self.ttl,
        )
        token.add_grant(ChatGrant(service_sid=grants.messaging))
        token.add_grant(
            VoiceGrant(
                incoming_allow=True,
                outgoing_application_sid=grants.voice,
            )
        )
        token.add_grant(SyncGrant(service_sid=grants.call_history))

        value = token.to_jwt()
        if isinstance(value, bytes):
            value = value.decode("utf-8")

        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.ttl)
        logger.debug(f"Issued access token for {session.name}, expires {expires_at.isoformat()}")

        return SessionToken(value=value, expires_at=expires_at, grants=grants)
