"""Signing credential for access tokens."""

import logging

from devphone.config import TwilioProfile
from devphone.core.models import Credential, ResourceKind, Session
from devphone.core.provisioning.repository import ResourceRepository

logger = logging.getLogger(__name__)


class CredentialManager:
    """
    Obtains the API key and secret used to sign access tokens.

    A profile configured with its own API key is reused as is. A profile
    configured with account credentials gets a key minted for the session,
    replacing any key left over from a previous run of the same session.
    """

    def __init__(self, repository: ResourceRepository):
        self.repository = repository

    async def obtain(self, profile: TwilioProfile, session: Session) -> Credential:
        """
        Reuse the profile's API key or mint one labelled with the session name.

        Args:
            profile: Active Twilio profile
            session: Owning session

        Returns:
            Credential with sid and secret

        Raises:
            ProvisionError: Minting the key failed
        """
        if profile.has_api_key:
            logger.info("Using your profile API key")
            return Credential(sid=profile.api_key, secret=profile.api_secret)

        logger.info("Creating a new API Key...")
        await self.destroy_session_keys(session)
        credential = await self.repository.create_credential(session.name)
        logger.info(f"Using the API Key {credential.sid}")
        return credential

    async def destroy_session_keys(self, session: Session) -> None:
        """Remove keys labelled with the session name, at most one stays live."""
        keys = await self.repository.find_by_label_prefix(
            ResourceKind.CREDENTIAL, session.name
        )
        if keys:
            logger.info(f"Removing API Keys for {session.name}")
        for key in keys:
            await self.repository.remove(key)
