"""
Webhook binding for the dev phone's phone number.

Points a phone number's voice, SMS and status callback URLs at the session's
webhook backend and resets them again on shutdown.
"""

import logging
from typing import Optional

from devphone.core.errors import ConflictError, NotFoundError
from devphone.core.models import PhoneNumber, PhoneNumberBinding, WebhookUrls
from devphone.core.provisioning.repository import PhoneNumberClient

logger = logging.getLogger(__name__)

# New numbers come configured with Twilio's demo handlers; those are not
# considered user configuration.
DEFAULT_SMS_URLS = frozenset({
    "https://demo.twilio.com/welcome/sms/reply",
    "https://demo.twilio.com/welcome/sms/reply/",
})
DEFAULT_VOICE_URLS = frozenset({
    "https://demo.twilio.com/welcome/voice",
    "https://demo.twilio.com/welcome/voice/",
})


def is_sms_url_set(url: Optional[str]) -> bool:
    """Check if a number has a user-configured SMS webhook."""
    return bool(url) and url not in DEFAULT_SMS_URLS


def is_voice_url_set(url: Optional[str]) -> bool:
    """Check if a number has a user-configured voice webhook."""
    return bool(url) and url not in DEFAULT_VOICE_URLS


class WebhookBinder:
    """
    Attaches and detaches the webhook backend's URLs to a phone number.

    A number already carrying SMS or voice webhooks is only taken over when
    forced; the previous configuration is captured on the binding.
    """

    def __init__(self, client: PhoneNumberClient):
        self.client = client

    async def lookup(self, phone_number: str) -> PhoneNumber:
        """
        Find the account's number matching phone_number.

        Raises:
            NotFoundError: Zero or more than one number matched
        """
        matches = await self.client.list_phone_numbers(phone_number=phone_number)
        if len(matches) != 1:
            logger.warning(
                f"Phone number lookup for {phone_number} returned {len(matches)} matches"
            )
            if not matches:
                raise NotFoundError(
                    f"The phone number {phone_number} is not associated with your Twilio account"
                )
            raise NotFoundError(f"The phone number {phone_number} matched {len(matches)} numbers")
        return matches[0]

    @staticmethod
    def conflicts(number: PhoneNumber) -> list[str]:
        """Names of the webhooks already configured on number."""
        found = []
        if is_sms_url_set(number.sms_url):
            found.append("SMS webhook URL")
        if is_voice_url_set(number.voice_url):
            found.append("Voice webhook URL")
        return found

    def check(self, number: PhoneNumber, force: bool = False) -> None:
        """
        Raise ConflictError if binding number would overwrite its webhooks.

        Args:
            number: Number to bind
            force: Overwrite existing configuration
        """
        found = self.conflicts(number)
        if found and not force:
            raise ConflictError(number.phone_number, found)
        if found:
            logger.warning(
                f"Overwriting {', '.join(found)} on {number.phone_number} (forced)"
            )

    async def bind(
        self,
        number: PhoneNumber,
        urls: WebhookUrls,
        force: bool = False,
    ) -> PhoneNumberBinding:
        """
        Point number's webhooks at the backend.

        Args:
            number: Number to bind
            urls: Backend handler URLs
            force: Overwrite existing configuration

        Returns:
            Binding holding the new URLs and the captured prior ones

        Raises:
            ConflictError: Webhooks are configured and force is not set
        """
        self.check(number, force)

        updated = await self.client.update_phone_number(
            number.sid,
            voice_url=urls.voice_url,
            sms_url=urls.sms_url,
            status_callback=urls.status_callback,
        )
        logger.info(f"Bound {number.phone_number} to the dev phone")

        return PhoneNumberBinding(
            phone_number=number.phone_number,
            sid=number.sid,
            friendly_name=updated.friendly_name or number.friendly_name,
            prior_voice_url=number.voice_url,
            prior_sms_url=number.sms_url,
            prior_status_callback=number.status_callback,
            voice_url=updated.voice_url or "",
            sms_url=updated.sms_url or "",
            status_callback=updated.status_callback or "",
            bound=True,
        )

    async def unbind(
        self,
        binding: Optional[PhoneNumberBinding],
    ) -> Optional[PhoneNumberBinding]:
        """
        Reset the number's webhooks to empty. No-op when nothing is bound.
        """
        if binding is None or not binding.bound:
            return binding

        await self.client.update_phone_number(
            binding.sid, voice_url="", sms_url="", status_callback=""
        )
        binding.voice_url = ""
        binding.sms_url = ""
        binding.status_callback = ""
        binding.bound = False
        logger.info(f"Removed dev phone webhooks from {binding.phone_number}")
        return binding

    async def rebind(
        self,
        current: Optional[PhoneNumberBinding],
        phone_number: str,
        urls: WebhookUrls,
        force: bool = False,
    ) -> PhoneNumberBinding:
        """
        Move the dev phone to another number.

        The new number is looked up and checked before the current one is
        released, so a failed lookup or conflict leaves the current binding
        in place.

        Raises:
            NotFoundError: phone_number did not match exactly one number
            ConflictError: The new number has webhooks and force is not set
        """
        number = await self.lookup(phone_number)
        if current is not None and current.bound and current.sid == number.sid:
            return current

        self.check(number, force)
        await self.unbind(current)
        return await self.bind(number, urls, force=force)
