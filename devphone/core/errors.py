"""
Error taxonomy for the dev phone.

Every error carries an optional HTTP-style status code. Errors raised by the
Twilio API keep the status the API reported; everything else has none and is
rendered as 400 by the local web server.
"""

from typing import Optional


class DevPhoneError(Exception):
    """Base class for dev phone errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    def to_dict(self) -> dict:
        """Convert to the JSON error body."""
        data: dict = {"message": self.message, "type": type(self).__name__}
        if self.status_code is not None:
            data["status"] = self.status_code
        if self.code is not None:
            data["code"] = self.code
        return data


class RemoteError(DevPhoneError):
    """A Twilio API call failed or timed out."""


class ProvisionError(RemoteError):
    """Creating, listing or removing a managed resource failed."""


class ConflictError(DevPhoneError):
    """The phone number already has webhooks the dev phone would overwrite."""

    def __init__(self, phone_number: str, conflicts: list[str]):
        self.phone_number = phone_number
        self.conflicts = conflicts
        super().__init__(
            f"Cannot use {phone_number} because the following config for that "
            f"phone number would be overwritten: {', '.join(conflicts)}"
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["conflicts"] = self.conflicts
        return data


class NotFoundError(DevPhoneError):
    """A phone number lookup did not return exactly one match."""


class SigningError(DevPhoneError):
    """An access token cannot be signed yet."""
