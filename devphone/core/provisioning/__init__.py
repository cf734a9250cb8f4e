"""
Provisioning Module

Creates a session's remote resources in dependency order and sweeps them away
again, by session or across every dev phone on the account.
"""

from devphone.core.provisioning.credentials import CredentialManager
from devphone.core.provisioning.provisioner import ResourceProvisioner
from devphone.core.provisioning.repository import (
    PhoneNumberClient,
    ResourceRepository,
    TwilioAccountClient,
)

__all__ = [
    "CredentialManager",
    "ResourceProvisioner",
    "PhoneNumberClient",
    "ResourceRepository",
    "TwilioAccountClient",
]
