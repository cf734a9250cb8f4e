"""Twilio account adapter and webhook backend deployment."""

from devphone.infra.serverless import ServerlessDeployer
from devphone.infra.twilio_client import TwilioAccount, create_client

__all__ = ["ServerlessDeployer", "TwilioAccount", "create_client"]
