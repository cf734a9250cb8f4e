"""
Session Gateway Endpoints

Local API consumed by the dev phone UI. Every handler works against the
controller stored on ``app.state``; errors are rendered as ``{"error": ...}``
by the application's exception handlers.
"""

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from devphone.core.gateway import SessionGateway
from devphone.core.lifecycle import LifecycleController

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Dev Phone"])


def get_controller(request: Request) -> LifecycleController:
    """FastAPI dependency providing the session's controller."""
    return request.app.state.controller


def get_gateway(
    controller: LifecycleController = Depends(get_controller),
) -> SessionGateway:
    """FastAPI dependency providing the session gateway."""
    return controller.gateway


class SendSmsRequest(BaseModel):
    """SMS to send from one of the account's numbers."""

    model_config = ConfigDict(populate_by_name=True)

    body: str = Field(..., min_length=1, description="Message text")
    from_: str = Field(..., alias="from", description="Sender number (E.164)")
    to: str = Field(..., description="Recipient number (E.164)")


class ChoosePhoneNumberRequest(BaseModel):
    """Number to bind the dev phone to."""

    model_config = ConfigDict(populate_by_name=True)

    phone_number: str = Field(
        ...,
        alias="phoneNumber",
        min_length=1,
        examples=["+15551234567"],
    )


@router.get("/ping")
async def ping() -> dict:
    return {"pong": True}


@router.get("/plugin-settings")
async def plugin_settings(gateway: SessionGateway = Depends(get_gateway)) -> dict:
    """Session name, bound phone number and conversation ids."""
    return gateway.plugin_settings()


@router.get("/phone-numbers")
async def phone_numbers(gateway: SessionGateway = Depends(get_gateway)) -> dict:
    """Incoming phone numbers on the account."""
    return await gateway.list_phone_numbers()


@router.post("/send-sms")
async def send_sms(
    request: SendSmsRequest,
    gateway: SessionGateway = Depends(get_gateway),
) -> dict:
    """Send an SMS."""
    return await gateway.send_sms(body=request.body, from_=request.from_, to=request.to)


@router.post("/choose-phone-number")
async def choose_phone_number(
    request: ChoosePhoneNumberRequest,
    gateway: SessionGateway = Depends(get_gateway),
) -> dict:
    """
    Move the dev phone to another number.

    The previous number's webhooks are reset before the new number is bound.
    """
    return await gateway.choose_phone_number(request.phone_number)


@router.get("/client-token")
async def client_token(gateway: SessionGateway = Depends(get_gateway)) -> dict:
    """Access token for the browser client."""
    return await gateway.client_token()
