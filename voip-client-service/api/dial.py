"""
Dial API - Pedido de chamada com mensagem falada.

Endpoints:
- POST /dial - Sintetiza message_tts e liga para called_number/called_contact

Modos (http_rest_server.synchronous):
- assíncrono: 200 assim que a FSM aceita o pedido
- síncrono: 200 com corpo em streaming, terminado quando a chamada acaba
"""

import logging
import re

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask
from pydantic import BaseModel

from voip.core.events import CallRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["dial"])

SIP_URI_PATTERN = re.compile(r"^sip:[^@]+@[^@]+\.[^@]+$")

ASYNC_ACCEPTED_MESSAGE = (
    "Payload is valid. Initiating TTS generation and outgoing call in asynchronous way."
)


class DialRequest(BaseModel):
    """Corpo do POST /dial."""
    called_number: str = ""
    called_contact: str = ""
    message_tts: str = ""

    model_config = {"extra": "ignore", "str_strip_whitespace": True}


def resolve_call_request(payload: DialRequest, options) -> CallRequest:
    """
    Valida o corpo e resolve o contato para a URI SIP.

    Raises:
        HTTPException: 400 com o motivo
    """
    if not payload.called_number and not payload.called_contact:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="called_number or called_contact is required",
        )
    if payload.called_number and payload.called_contact:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only one between called_number and called_contact can be provided",
        )
    if not payload.message_tts:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="message_tts is required",
        )

    if payload.called_number:
        if not SIP_URI_PATTERN.match(payload.called_number):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="called_number must be in the format sip:<number>@<domain>",
            )
        address = payload.called_number
    else:
        address = options.contact_lookup(payload.called_contact)
        if address is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown contact: {payload.called_contact}",
            )
        logger.info(f"Using contact URI {address} for called_contact {payload.called_contact}")

    return CallRequest(address=address, message=payload.message_tts)


@router.post("/dial")
async def dial(payload: DialRequest, request: Request):
    """
    Pede uma chamada para a FSM.

    Raises:
        HTTPException: 400 para corpo inválido, 409 se a FSM rejeitar (ocupada ou sem registro)
    """
    state = request.app.state
    call_request = resolve_call_request(payload, state.options)

    logger.info(
        f"Dial request for {call_request.address}",
        extra={"synchronous": state.synchronous, "message_length": len(call_request.message)}
    )

    if not state.synchronous:
        result = await state.orchestrator.submit(call_request)
        if not result.accepted:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.reason)

        logger.info("Immediately replying with HTTP 200 (asynchronous mode)")
        return PlainTextResponse(ASYNC_ACCEPTED_MESSAGE)

    coordinator = state.sync_wait
    result, subscription = await coordinator.submit(state.orchestrator, call_request)
    if not result.accepted:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.reason)

    logger.info("Replying 200 and streaming until the call completes (synchronous mode)")
    return StreamingResponse(
        coordinator.stream(subscription),
        media_type="text/plain; charset=utf-8",
        # o gerador pode nunca iniciar se o cliente sair antes
        background=BackgroundTask(coordinator.notifier.unsubscribe, subscription),
    )
