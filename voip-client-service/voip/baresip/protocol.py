"""
Protocolo ctrl_tcp do baresip.

Mensagens JSON enquadradas como netstrings: "<len>:<payload>,"

Comando:  {"command": "dial", "params": "sip:bob@host", "token": "dial_cmd_1"}
Resposta: {"response": true, "ok": true, "data": "...", "token": "dial_cmd_1"}
Evento:   {"event": true, "class": "call", "type": "CALL_ESTABLISHED", "id": "...", ...}

Referências:
- https://github.com/baresip/baresip/blob/main/modules/ctrl_tcp/ctrl_tcp.c
"""

import asyncio
import json
from typing import Any, Dict, Union

from ..core.errors import BaresipProtocolError
from ..core.events import BaresipEvent, BaresipEventType, BaresipResponse

MAX_NETSTRING_LENGTH = 1024 * 1024
MAX_LENGTH_DIGITS = len(str(MAX_NETSTRING_LENGTH))


def encode_netstring(payload: bytes) -> bytes:
    return str(len(payload)).encode("ascii") + b":" + payload + b","


async def read_netstring(reader: asyncio.StreamReader) -> bytes:
    """
    Lê um netstring completo.

    Raises:
        asyncio.IncompleteReadError: conexão fechada no meio do frame (ou antes)
        BaresipProtocolError: frame malformado
    """
    try:
        header = await reader.readuntil(b":")
    except asyncio.LimitOverrunError as e:
        raise BaresipProtocolError("netstring length prefix too long") from e

    length_str = header[:-1]
    if not length_str.isdigit() or len(length_str) > MAX_LENGTH_DIGITS:
        raise BaresipProtocolError(f"invalid netstring length prefix {length_str[:16]!r}")

    length = int(length_str)
    if length > MAX_NETSTRING_LENGTH:
        raise BaresipProtocolError(f"netstring too large ({length} bytes)")

    data = await reader.readexactly(length + 1)
    if data[-1:] != b",":
        raise BaresipProtocolError("netstring missing trailing comma")
    return data[:-1]


def build_command(command: str, params: str, token: str) -> bytes:
    payload = json.dumps({"command": command, "params": params, "token": token})
    return encode_netstring(payload.encode("utf-8"))


def parse_event(message: Dict[str, Any]) -> BaresipEvent:
    return BaresipEvent(
        type=BaresipEventType.from_wire(message.get("type")),
        call_id=str(message.get("id") or ""),
        account_aor=str(message.get("accountaor") or ""),
        peer_uri=str(message.get("peeruri") or ""),
        direction=str(message.get("direction") or ""),
        param=str(message.get("param") or ""),
        event_class=str(message.get("class") or ""),
        raw=message,
    )


def parse_response(message: Dict[str, Any]) -> BaresipResponse:
    return BaresipResponse(
        ok=bool(message.get("ok")),
        data=str(message.get("data") or ""),
        token=str(message.get("token") or ""),
    )


def parse_message(payload: bytes) -> Union[BaresipEvent, BaresipResponse]:
    """
    Converte o payload de um netstring em evento ou resposta.

    Raises:
        BaresipProtocolError: JSON inválido ou mensagem que não é nem evento nem resposta
    """
    try:
        message = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise BaresipProtocolError(f"invalid JSON from baresip: {e}") from e

    if not isinstance(message, dict):
        raise BaresipProtocolError(f"unexpected message from baresip: {message!r}")

    if message.get("event"):
        return parse_event(message)
    if message.get("response"):
        return parse_response(message)

    raise BaresipProtocolError(f"message is neither event nor response: {str(message)[:200]}")
