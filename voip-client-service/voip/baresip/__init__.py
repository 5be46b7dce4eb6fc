# baresip control module
# Conexão ctrl_tcp (netstring + JSON) com o processo baresip externo
#
# Components:
# - protocol.py: enquadramento netstring e parsing de eventos/respostas
# - client.py: cliente asyncio (comandos com token + stream de eventos)
#
# Referências:
# - https://github.com/baresip/baresip/tree/main/modules/ctrl_tcp

from .client import BaresipClient, DEFAULT_CTRL_PORT
from .protocol import build_command, encode_netstring, parse_message, read_netstring

__all__ = [
    "BaresipClient",
    "DEFAULT_CTRL_PORT",
    "build_command",
    "encode_netstring",
    "parse_message",
    "read_netstring",
]
