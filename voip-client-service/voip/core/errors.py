"""
Exceções do orquestrador.

- FSMError: erros reportados pela máquina de estados ao chamador imediato
- BaresipError: erros do adaptador de controle do baresip
- SynthesisError: falha do cliente de TTS
"""

from typing import Optional


class FSMError(Exception):
    """Base para erros da máquina de estados."""


class InvalidStateError(FSMError):
    """Operação não se aplica ao estado atual. Nenhuma transição ocorre."""

    def __init__(self, operation: str, state, message: Optional[str] = None):
        self.operation = operation
        self.state = state
        super().__init__(message or f"{operation} is not valid in state {state}")


class CallCorrelationError(FSMError):
    """Evento refere-se a uma chamada que a FSM não está acompanhando. Indica bug."""

    def __init__(self, operation: str, expected_call_id: str, received_call_id: str):
        self.operation = operation
        self.expected_call_id = expected_call_id
        self.received_call_id = received_call_id
        super().__init__(
            f"{operation}: received call ID {received_call_id!r}, expected {expected_call_id!r}"
        )


class BaresipError(Exception):
    """Base para erros do adaptador baresip."""


class BaresipProtocolError(BaresipError):
    """Frame ou JSON inválido na conexão de controle."""


class BaresipConnectionError(BaresipError):
    """Conexão de controle indisponível ou perdida."""


class BaresipCommandError(BaresipError):
    """Comando não pôde ser enviado, expirou ou foi recusado pelo baresip."""

    def __init__(self, command: str, token: str, reason: str):
        self.command = command
        self.token = token
        self.reason = reason
        super().__init__(f"command {command!r} (token {token}) failed: {reason}")


class SynthesisError(Exception):
    """Falha ao obter o arquivo de áudio do TTS."""


class RegistrationError(BaresipError):
    """O comando de registro do User Agent falhou em todas as tentativas."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"User Agent registration failed after {attempts} attempts: {last_error}")
