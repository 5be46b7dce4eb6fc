"""
Core - Máquina de estados e worker do cliente VoIP.

Componentes:
- CallState, BaresipEvent, CallRequest...: entradas tipadas
- StateNotifier: publicação do estado para assinantes temporários
- CallStateMachine: ciclo de vida da chamada (linha única)
- TimeoutManager, TimeoutConfig: tickers periódicos
- CallOrchestrator: worker único que serializa todas as entradas
"""

from .errors import (
    BaresipCommandError,
    BaresipConnectionError,
    BaresipError,
    CallCorrelationError,
    FSMError,
    InvalidStateError,
    RegistrationError,
    SynthesisError,
)
from .events import (
    AdapterConnected,
    BaresipEvent,
    BaresipEventType,
    BaresipResponse,
    CallRequest,
    CallState,
    DialSubmission,
    StatsTick,
    SubmitResult,
    TimeoutTick,
)
from .orchestrator import CallOrchestrator
from .state_machine import CallStateMachine
from .state_notifier import StateNotifier, StateSubscription
from .timeout_manager import TimeoutConfig, TimeoutManager

__all__ = [
    # Eventos
    'AdapterConnected',
    'BaresipEvent',
    'BaresipEventType',
    'BaresipResponse',
    'CallRequest',
    'CallState',
    'DialSubmission',
    'StatsTick',
    'SubmitResult',
    'TimeoutTick',

    # Erros
    'BaresipCommandError',
    'BaresipConnectionError',
    'BaresipError',
    'CallCorrelationError',
    'FSMError',
    'InvalidStateError',
    'RegistrationError',
    'SynthesisError',

    # Estado
    'CallStateMachine',
    'StateNotifier',
    'StateSubscription',

    # Worker
    'CallOrchestrator',
    'TimeoutConfig',
    'TimeoutManager',
]
