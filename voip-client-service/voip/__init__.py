# VoIP Client Module
# Chamadas de saída com mensagem falada via baresip (ctrl_tcp)
#
# Componentes:
# - core/: FSM do ciclo de vida da chamada, notifier e worker único
# - baresip/: cliente da conexão de controle do baresip
# - config_loader.py: opções do add-on
# - server.py: montagem do serviço (uvicorn + FastAPI)

# Lazy imports para evitar RuntimeWarning quando executado como módulo
# Use: from voip.server import VoipClientServer

__all__ = [
    "VoipClientServer",
    "CallStateMachine",
    "CallOrchestrator",
]


def __getattr__(name: str):
    """
    Lazy import para evitar RuntimeWarning.

    Quando executamos 'python -m voip', o __init__.py é carregado antes
    do __main__.py; imports diretos do server puxariam FastAPI e uvicorn
    para qualquer `import voip.core`.
    """
    if name == "VoipClientServer":
        from .server import VoipClientServer
        return VoipClientServer
    elif name == "CallStateMachine":
        from .core.state_machine import CallStateMachine
        return CallStateMachine
    elif name == "CallOrchestrator":
        from .core.orchestrator import CallOrchestrator
        return CallOrchestrator
    raise AttributeError(f"module 'voip' has no attribute {name!r}")
