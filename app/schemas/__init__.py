"""Schema package exports."""
from .procedure import MAX_TIMEOUT_SECONDS, ErrorRead, ProcedureRunRead, ProcedureRunRequest

__all__ = [
    "MAX_TIMEOUT_SECONDS",
    "ErrorRead",
    "ProcedureRunRead",
    "ProcedureRunRequest",
]
