"""
Taxonomía de errores del core.

Cada error lleva un `code` estable (para que la UI decida cómo reaccionar)
y un mensaje legible en español que puede mostrarse tal cual.
"""

from __future__ import annotations

from typing import Iterable, Sequence


class SistraError(Exception):
    """Base de todos los errores de negocio del core."""

    code = "SISTRA_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class InvalidSession(SistraError):
    """No hay principal autenticado (o está inactivo)."""

    code = "INVALID_SESSION"


class Unauthorized(SistraError):
    """El rol o la unidad del usuario no permiten la operación."""

    code = "UNAUTHORIZED"


class InvalidInput(SistraError):
    """Falla de validación de campos."""

    code = "INVALID_INPUT"


class WeakCredential(InvalidInput):
    """La contraseña no cumple la política."""

    code = "WEAK_CREDENTIAL"

    def __init__(self, violations: Sequence[str]):
        self.violations = list(violations)
        super().__init__(" ".join(self.violations))


class WorkflowViolation(SistraError):
    """Transición fuera del grafo de estatus (o trámite cerrado)."""

    code = "WORKFLOW_VIOLATION"

    def __init__(self, message: str, allowed_next: Iterable = (), code: str | None = None):
        super().__init__(message, code)
        self.allowed_next = tuple(allowed_next)


class TransitionDenied(Unauthorized, WorkflowViolation):
    """
    El rol no puede mover el trámite al estatus destino.

    Es a la vez `Unauthorized` (negación por rol) y `WorkflowViolation`
    (falla de la compuerta de transición), así que cualquiera de los dos
    `except` lo captura.
    """

    code = "UNAUTHORIZED"

    def __init__(self, message: str, allowed_next: Iterable = ()):
        WorkflowViolation.__init__(self, message, allowed_next)


class CapExceeded(SistraError):
    """El beneficiario ya alcanzó el tope de dotaciones del contrato."""

    code = "CAP_EXCEEDED"

    def __init__(self, message: str, count: int, contrato: str):
        super().__init__(message)
        self.count = count
        self.contrato = contrato


class NotFound(SistraError):
    code = "NOT_FOUND"


class ConcurrentModification(SistraError):
    """Otro usuario modificó el registro entre la lectura y la escritura."""

    code = "CONCURRENT_MODIFICATION"
