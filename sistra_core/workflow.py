"""
Máquina de estados del workflow de trámites.

La tabla `WORKFLOW_TRANSITIONS` es la única fuente de verdad del grafo de
estatus. La validación del grafo y la compuerta de permisos por rol son
independientes: una transición puede ser válida en el grafo y estar
prohibida para el rol, y viceversa. Ambas deben pasar.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Dict, Optional

from .domain_models import EstatusWorkflow, Role, Usuario
from .roles import can_authorize_amount

E = EstatusWorkflow

WORKFLOW_TRANSITIONS: dict[EstatusWorkflow, tuple[EstatusWorkflow, ...]] = {
    E.BORRADOR: (E.EN_REVISION_DOCUMENTAL,),
    E.EN_REVISION_DOCUMENTAL: (E.AUTORIZADO, E.RECHAZADO),
    E.RECHAZADO: (E.EN_REVISION_DOCUMENTAL, E.CERRADO),
    E.AUTORIZADO: (E.ENVIADO_A_OPTICA,),
    E.ENVIADO_A_OPTICA: (E.EN_PROCESO_OPTICA,),
    E.EN_PROCESO_OPTICA: (E.LISTO_PARA_ENTREGA,),
    E.LISTO_PARA_ENTREGA: (E.ENTREGADO,),
    E.ENTREGADO: (E.CERRADO,),
    E.CERRADO: (),
}

PRE_AUTHORIZATION = frozenset({E.BORRADOR, E.EN_REVISION_DOCUMENTAL, E.RECHAZADO})
FULFILLMENT = frozenset({
    E.ENVIADO_A_OPTICA,
    E.EN_PROCESO_OPTICA,
    E.LISTO_PARA_ENTREGA,
    E.ENTREGADO,
    E.CERRADO,
})
# Los documentos se imprimen a partir de la autorización.
PRINTABLE = frozenset({E.AUTORIZADO}) | FULFILLMENT

PRE_AUTHORIZATION_ROLES = frozenset({
    Role.CAPTURISTA_UNIDAD,
    Role.VALIDADOR_PRESTACIONES,
    Role.AUTORIZADOR_JSDP_DSPNC,
})
FULFILLMENT_ROLES = frozenset({Role.VALIDADOR_PRESTACIONES, Role.AUTORIZADOR_JSDP_DSPNC})


@dataclass(frozen=True)
class TransitionResult:
    """
    Resultado de validar una transición en el grafo.

    Attributes:
        is_valid: Si la arista existe (o es un no-op from == to).
        allowed_next: Estatus alcanzables desde el origen.
        reason: Mensaje legible cuando no es válida.
    """

    is_valid: bool
    allowed_next: tuple[EstatusWorkflow, ...]
    reason: Optional[str] = None


def allowed_next(status: EstatusWorkflow | str) -> tuple[EstatusWorkflow, ...]:
    return WORKFLOW_TRANSITIONS.get(EstatusWorkflow(status), ())


def is_terminal(status: EstatusWorkflow | str) -> bool:
    return not allowed_next(status)


def is_printable(status: EstatusWorkflow | str) -> bool:
    return EstatusWorkflow(status) in PRINTABLE


def describe_allowed(statuses: tuple[EstatusWorkflow, ...]) -> str:
    return ", ".join(s.value for s in statuses) if statuses else "NINGUNO"


def validate_transition(
    from_status: EstatusWorkflow | str,
    to_status: EstatusWorkflow | str,
) -> TransitionResult:
    """
    Valida una transición contra el grafo.

    `from == to` siempre es válida: permite escrituras que no cambian el
    estatus. Si la arista no existe, el resultado trae los siguientes
    estatus válidos para que la UI guíe la corrección.
    """
    origin = EstatusWorkflow(from_status)
    target = EstatusWorkflow(to_status)
    nexts = allowed_next(origin)

    if origin is target:
        return TransitionResult(True, nexts)

    if target not in nexts:
        return TransitionResult(
            False,
            nexts,
            f"Transición inválida: {origin.value} -> {target.value}. "
            f"Siguientes estatus válidos: {describe_allowed(nexts)}.",
        )

    return TransitionResult(True, nexts)


def can_update_status(role: Role | str | None, target: EstatusWorkflow | str) -> bool:
    """
    Compuerta de permisos: ¿puede este rol mover un trámite a `target`?

    - ADMIN_SISTEMA siempre.
    - CONSULTA_CENTRAL nunca (solo lectura).
    - AUTORIZADO exige poder autorizar importes.
    - Estatus de surtimiento (ENVIADO_A_OPTICA..CERRADO): validador o autorizador.
    - Estatus previos a la autorización: capturista, validador o autorizador.
    """
    try:
        role = Role(role)
    except ValueError:
        return False
    target = EstatusWorkflow(target)

    if role is Role.ADMIN_SISTEMA:
        return True
    if role is Role.CONSULTA_CENTRAL:
        return False

    match target:
        case E.AUTORIZADO:
            return can_authorize_amount(role)
        case E.ENVIADO_A_OPTICA | E.EN_PROCESO_OPTICA | E.LISTO_PARA_ENTREGA | E.ENTREGADO | E.CERRADO:
            return role in FULFILLMENT_ROLES
        case E.BORRADOR | E.EN_REVISION_DOCUMENTAL | E.RECHAZADO:
            return role in PRE_AUTHORIZATION_ROLES
    return False


def authorization_stamp(
    actor: Usuario,
    importe_autorizado: float | None,
    when: datetime | None = None,
) -> Dict[str, Any]:
    """
    Campos que se estampan en el trámite al autorizarlo.

    Devuelve un dict parcial listo para mezclar en el registro.
    """
    when = when or datetime.now(UTC).replace(tzinfo=None)
    return {
        "importe_autorizado": float(importe_autorizado or 0),
        "validado_por": actor.nombre,
        "nombre_autorizador": actor.nombre,
        "firma_autorizacion": f"AUTORIZADO ELECTRÓNICAMENTE POR {actor.nombre}",
        "fecha_validacion_importe": when.isoformat(),
    }
