"""
Modelo de identidad y roles.

Tablas estáticas que responden:
- Qué vistas puede abrir cada rol
- Quién puede autorizar importes
- Quién puede capturar trámites o administrar usuarios

Las tablas son funciones puras: sin estado ni efectos secundarios.
`require_principal` y `ensure_unit_scope` son las guardas que usan los
servicios antes de operar; lanzan en vez de devolver bool.
"""

from __future__ import annotations

from .domain_models import Role, Usuario
from .errors import InvalidSession, Unauthorized


VIEW_DASHBOARD = "dashboard"
VIEW_TRAMITES = "tramites"
VIEW_NUEVO = "nuevo"
VIEW_CENTRAL = "central"
VIEW_ADMIN_USERS = "adminUsers"

ALL_VIEWS = (VIEW_DASHBOARD, VIEW_TRAMITES, VIEW_NUEVO, VIEW_CENTRAL, VIEW_ADMIN_USERS)

# El orden importa: la primera vista es la de aterrizaje tras el login.
TABS_BY_ROLE: dict[Role, tuple[str, ...]] = {
    Role.CAPTURISTA_UNIDAD: (VIEW_DASHBOARD, VIEW_TRAMITES, VIEW_NUEVO),
    Role.VALIDADOR_PRESTACIONES: (VIEW_DASHBOARD, VIEW_TRAMITES, VIEW_CENTRAL),
    Role.AUTORIZADOR_JSDP_DSPNC: (VIEW_DASHBOARD, VIEW_TRAMITES, VIEW_CENTRAL),
    Role.CONSULTA_CENTRAL: (VIEW_DASHBOARD, VIEW_TRAMITES, VIEW_CENTRAL),
    Role.ADMIN_SISTEMA: ALL_VIEWS,
}

DEFAULT_TABS: tuple[str, ...] = (VIEW_DASHBOARD, VIEW_TRAMITES)

AMOUNT_AUTHORIZERS = frozenset({Role.ADMIN_SISTEMA, Role.AUTORIZADOR_JSDP_DSPNC})


def _as_role(role: Role | str | None) -> Role | None:
    if role is None:
        return None
    try:
        return Role(role)
    except ValueError:
        return None


def tabs_for_role(role: Role | str | None) -> frozenset[str]:
    """
    Devuelve el conjunto de vistas accesibles para un rol.

    Un rol desconocido recibe las vistas mínimas (dashboard y trámites).
    """
    return frozenset(TABS_BY_ROLE.get(_as_role(role), DEFAULT_TABS))


def default_view_for_role(role: Role | str | None) -> str:
    """Vista a la que se redirige al usuario tras iniciar sesión."""
    return TABS_BY_ROLE.get(_as_role(role), DEFAULT_TABS)[0]


def can_access_view(role: Role | str | None, view: str) -> bool:
    return view in tabs_for_role(role)


def can_authorize_amount(role: Role | str | None) -> bool:
    """Solo ADMIN_SISTEMA y AUTORIZADOR_JSDP_DSPNC autorizan importes."""
    return _as_role(role) in AMOUNT_AUTHORIZERS


def can_create_tramite(role: Role | str | None) -> bool:
    """CONSULTA_CENTRAL es de solo lectura; el resto puede capturar."""
    parsed = _as_role(role)
    return parsed is not None and parsed is not Role.CONSULTA_CENTRAL


def is_unit_scoped(role: Role | str | None) -> bool:
    """Los capturistas solo ven y editan trámites de su unidad."""
    return _as_role(role) is Role.CAPTURISTA_UNIDAD


def can_manage_users(role: Role | str | None) -> bool:
    return _as_role(role) is Role.ADMIN_SISTEMA


def require_principal(actor: Usuario | None) -> Usuario:
    """
    Valida que la operación venga de un usuario autenticado y activo.

    Raises:
        InvalidSession: Si no hay principal o está dado de baja.
    """
    if actor is None or not actor.id:
        raise InvalidSession("Sesión inválida o expirada. Inicia sesión nuevamente.")
    if not actor.activo:
        raise InvalidSession("El usuario está inactivo.")
    return actor


def ensure_unit_scope(actor: Usuario, unidad: str) -> None:
    """
    Un capturista solo opera trámites de su propia unidad.

    Raises:
        Unauthorized: Si el trámite pertenece a otra unidad.
    """
    if is_unit_scoped(actor.role) and (unidad or "").strip().upper() != (actor.unidad or "").strip().upper():
        raise Unauthorized(
            f"El trámite pertenece a la unidad {unidad}; tu usuario opera la unidad {actor.unidad}."
        )
