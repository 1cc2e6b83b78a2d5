"""
Autenticación y administración de usuarios.

- `SqlAuthProvider`: proveedor del principal para una sesión de UI. Valida
  matrícula y contraseña contra la colección "usuarios".
- `UserAdminService`: altas, bajas, cambio de rol y reseteo de contraseña.
  Solo ADMIN_SISTEMA; todo queda en bitácora con categoría SISTEMA.

Las contraseñas se guardan como hash de `werkzeug.security`; el hash nunca
sale de este módulo.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .audit import build_entry, safe_append
from .config import Settings, get_settings
from .core.abstractions import AuditSink, DocumentStore
from .domain_models import CategoriaBitacora, Role, Usuario
from .errors import InvalidInput, InvalidSession, NotFound, Unauthorized, WeakCredential
from .roles import can_manage_users, require_principal
from .validators import validate_login_input, validate_password_strength

logger = logging.getLogger(__name__)

COLLECTION = "usuarios"

MSG_BAD_CREDENTIALS = "Matrícula o contraseña incorrectas."


def normalize_matricula(matricula: str | None) -> str:
    return (matricula or "").strip().upper()


def _find_by_matricula(store: DocumentStore, matricula: str) -> Optional[Dict[str, Any]]:
    rows = store.query(COLLECTION, filters={"matricula": normalize_matricula(matricula)}, limit=1)
    return rows[0] if rows else None


class SqlAuthProvider:
    """
    Principal de una sesión.

    Se crea una instancia por sesión de UI; no hay estado global.
    """

    def __init__(self, store: DocumentStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()
        self._principal: Optional[Usuario] = None

    def current_principal(self) -> Optional[Usuario]:
        return self._principal

    def sign_in(self, identifier: str, secret: str) -> Usuario:
        """
        Inicia sesión con matrícula y contraseña.

        Raises:
            InvalidInput: Formulario incompleto o contraseña demasiado corta.
            InvalidSession: Credenciales incorrectas (mensaje genérico).
            Unauthorized: El usuario existe pero está dado de baja.
        """
        problem = validate_login_input(identifier, secret, settings=self.settings)
        if problem:
            raise InvalidInput(problem)

        matricula = normalize_matricula(identifier)
        record = _find_by_matricula(self.store, matricula)
        if not record or not check_password_hash(record.get("password_hash") or "", secret):
            logger.warning(f"Intento de acceso fallido para {matricula}")
            raise InvalidSession(MSG_BAD_CREDENTIALS)

        usuario = Usuario.from_dict(record)
        if not usuario.activo:
            logger.warning(f"Acceso de usuario inactivo: {matricula}")
            raise Unauthorized("Tu usuario está dado de baja. Contacta al administrador.")

        self._principal = usuario
        logger.info(f"Sesión iniciada: {matricula} ({usuario.role.value})")
        return usuario

    def sign_out(self) -> None:
        if self._principal:
            logger.info(f"Sesión cerrada: {self._principal.matricula}")
        self._principal = None


class UserAdminService:
    """Administración de usuarios (solo ADMIN_SISTEMA)."""

    def __init__(self, store: DocumentStore, audit_sink: AuditSink, settings: Settings | None = None):
        self.store = store
        self.audit_sink = audit_sink
        self.settings = settings or get_settings()

    def _require_admin(self, actor: Usuario | None) -> Usuario:
        actor = require_principal(actor)
        if not can_manage_users(actor.role):
            raise Unauthorized("Solo ADMIN_SISTEMA puede administrar usuarios.")
        return actor

    def _check_password(self, password: str) -> None:
        violations = validate_password_strength(password, settings=self.settings)
        if violations:
            raise WeakCredential(violations)

    def _load(self, user_id: str) -> Dict[str, Any]:
        record = self.store.get(COLLECTION, user_id)
        if not record:
            raise NotFound(f"Usuario {user_id} no encontrado")
        return record

    def _audit(self, actor: Usuario, accion: str, descripcion: str, datos: Dict[str, Any]) -> None:
        # Las acciones de usuarios no cuelgan de un trámite
        safe_append(
            self.audit_sink,
            build_entry("", actor.nombre, accion, descripcion, CategoriaBitacora.SISTEMA, datos),
        )

    def create_user(
        self,
        actor: Usuario | None,
        matricula: str,
        nombre: str,
        role: Role | str,
        unidad: str,
        password: str,
        ooad: str = "",
    ) -> Usuario:
        """
        Da de alta un usuario.

        Raises:
            Unauthorized: El actor no es ADMIN_SISTEMA.
            InvalidInput: Datos incompletos o matrícula duplicada.
            WeakCredential: La contraseña no cumple la política.
        """
        actor = self._require_admin(actor)
        matricula = normalize_matricula(matricula)
        nombre = (nombre or "").strip()
        if not matricula or not nombre:
            raise InvalidInput("Matrícula y nombre son obligatorios.")
        try:
            role = Role(role)
        except ValueError:
            raise InvalidInput(f"Rol desconocido: {role}") from None
        self._check_password(password)

        if _find_by_matricula(self.store, matricula):
            raise InvalidInput(f"Ya existe un usuario con la matrícula {matricula}.")

        usuario = Usuario(
            id="",
            nombre=nombre,
            role=role,
            unidad=(unidad or "").strip(),
            matricula=matricula,
            ooad=(ooad or "").strip(),
        )
        data = usuario.to_dict()
        data.pop("id")
        data["password_hash"] = generate_password_hash(password)
        usuario.id = self.store.insert(COLLECTION, data)

        self._audit(actor, "USUARIO_CREADO", f"Alta del usuario {matricula}.", {
            "usuario_id": usuario.id,
            "matricula": matricula,
            "role": role.value,
            "unidad": usuario.unidad,
        })
        logger.info(f"Usuario {matricula} ({role.value}) creado por {actor.nombre}")
        return usuario

    def reset_password(self, actor: Usuario | None, user_id: str, new_password: str) -> None:
        actor = self._require_admin(actor)
        record = self._load(user_id)
        self._check_password(new_password)
        self.store.update(COLLECTION, user_id, {"password_hash": generate_password_hash(new_password)})
        self._audit(actor, "PASSWORD_RESTABLECIDO", f"Contraseña restablecida para {record.get('matricula')}.", {
            "usuario_id": user_id,
        })

    def deactivate_user(self, actor: Usuario | None, user_id: str) -> Usuario:
        actor = self._require_admin(actor)
        if user_id == actor.id:
            raise InvalidInput("No puedes dar de baja tu propio usuario.")
        record = self._load(user_id)
        self.store.update(COLLECTION, user_id, {"activo": False})
        self._audit(actor, "USUARIO_DESACTIVADO", f"Baja del usuario {record.get('matricula')}.", {
            "usuario_id": user_id,
        })
        return Usuario.from_dict(self._load(user_id))

    def change_role(self, actor: Usuario | None, user_id: str, role: Role | str) -> Usuario:
        actor = self._require_admin(actor)
        try:
            role = Role(role)
        except ValueError:
            raise InvalidInput(f"Rol desconocido: {role}") from None
        record = self._load(user_id)
        previous = record.get("role")
        self.store.update(COLLECTION, user_id, {"role": role.value})
        self._audit(actor, "ROL_CAMBIADO", f"Rol de {record.get('matricula')}: {previous} -> {role.value}.", {
            "usuario_id": user_id,
            "old": previous,
            "new": role.value,
        })
        return Usuario.from_dict(self._load(user_id))

    def list_users(self, actor: Usuario | None, solo_activos: bool = False) -> List[Usuario]:
        self._require_admin(actor)
        filters = {"activo": True} if solo_activos else None
        rows = self.store.query(COLLECTION, filters=filters, order_by="nombre", descending=False)
        return [Usuario.from_dict(r) for r in rows]


def bootstrap_admin(
    store: DocumentStore,
    matricula: str,
    nombre: str,
    unidad: str,
    password: str,
    ooad: str = "",
    settings: Settings | None = None,
) -> Usuario:
    """
    Crea el primer ADMIN_SISTEMA sin actor previo (lo usa la CLI).

    Raises:
        WeakCredential: La contraseña no cumple la política.
        InvalidInput: La matrícula ya existe.
    """
    violations = validate_password_strength(password, settings=settings)
    if violations:
        raise WeakCredential(violations)
    matricula = normalize_matricula(matricula)
    if _find_by_matricula(store, matricula):
        raise InvalidInput(f"Ya existe un usuario con la matrícula {matricula}.")

    usuario = Usuario(
        id="",
        nombre=nombre.strip(),
        role=Role.ADMIN_SISTEMA,
        unidad=unidad.strip(),
        matricula=matricula,
        ooad=ooad.strip(),
    )
    data = usuario.to_dict()
    data.pop("id")
    data["password_hash"] = generate_password_hash(password)
    usuario.id = store.insert(COLLECTION, data)
    logger.info(f"Administrador inicial {matricula} creado")
    return usuario
