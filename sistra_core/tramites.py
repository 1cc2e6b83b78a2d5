"""
Gestor del ciclo de vida de trámites.

Crea, actualiza, elimina y consulta trámites aplicando:
- La compuerta de rol y unidad del usuario que opera
- Las reglas de validación de captura
- El tope de dotaciones por contrato colectivo y beneficiario
- El grafo de estatus y la compuerta de permisos por rol

Toda falla de regla de negocio (workflow, tope, permiso) se registra en
bitácora ANTES de lanzar el error. Las fallas de validación de campos no se
registran: son ruido corregible por el usuario.

El usuario que opera se recibe siempre como parámetro explícito; este
módulo no lee ninguna sesión global.
"""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Dict

from .audit import build_entry, safe_append
from .commands import (
    CambioEstatus,
    CrearTramite,
    EdicionBeneficiario,
    EdicionProceso,
    EdicionReceta,
    parse_comando,
)
from .config import Settings, get_settings
from .core.abstractions import AuditSink, DocumentStore
from .domain_models import (
    Beneficiario,
    Bitacora,
    CategoriaBitacora,
    EstatusWorkflow,
    Role,
    Tramite,
    Usuario,
)
from .errors import (
    CapExceeded,
    ConcurrentModification,
    InvalidInput,
    NotFound,
    TransitionDenied,
    Unauthorized,
    WorkflowViolation,
)
from .roles import (
    can_authorize_amount,
    can_create_tramite,
    ensure_unit_scope,
    is_unit_scoped,
    require_principal,
)
from .scope import (
    count_same_scope,
    matching_tramites,
    normalize_contract,
    normalize_nss,
    same_contract,
    same_scope,
)
from .validators import (
    first_violation,
    validate_child_rules,
    validate_create,
    validate_create_step1,
    validate_create_step2,
)
from .workflow import (
    FULFILLMENT_ROLES,
    allowed_next,
    authorization_stamp,
    can_update_status,
    describe_allowed,
    validate_transition,
)

logger = logging.getLogger(__name__)

COLLECTION = "tramites"
BITACORA = "bitacora"
CUPOS = "cupos"

MSG_CREATE_DENIED = "Tu rol no tiene permiso para capturar trámites."
MSG_CONTRATO_REQUIRED = "El contrato colectivo aplicable es obligatorio."


def generate_folio(unidad: str, consecutivo: int, anio: int | None = None) -> str:
    """
    Folio legible del trámite: OOAD-<UNIDAD>-<AÑO>-<consecutivo de 5 dígitos>.

    >>> generate_folio("UMF-01", 7, 2026)
    'OOAD-UMF-01-2026-00007'
    """
    anio = anio or datetime.now(UTC).replace(tzinfo=None).year
    return f"OOAD-{unidad}-{anio}-{consecutivo:05d}"


@dataclass
class _ScopeLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class _ScopeLocks:
    """
    Un lock por (NSS del titular, contrato), compartido por todo el proceso.

    Serializa la lectura del historial y la escritura del alta para que dos
    capturas simultáneas no vean ambas el mismo conteo. La entrada se
    descarta cuando el último hilo que la usa la suelta.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], _ScopeLock] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, nss: str, contrato: str):
        key = (normalize_nss(nss), normalize_contract(contrato))
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _ScopeLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if not entry.holders:
                    del self._locks[key]


_SCOPE_LOCKS = _ScopeLocks()
_FOLIO_LOCK = threading.Lock()

_CUPO_NAMESPACE = uuid.UUID("6f1c2b0e-6c55-4d7e-9a43-5d1b8f2e0c71")


def cupo_id(nss: str, contrato: str) -> str:
    """ID estable del token de cupo de un (NSS del titular, contrato)."""
    return str(uuid.uuid5(_CUPO_NAMESPACE, f"{normalize_nss(nss)}|{normalize_contract(contrato)}"))


class TramiteService:
    """
    Orquestador de altas y actualizaciones de trámites.

    Args:
        store: Almacén de documentos (colecciones "tramites" y "bitacora").
        audit_sink: Destino de la bitácora.
        settings: Configuración; si no se pasa, `get_settings()`.
    """

    def __init__(self, store: DocumentStore, audit_sink: AuditSink, settings: Settings | None = None):
        self.store = store
        self.audit_sink = audit_sink
        self.settings = settings or get_settings()

    # ============================================================
    # Helpers internos
    # ============================================================

    def _audit(
        self,
        tramite_id: str,
        actor: Usuario,
        accion: str,
        descripcion: str,
        categoria: CategoriaBitacora = CategoriaBitacora.WORKFLOW,
        datos: Dict[str, Any] | None = None,
    ) -> None:
        safe_append(
            self.audit_sink,
            build_entry(tramite_id, actor.nombre, accion, descripcion, categoria, datos),
        )

    def _load(self, tramite_id: str) -> Tramite:
        record = self.store.get(COLLECTION, tramite_id)
        if not record:
            raise NotFound(f"Trámite {tramite_id} no encontrado")
        return Tramite.from_dict(record)

    def _history(self, nss: str) -> list[Tramite]:
        """Trámites más recientes del mismo NSS de titular (acotado)."""
        records = self.store.query(
            COLLECTION,
            filters={"beneficiario.nss_trabajador": normalize_nss(nss)},
            order_by="fecha_creacion",
            descending=True,
            limit=self.settings.historial_limite,
        )
        return [Tramite.from_dict(r) for r in records]

    def _next_folio(self, unidad: str) -> str:
        anio = datetime.now(UTC).replace(tzinfo=None).year
        prefix = f"OOAD-{unidad}-{anio}-"
        consecutivo = 0
        for record in self.store.query(COLLECTION, filters={"unidad": unidad}):
            folio = record.get("folio") or ""
            if folio.startswith(prefix):
                try:
                    consecutivo = max(consecutivo, int(folio[len(prefix):]))
                except ValueError:
                    continue
        return generate_folio(unidad, consecutivo + 1, anio)

    def _persist(self, tramite: Tramite, partial: Dict[str, Any]) -> Tramite:
        self.store.update(COLLECTION, tramite.id, partial, expected_version=tramite.version)
        return self._load(tramite.id)

    def _cupo_version(self, nss: str, contrato: str) -> int | None:
        record = self.store.get(CUPOS, cupo_id(nss, contrato))
        return None if record is None else record["version"]

    def _bump_cupo(self, nss: str, contrato: str, token: int | None) -> None:
        marca = {"ultima_escritura": datetime.now(UTC).replace(tzinfo=None)}
        if token is None:
            self.store.insert(CUPOS, {
                "id": cupo_id(nss, contrato),
                "nss_trabajador": normalize_nss(nss),
                "contrato": normalize_contract(contrato),
                **marca,
            })
        else:
            self.store.update(CUPOS, cupo_id(nss, contrato), marca, expected_version=token)

    def _claim_cupo(self, nss: str, contrato: str, write, undo):
        """
        Ejecuta `write()` (conteo + escritura) y reclama el token del cupo.

        El token se lee antes de contar y se avanza con `expected_version`
        después de escribir. Si otro escritor, en este u otro proceso, lo
        avanzó en medio, se revierte con `undo(resultado)` y se reintenta;
        el reintento ya ve el registro del otro escritor en el conteo.

        Raises:
            CapExceeded: Lo que lance `write()`.
            ConcurrentModification: Se agotaron los reintentos.
        """
        intentos = self.settings.concurrencia_max_reintentos
        for intento in range(1, intentos + 1):
            with _SCOPE_LOCKS.hold(nss, contrato):
                token = self._cupo_version(nss, contrato)
                result = write()
                try:
                    self._bump_cupo(nss, contrato, token)
                except ConcurrentModification:
                    undo(result)
                    logger.warning(
                        f"Cupo {normalize_nss(nss)}/{normalize_contract(contrato)} ocupado por otro "
                        f"escritor (intento {intento} de {intentos})"
                    )
                    continue
                return result
        raise ConcurrentModification(
            f"No fue posible registrar el trámite para el contrato {contrato}: "
            "otro usuario lo está modificando. Intenta de nuevo."
        )

    def _deny(
        self,
        tramite: Tramite,
        actor: Usuario,
        accion: str,
        error: Exception,
        datos: Dict[str, Any],
    ) -> None:
        """Registra el rechazo en bitácora y después lanza el error."""
        self._audit(tramite.id, actor, accion, str(error), CategoriaBitacora.WORKFLOW, datos)
        logger.warning(f"{accion} en {tramite.folio} ({actor.role.value}): {error}")
        raise error

    @staticmethod
    def _normalized_beneficiario(beneficiario: Beneficiario) -> Beneficiario:
        return replace(
            beneficiario,
            nss_trabajador=(beneficiario.nss_trabajador or "").strip(),
            nss_hijo=(beneficiario.nss_hijo or "").strip() or None,
        )

    # ============================================================
    # Alta
    # ============================================================

    def create(self, command: CrearTramite | Dict[str, Any], actor: Usuario | None) -> str:
        """
        Crea un trámite si el beneficiario no alcanzó el tope de dotaciones.

        Returns:
            ID del trámite creado.

        Raises:
            InvalidSession: Sin usuario autenticado.
            Unauthorized: Rol sin permiso de captura (code CREATE_DENIED).
            InvalidInput: Falla de validación de campos.
            CapExceeded: El beneficiario ya tiene el máximo de dotaciones.
        """
        actor = require_principal(actor)
        if not isinstance(command, CrearTramite):
            command = CrearTramite.model_validate(command)

        if not can_create_tramite(actor.role):
            self._audit(
                "",
                actor,
                "CREACION_DENEGADA",
                MSG_CREATE_DENIED,
                CategoriaBitacora.SISTEMA,
                {"role": actor.role.value},
            )
            raise Unauthorized(MSG_CREATE_DENIED, code="CREATE_DENIED")

        beneficiario = self._normalized_beneficiario(command.beneficiario)
        violation = first_violation(
            validate_create(beneficiario, command.receta, command.importe_solicitado, settings=self.settings)
        )
        if violation:
            raise InvalidInput(violation)

        contrato = (command.contrato_colectivo_aplicable or "").strip()
        if not contrato:
            raise InvalidInput(MSG_CONTRATO_REQUIRED)

        tope = self.settings.max_dotaciones_por_contrato
        nss = normalize_nss(beneficiario.nss_trabajador)

        def write() -> Tramite:
            previos = matching_tramites(self._history(nss), beneficiario, contrato)
            count = len(previos)

            if count >= tope:
                message = (
                    f"IMPROCEDENTE: el beneficiario ya cuenta con {count} dotaciones "
                    f"para el contrato {contrato} (máximo {tope})."
                )
                # Se asienta en la bitácora de la dotación más reciente del mismo alcance
                self._audit(
                    previos[0].id,
                    actor,
                    "CREACION_IMPROCEDENTE",
                    message,
                    CategoriaBitacora.WORKFLOW,
                    {
                        "nss_trabajador": nss,
                        "contrato": contrato,
                        "dotaciones_previas": [t.folio for t in previos],
                        "role": actor.role.value,
                    },
                )
                logger.warning(message)
                raise CapExceeded(message, count, contrato)

            dotacion = min(self.settings.max_dotacion_numero, count + 1)
            with _FOLIO_LOCK:
                tramite = Tramite(
                    id="",
                    folio=self._next_folio(actor.unidad),
                    beneficiario=replace(beneficiario, nss_trabajador=nss),
                    contrato_colectivo_aplicable=contrato,
                    receta=command.receta,
                    estatus=EstatusWorkflow.EN_REVISION_DOCUMENTAL,
                    dotacion_numero=dotacion,
                    requiere_dictamen_medico=dotacion >= self.settings.dotacion_requiere_dictamen,
                    fecha_creacion=datetime.now(UTC).replace(tzinfo=None),
                    creador_id=actor.id,
                    unidad=actor.unidad,
                    lugar_solicitud=command.lugar_solicitud,
                    importe_solicitado=float(command.importe_solicitado or 0),
                    clave_presupuestal=command.clave_presupuestal or self.settings.clave_presupuestal_default,
                    qna_inclusion=command.qna_inclusion,
                )
                tramite.id = self.store.insert(COLLECTION, tramite.to_dict())
            return tramite

        tramite = self._claim_cupo(
            nss,
            contrato,
            write,
            undo=lambda t: self.store.delete(COLLECTION, t.id),
        )

        self._audit(
            tramite.id,
            actor,
            "CREACION",
            f"Trámite {tramite.folio} creado exitosamente.",
            CategoriaBitacora.WORKFLOW,
            {"folio": tramite.folio, "dotacion_numero": tramite.dotacion_numero, "contrato": contrato},
        )
        logger.info(f"Trámite {tramite.folio} creado (dotación {tramite.dotacion_numero}, contrato {contrato})")
        return tramite.id

    # ============================================================
    # Actualización
    # ============================================================

    def update(self, tramite_id: str, command: Any, actor: Usuario | None) -> Tramite:
        """
        Aplica un comando de actualización sobre una lectura fresca del trámite.

        Args:
            tramite_id: ID del trámite
            command: `CambioEstatus`, `EdicionBeneficiario`, `EdicionReceta`,
                `EdicionProceso` o un dict con `tipo`
            actor: Usuario que opera

        Returns:
            Trámite actualizado.

        Raises:
            NotFound, Unauthorized, InvalidInput, WorkflowViolation,
            TransitionDenied, CapExceeded, ConcurrentModification
        """
        actor = require_principal(actor)
        if isinstance(command, dict):
            command = parse_comando(command)

        tramite = self._load(tramite_id)
        ensure_unit_scope(actor, tramite.unidad)

        if tramite.estatus is EstatusWorkflow.CERRADO:
            error = WorkflowViolation(
                f"El trámite {tramite.folio} está CERRADO y no admite cambios.",
                allowed_next=(),
            )
            self._deny(tramite, actor, "ACTUALIZACION_RECHAZADA", error, {
                "from": tramite.estatus.value,
                "comando": command.tipo,
                "role": actor.role.value,
            })

        match command:
            case CambioEstatus():
                return self._change_status(tramite, command, actor)
            case EdicionBeneficiario():
                return self._edit_beneficiario(tramite, command, actor)
            case EdicionReceta():
                return self._edit_receta(tramite, command, actor)
            case EdicionProceso():
                return self._edit_proceso(tramite, command, actor)
        raise InvalidInput(f"Comando de actualización no soportado: {type(command).__name__}")

    def _change_status(self, tramite: Tramite, command: CambioEstatus, actor: Usuario) -> Tramite:
        origin = tramite.estatus
        target = command.estatus
        contexto = {"from": origin.value, "to": target.value, "role": actor.role.value}

        if not can_update_status(actor.role, target):
            nexts = allowed_next(origin)
            error = TransitionDenied(
                f"El rol {actor.role.value} no puede mover el trámite a {target.value}. "
                f"Siguientes estatus válidos: {describe_allowed(nexts)}.",
                nexts,
            )
            self._deny(tramite, actor, "TRANSICION_RECHAZADA", error, {
                **contexto,
                "motivo": "PERMISO",
                "allowed_next": [s.value for s in nexts],
            })

        result = validate_transition(origin, target)
        if not result.is_valid:
            error = WorkflowViolation(result.reason, result.allowed_next)
            self._deny(tramite, actor, "TRANSICION_RECHAZADA", error, {
                **contexto,
                "motivo": "GRAFO",
                "allowed_next": [s.value for s in result.allowed_next],
            })

        if command.importe_autorizado is not None and target is not EstatusWorkflow.AUTORIZADO:
            raise InvalidInput("El importe autorizado solo se fija al autorizar el trámite.")

        partial: Dict[str, Any] = {"estatus": target.value}
        if target is EstatusWorkflow.AUTORIZADO and origin is not target:
            importe = command.importe_autorizado
            if importe is None:
                importe = tramite.importe_solicitado
            if importe < 0:
                raise InvalidInput("El importe autorizado no puede ser negativo.")
            partial.update(authorization_stamp(actor, importe))
        if target is EstatusWorkflow.RECHAZADO and command.nota:
            partial["motivo_rechazo"] = command.nota.strip()

        updated = self._persist(tramite, partial)

        if origin is not target:
            self._audit(
                tramite.id,
                actor,
                "TRANSICION_APLICADA",
                f"Estatus {origin.value} -> {target.value}.",
                CategoriaBitacora.WORKFLOW,
                {**contexto, "nota": command.nota} if command.nota else contexto,
            )
            logger.info(f"Trámite {tramite.folio}: {origin.value} -> {target.value} por {actor.nombre}")
        return updated

    def _require_capture_role(self, tramite: Tramite, actor: Usuario, comando: str) -> None:
        if not can_create_tramite(actor.role):
            error = Unauthorized(f"El rol {actor.role.value} no puede editar la captura del trámite.")
            self._deny(tramite, actor, "EDICION_RECHAZADA", error, {
                "comando": comando,
                "role": actor.role.value,
            })

    def _edit_beneficiario(self, tramite: Tramite, command: EdicionBeneficiario, actor: Usuario) -> Tramite:
        self._require_capture_role(tramite, actor, command.tipo)

        beneficiario = self._normalized_beneficiario(command.beneficiario or tramite.beneficiario)
        contrato = tramite.contrato_colectivo_aplicable
        if command.contrato_colectivo_aplicable is not None:
            contrato = command.contrato_colectivo_aplicable.strip()
            if not contrato:
                raise InvalidInput(MSG_CONTRATO_REQUIRED)

        if command.beneficiario is not None:
            violation = first_violation(
                [validate_create_step1(beneficiario)]
                + validate_child_rules(beneficiario, settings=self.settings)
            )
            if violation:
                raise InvalidInput(violation)

        nss = normalize_nss(beneficiario.nss_trabajador)
        beneficiario = replace(beneficiario, nss_trabajador=nss)
        tope = self.settings.max_dotaciones_por_contrato

        # Cambiar de alcance o de contrato es ocupar un lugar nuevo: se renumera
        mismo_lugar = same_contract(tramite.contrato_colectivo_aplicable, contrato) and same_scope(
            tramite.beneficiario, beneficiario
        )
        anterior = {
            "beneficiario": tramite.beneficiario.to_dict(),
            "contrato_colectivo_aplicable": tramite.contrato_colectivo_aplicable,
            "dotacion_numero": tramite.dotacion_numero,
            "requiere_dictamen_medico": tramite.requiere_dictamen_medico,
        }
        vigente = tramite

        def write() -> Tramite:
            count = count_same_scope(self._history(nss), beneficiario, contrato, exclude_id=tramite.id)
            if count >= tope:
                error = CapExceeded(
                    f"IMPROCEDENTE: el beneficiario ya cuenta con {count} dotaciones "
                    f"para el contrato {contrato} (máximo {tope}).",
                    count,
                    contrato,
                )
                self._deny(vigente, actor, "EDICION_IMPROCEDENTE", error, {
                    "nss_trabajador": nss,
                    "contrato": contrato,
                    "role": actor.role.value,
                })
            partial: Dict[str, Any] = {
                "beneficiario": beneficiario.to_dict(),
                "contrato_colectivo_aplicable": contrato,
            }
            if not mismo_lugar:
                dotacion = min(self.settings.max_dotacion_numero, count + 1)
                partial["dotacion_numero"] = dotacion
                partial["requiere_dictamen_medico"] = dotacion >= self.settings.dotacion_requiere_dictamen
            return self._persist(vigente, partial)

        def undo(editado: Tramite) -> None:
            nonlocal vigente
            self.store.update(COLLECTION, editado.id, anterior, expected_version=editado.version)
            vigente = self._load(editado.id)

        updated = self._claim_cupo(nss, contrato, write, undo)

        self._audit(
            tramite.id,
            actor,
            "EDICION_CAPTURA",
            f"Datos del beneficiario actualizados en {tramite.folio}.",
            CategoriaBitacora.WORKFLOW,
            {
                "comando": command.tipo,
                "contrato": {"old": tramite.contrato_colectivo_aplicable, "new": contrato},
                "nss_trabajador": {"old": tramite.beneficiario.nss_trabajador, "new": nss},
                "dotacion_numero": {"old": tramite.dotacion_numero, "new": updated.dotacion_numero},
            },
        )
        return updated

    def _edit_receta(self, tramite: Tramite, command: EdicionReceta, actor: Usuario) -> Tramite:
        self._require_capture_role(tramite, actor, command.tipo)

        receta = command.receta or tramite.receta
        importe = tramite.importe_solicitado if command.importe_solicitado is None else command.importe_solicitado
        violation = validate_create_step2(receta, importe, settings=self.settings)
        if violation:
            raise InvalidInput(violation)

        partial: Dict[str, Any] = {}
        if command.receta is not None:
            partial["receta"] = receta.to_dict()
        if command.importe_solicitado is not None:
            partial["importe_solicitado"] = float(importe)
        if not partial:
            return tramite

        updated = self._persist(tramite, partial)
        self._audit(
            tramite.id,
            actor,
            "EDICION_CAPTURA",
            f"Datos médicos actualizados en {tramite.folio}.",
            CategoriaBitacora.WORKFLOW,
            {"comando": command.tipo, "campos": sorted(partial)},
        )
        return updated

    def _edit_proceso(self, tramite: Tramite, command: EdicionProceso, actor: Usuario) -> Tramite:
        if actor.role is not Role.ADMIN_SISTEMA and actor.role not in FULFILLMENT_ROLES:
            error = Unauthorized(f"El rol {actor.role.value} no puede registrar el proceso de óptica.")
            self._deny(tramite, actor, "EDICION_RECHAZADA", error, {
                "comando": command.tipo,
                "role": actor.role.value,
            })
        if command.costo_solicitud is not None and not can_authorize_amount(actor.role):
            error = Unauthorized(f"El rol {actor.role.value} no puede fijar el costo de la solicitud.")
            self._deny(tramite, actor, "EDICION_RECHAZADA", error, {
                "comando": command.tipo,
                "campo": "costo_solicitud",
                "role": actor.role.value,
            })

        partial = command.model_dump(exclude={"tipo"}, exclude_none=True, mode="json")
        if not partial:
            return tramite

        updated = self._persist(tramite, partial)
        self._audit(
            tramite.id,
            actor,
            "EDICION_CAPTURA",
            f"Proceso de óptica actualizado en {tramite.folio}.",
            CategoriaBitacora.WORKFLOW,
            {"comando": command.tipo, **partial},
        )
        return updated

    # ============================================================
    # Eliminación
    # ============================================================

    def delete(self, tramite_id: str, actor: Usuario | None, confirmacion: str) -> None:
        """
        Elimina un trámite. Solo ADMIN_SISTEMA y con el folio como confirmación.

        La bitácora del trámite se conserva.
        """
        actor = require_principal(actor)
        tramite = self._load(tramite_id)

        if actor.role is not Role.ADMIN_SISTEMA:
            error = Unauthorized("Solo ADMIN_SISTEMA puede eliminar trámites.")
            self._deny(tramite, actor, "ELIMINACION_RECHAZADA", error, {"role": actor.role.value})

        if (confirmacion or "").strip().upper() != tramite.folio.upper():
            raise InvalidInput(f"Para eliminar captura el folio {tramite.folio} como confirmación.")

        self._audit(
            tramite.id,
            actor,
            "ELIMINACION",
            f"Trámite {tramite.folio} eliminado.",
            CategoriaBitacora.SISTEMA,
            {
                "folio": tramite.folio,
                "estatus": tramite.estatus.value,
                "nss_trabajador": tramite.beneficiario.nss_trabajador,
                "contrato": tramite.contrato_colectivo_aplicable,
                "dotacion_numero": tramite.dotacion_numero,
            },
        )
        self.store.delete(COLLECTION, tramite.id)
        logger.info(f"Trámite {tramite.folio} eliminado por {actor.nombre}")

    # ============================================================
    # Consultas
    # ============================================================

    def get(self, tramite_id: str, actor: Usuario | None) -> Tramite:
        actor = require_principal(actor)
        tramite = self._load(tramite_id)
        ensure_unit_scope(actor, tramite.unidad)
        return tramite

    def list_tramites(self, actor: Usuario | None, limit: int | None = None) -> list[Tramite]:
        """
        Trámites más recientes visibles para el usuario.

        Los capturistas solo ven los de su unidad.
        """
        actor = require_principal(actor)
        filters = {"unidad": actor.unidad} if is_unit_scoped(actor.role) else None
        records = self.store.query(
            COLLECTION,
            filters=filters,
            order_by="fecha_creacion",
            descending=True,
            limit=limit or self.settings.listado_limite,
        )
        return [Tramite.from_dict(r) for r in records]

    def get_bitacora(self, tramite_id: str) -> list[Bitacora]:
        """Bitácora del trámite, de la más antigua a la más reciente."""
        records = self.store.query(
            BITACORA,
            filters={"tramite_id": tramite_id},
            order_by="fecha",
            descending=False,
        )
        return [Bitacora.from_dict(r) for r in records]

    def historial_dotaciones(self, tramite_id: str, actor: Usuario | None) -> list[Tramite]:
        """
        Dotaciones del mismo beneficiario y contrato (incluye la propia),
        ordenadas por número de dotación. Alimenta la tarjeta de control.
        """
        tramite = self.get(tramite_id, actor)
        historial = matching_tramites(
            self._history(tramite.beneficiario.nss_trabajador),
            tramite.beneficiario,
            tramite.contrato_colectivo_aplicable,
        )
        return sorted(historial, key=lambda t: (t.dotacion_numero, t.fecha_creacion or datetime.min))
