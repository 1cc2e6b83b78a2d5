"""
Tests del gestor del ciclo de vida de trámites.

Verifica que:
1) El tope de 2 dotaciones por contrato y alcance se respeta en altas y ediciones,
   también entre instancias del gestor y frente a escritores de otro proceso
2) Cada rechazo de regla de negocio queda en bitácora antes de lanzar
3) Permisos por rol y por unidad
4) Un trámite CERRADO no admite cambios
5) Eliminación solo por ADMIN_SISTEMA con confirmación de folio
"""

import threading
from datetime import UTC, datetime

import pytest

from conftest import make_command, make_hijo, make_receta, make_trabajador
from sistra_core.audit import StoreAuditSink
from sistra_core.commands import CambioEstatus, EdicionBeneficiario, EdicionProceso, EdicionReceta
from sistra_core.config import Settings
from sistra_core.db.store import SqlDocumentStore
from sistra_core.domain_models import EstatusWorkflow as E
from sistra_core.errors import (
    CapExceeded,
    ConcurrentModification,
    InvalidInput,
    InvalidSession,
    NotFound,
    TransitionDenied,
    Unauthorized,
    WorkflowViolation,
)
from sistra_core.tramites import _SCOPE_LOCKS, TramiteService, cupo_id, generate_folio


def _acciones(service, tramite_id):
    return [b.accion for b in service.get_bitacora(tramite_id)]


def _autorizado(service, capturista, autorizador, **kwargs):
    tramite_id = service.create(make_command(**kwargs), capturista)
    service.update(tramite_id, CambioEstatus(estatus=E.AUTORIZADO, importe_autorizado=1200), autorizador)
    return tramite_id


# ============================================================
# Alta y tope de dotaciones
# ============================================================

def test_generate_folio():
    assert generate_folio("UMF-01", 7, 2026) == "OOAD-UMF-01-2026-00007"


def test_worker_reaches_cap_on_third_request(service, store, capturista):
    """Tercera dotación del mismo trabajador y contrato es IMPROCEDENTE."""
    first = service.create(make_command(), capturista)
    second = service.create(make_command(), capturista)

    t1 = service.get(first, capturista)
    t2 = service.get(second, capturista)
    assert t1.dotacion_numero == 1
    assert t1.estatus is E.EN_REVISION_DOCUMENTAL
    assert not t1.requiere_dictamen_medico
    assert t2.dotacion_numero == 2
    assert t1.folio.endswith("-00001")
    assert t2.folio.endswith("-00002")
    assert t1.unidad == "UMF-01"
    assert t1.creador_id == capturista.id

    with pytest.raises(CapExceeded) as exc:
        service.create(make_command(), capturista)
    assert exc.value.count == 2
    assert exc.value.code == "CAP_EXCEEDED"
    assert "máximo 2" in exc.value.message

    assert len(store.query("tramites")) == 2
    # El intento queda asentado en la dotación más reciente
    assert "CREACION_IMPROCEDENTE" in _acciones(service, second)


def test_cap_is_per_contract(service, capturista):
    service.create(make_command(), capturista)
    service.create(make_command(), capturista)
    other = service.create(make_command(contrato="CCT-2027"), capturista)
    assert service.get(other, capturista).dotacion_numero == 1


def test_contract_comparison_ignores_case(service, capturista):
    service.create(make_command(contrato="cct-2025"), capturista)
    service.create(make_command(contrato="CCT-2025 "), capturista)
    with pytest.raises(CapExceeded):
        service.create(make_command(contrato="Cct-2025"), capturista)


def test_children_with_distinct_nss_have_independent_caps(service, capturista):
    for _ in range(2):
        service.create(make_command(make_hijo("11111111111", nombre="Ana")), capturista)
    for _ in range(2):
        tramite_id = service.create(make_command(make_hijo("22222222222", nombre="Luis")), capturista)
    assert service.get(tramite_id, capturista).dotacion_numero == 2

    with pytest.raises(CapExceeded):
        service.create(make_command(make_hijo("11111111111", nombre="Ana")), capturista)


def test_rejected_tramites_still_count(service, capturista, validador):
    first = service.create(make_command(), capturista)
    service.update(first, CambioEstatus(estatus=E.RECHAZADO, nota="Receta ilegible"), validador)
    service.create(make_command(), capturista)
    with pytest.raises(CapExceeded):
        service.create(make_command(), capturista)


def test_create_requires_principal(service):
    with pytest.raises(InvalidSession):
        service.create(make_command(), None)


def test_consulta_central_cannot_create(service, store, consulta):
    with pytest.raises(Unauthorized) as exc:
        service.create(make_command(), consulta)
    assert exc.value.code == "CREATE_DENIED"
    assert store.query("tramites") == []


def test_invalid_input_is_not_audited(service, store, capturista):
    with pytest.raises(InvalidInput):
        service.create(make_command(make_trabajador("123")), capturista)
    with pytest.raises(InvalidInput):
        service.create(make_command(receta=make_receta(descripcion_lente="corto")), capturista)
    with pytest.raises(InvalidInput):
        service.create(make_command(contrato="  "), capturista)
    assert store.query("tramites") == []
    assert store.query("bitacora") == []


def test_create_accepts_plain_dict(service, capturista):
    payload = make_command().model_dump(mode="json")
    tramite_id = service.create(payload, capturista)
    tramite = service.get(tramite_id, capturista)
    assert tramite.beneficiario.nss_trabajador == "12345678901"
    assert tramite.clave_presupuestal == "1A14-009-027"
    assert _acciones(service, tramite_id) == ["CREACION"]


def test_creation_date_is_naive_utc(service, capturista):
    antes = datetime.now(UTC).replace(tzinfo=None)
    tramite = service.get(service.create(make_command(), capturista), capturista)
    assert tramite.fecha_creacion.tzinfo is None
    assert antes <= tramite.fecha_creacion <= datetime.now(UTC).replace(tzinfo=None)


def test_concurrent_creations_respect_cap(tmp_path, settings, capturista):
    """Altas simultáneas del mismo alcance: solo pasan dos."""
    store = SqlDocumentStore.from_url(f"sqlite:///{tmp_path / 'sistra.sqlite'}")
    service = TramiteService(store, StoreAuditSink(store), settings)
    results = []

    def worker():
        try:
            results.append(service.create(make_command(), capturista))
        except CapExceeded as e:
            results.append(e)

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    created = [r for r in results if isinstance(r, str)]
    assert len(created) == 2
    assert len(store.query("tramites")) == 2


def test_two_services_share_the_cap(tmp_path, settings, capturista):
    """Dos instancias del gestor sobre el mismo almacén no rebasan el tope."""
    store = SqlDocumentStore.from_url(f"sqlite:///{tmp_path / 'sistra.sqlite'}")
    services = [TramiteService(store, StoreAuditSink(store), settings) for _ in range(2)]
    results = []

    def worker(service):
        try:
            results.append(service.create(make_command(), capturista))
        except (CapExceeded, ConcurrentModification) as e:
            results.append(e)

    threads = [threading.Thread(target=worker, args=(services[i % 2],)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len([r for r in results if isinstance(r, str)]) == 2
    assert len(store.query("tramites")) == 2
    assert len(_SCOPE_LOCKS) == 0


class _AltaConcurrente:
    """
    Almacén que, antes de cada alta de trámite, deja pasar la escritura de
    otro proceso sobre el mismo cupo (sin pasar por el lock del proceso).
    """

    def __init__(self, inner, nss="12345678901", contrato="CCT-2025", inserta=True, veces=1):
        self.inner = inner
        self.cupo = cupo_id(nss, contrato)
        self.inserta = inserta
        self.veces = veces

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def insert(self, collection, data):
        if collection == "tramites" and self.veces:
            self.veces -= 1
            if self.inserta:
                self.inner.insert(collection, {**data, "folio": data["folio"] + "-B"})
            token = self.inner.get("cupos", self.cupo)["version"]
            self.inner.update("cupos", self.cupo, {}, expected_version=token)
        return self.inner.insert(collection, data)


def test_cap_holds_against_another_process(store, audit_sink, settings, service, capturista):
    """Si otro proceso ocupa el último lugar entre el conteo y el alta, el alta se revierte."""
    first = service.create(make_command(), capturista)
    otro_proceso = TramiteService(_AltaConcurrente(store), audit_sink, settings)

    with pytest.raises(CapExceeded):
        otro_proceso.create(make_command(), capturista)

    records = store.query("tramites")
    assert len(records) == 2
    ajeno = next(r for r in records if r["id"] != first)
    assert ajeno["folio"].endswith("-B")
    # El rechazo se asienta en la dotación más reciente: la del otro proceso
    assert _acciones(service, ajeno["id"]) == ["CREACION_IMPROCEDENTE"]


def test_cupo_retries_are_bounded(store, audit_sink, capturista):
    settings = Settings(database_url="sqlite://", concurrencia_max_reintentos=3)
    TramiteService(store, audit_sink, settings).create(make_command(), capturista)
    service = TramiteService(_AltaConcurrente(store, inserta=False, veces=10), audit_sink, settings)

    with pytest.raises(ConcurrentModification):
        service.create(make_command(), capturista)

    assert len(store.query("tramites")) == 1
    assert len(_SCOPE_LOCKS) == 0


def test_scope_locks_are_released():
    with _SCOPE_LOCKS.hold("123-456", "cct-2025"):
        assert len(_SCOPE_LOCKS) == 1
        with _SCOPE_LOCKS.hold("999", "CCT-2025"):
            assert len(_SCOPE_LOCKS) == 2
    assert len(_SCOPE_LOCKS) == 0


# ============================================================
# Transiciones de estatus
# ============================================================

def test_authorizer_stamps_authorization(service, capturista, autorizador):
    tramite_id = service.create(make_command(), capturista)
    tramite = service.update(
        tramite_id,
        {"tipo": "estatus", "estatus": "AUTORIZADO", "importe_autorizado": 1200},
        autorizador,
    )
    assert tramite.estatus is E.AUTORIZADO
    assert tramite.importe_autorizado == 1200.0
    assert tramite.nombre_autorizador == autorizador.nombre
    assert tramite.firma_autorizacion.endswith(autorizador.nombre)
    assert isinstance(tramite.fecha_validacion_importe, datetime)
    assert _acciones(service, tramite_id) == ["CREACION", "TRANSICION_APLICADA"]


def test_authorization_defaults_to_requested_amount(service, capturista, autorizador):
    tramite_id = service.create(make_command(importe_solicitado=980.5), capturista)
    tramite = service.update(tramite_id, CambioEstatus(estatus=E.AUTORIZADO), autorizador)
    assert tramite.importe_autorizado == 980.5


def test_validador_cannot_authorize(service, capturista, validador):
    """Permiso denegado aunque la arista exista; se audita antes de lanzar."""
    tramite_id = service.create(make_command(), capturista)
    with pytest.raises(TransitionDenied) as exc:
        service.update(tramite_id, CambioEstatus(estatus=E.AUTORIZADO), validador)

    assert isinstance(exc.value, Unauthorized)
    assert isinstance(exc.value, WorkflowViolation)
    assert exc.value.code == "UNAUTHORIZED"

    entry = service.get_bitacora(tramite_id)[-1]
    assert entry.accion == "TRANSICION_RECHAZADA"
    assert entry.datos["motivo"] == "PERMISO"
    assert entry.datos["role"] == "VALIDADOR_PRESTACIONES"
    assert service.get(tramite_id, validador).estatus is E.EN_REVISION_DOCUMENTAL


def test_graph_violation_is_audited(service, capturista, validador):
    tramite_id = service.create(make_command(), capturista)
    with pytest.raises(WorkflowViolation) as exc:
        service.update(tramite_id, CambioEstatus(estatus=E.ENTREGADO), validador)

    assert not isinstance(exc.value, TransitionDenied)
    assert exc.value.allowed_next == (E.AUTORIZADO, E.RECHAZADO)
    entry = service.get_bitacora(tramite_id)[-1]
    assert entry.accion == "TRANSICION_RECHAZADA"
    assert entry.datos["motivo"] == "GRAFO"
    assert entry.datos["allowed_next"] == ["AUTORIZADO", "RECHAZADO"]


def test_rejection_stores_reason(service, capturista, validador):
    tramite_id = service.create(make_command(), capturista)
    tramite = service.update(tramite_id, CambioEstatus(estatus=E.RECHAZADO, nota=" Receta vencida "), validador)
    assert tramite.motivo_rechazo == "Receta vencida"


def test_amount_only_on_authorization(service, capturista, validador):
    tramite_id = service.create(make_command(), capturista)
    with pytest.raises(InvalidInput):
        service.update(tramite_id, CambioEstatus(estatus=E.RECHAZADO, importe_autorizado=10), validador)


def test_closed_tramite_is_immutable(service, capturista, admin):
    tramite_id = service.create(make_command(), capturista)
    service.update(tramite_id, CambioEstatus(estatus=E.RECHAZADO, nota="Duplicado"), admin)
    service.update(tramite_id, CambioEstatus(estatus=E.CERRADO), admin)

    with pytest.raises(WorkflowViolation):
        service.update(tramite_id, CambioEstatus(estatus=E.EN_REVISION_DOCUMENTAL), admin)
    with pytest.raises(WorkflowViolation):
        service.update(tramite_id, EdicionReceta(importe_solicitado=10), admin)

    assert _acciones(service, tramite_id)[-1] == "ACTUALIZACION_RECHAZADA"
    assert service.get(tramite_id, admin).estatus is E.CERRADO


def test_noop_status_write_is_not_audited(service, capturista, validador):
    tramite_id = service.create(make_command(), capturista)
    service.update(tramite_id, CambioEstatus(estatus=E.EN_REVISION_DOCUMENTAL), validador)
    assert _acciones(service, tramite_id) == ["CREACION"]


# ============================================================
# Ediciones de captura
# ============================================================

def test_beneficiary_edit_cannot_exceed_cap(service, capturista):
    service.create(make_command(), capturista)
    service.create(make_command(), capturista)
    otro = service.create(make_command(make_trabajador("10987654321")), capturista)

    with pytest.raises(CapExceeded):
        service.update(otro, EdicionBeneficiario(beneficiario=make_trabajador("12345678901")), capturista)

    assert service.get(otro, capturista).beneficiario.nss_trabajador == "10987654321"
    assert _acciones(service, otro)[-1] == "EDICION_IMPROCEDENTE"


def test_beneficiary_edit_excludes_itself(service, capturista):
    service.create(make_command(), capturista)
    second = service.create(make_command(), capturista)
    tramite = service.update(
        second,
        EdicionBeneficiario(beneficiario=make_trabajador(apellido_materno="Lopez")),
        capturista,
    )
    assert tramite.beneficiario.apellido_materno == "Lopez"
    assert tramite.dotacion_numero == 2
    assert tramite.version == 1
    assert _acciones(service, second)[-1] == "EDICION_CAPTURA"


def test_contract_edit_cannot_exceed_cap(service, capturista):
    """Mover una dotación de otro contrato a uno ya completo es IMPROCEDENTE."""
    service.create(make_command(contrato="CCT-2025"), capturista)
    service.create(make_command(contrato="CCT-2025"), capturista)
    tercero = service.create(make_command(contrato="CCT-2027"), capturista)

    with pytest.raises(CapExceeded):
        service.update(tercero, EdicionBeneficiario(contrato_colectivo_aplicable="cct-2025"), capturista)

    assert service.get(tercero, capturista).contrato_colectivo_aplicable == "CCT-2027"
    assert _acciones(service, tercero)[-1] == "EDICION_IMPROCEDENTE"


def test_contract_edit_renumbers_dotacion(service, capturista):
    service.create(make_command(contrato="CCT-2025"), capturista)
    movido = service.create(make_command(contrato="CCT-2027"), capturista)
    assert service.get(movido, capturista).dotacion_numero == 1

    tramite = service.update(movido, EdicionBeneficiario(contrato_colectivo_aplicable="CCT-2025"), capturista)

    assert tramite.contrato_colectivo_aplicable == "CCT-2025"
    assert tramite.dotacion_numero == 2
    entry = service.get_bitacora(movido)[-1]
    assert entry.datos["dotacion_numero"] == {"old": 1, "new": 2}


def test_receta_edit_validates(service, capturista):
    tramite_id = service.create(make_command(), capturista)
    with pytest.raises(InvalidInput):
        service.update(tramite_id, EdicionReceta(receta=make_receta(folio_receta_imss="")), capturista)
    tramite = service.update(tramite_id, EdicionReceta(importe_solicitado=2100), capturista)
    assert tramite.importe_solicitado == 2100.0


def test_process_edit_roles(service, capturista, validador, autorizador):
    tramite_id = _autorizado(service, capturista, autorizador)

    with pytest.raises(Unauthorized):
        service.update(tramite_id, EdicionProceso(qna_inclusion="2026/003"), capturista)
    with pytest.raises(Unauthorized):
        service.update(tramite_id, EdicionProceso(costo_solicitud=900), validador)

    tramite = service.update(tramite_id, EdicionProceso(costo_solicitud=900, qna_inclusion="2026/003"), autorizador)
    assert tramite.costo_solicitud == 900
    assert tramite.qna_inclusion == "2026/003"


def test_stale_version_is_rejected(service, store, capturista, validador):
    tramite_id = service.create(make_command(), capturista)
    stale = service.get(tramite_id, capturista)
    service.update(tramite_id, CambioEstatus(estatus=E.RECHAZADO), validador)

    with pytest.raises(ConcurrentModification):
        store.update("tramites", tramite_id, {"importe_solicitado": 1}, expected_version=stale.version)


# ============================================================
# Alcance por unidad, eliminación y consultas
# ============================================================

def test_capturista_only_sees_own_unit(service, capturista, capturista_otra_unidad, validador):
    propio = service.create(make_command(), capturista)
    ajeno = service.create(make_command(make_trabajador("10987654321")), capturista_otra_unidad)

    with pytest.raises(Unauthorized):
        service.get(ajeno, capturista)
    with pytest.raises(Unauthorized):
        service.update(ajeno, CambioEstatus(estatus=E.RECHAZADO), capturista)

    assert [t.id for t in service.list_tramites(capturista)] == [propio]
    assert [t.id for t in service.list_tramites(validador)] == [ajeno, propio]


def test_delete_requires_admin_and_folio(service, store, capturista, admin):
    tramite_id = service.create(make_command(), capturista)
    folio = service.get(tramite_id, admin).folio

    with pytest.raises(Unauthorized):
        service.delete(tramite_id, capturista, folio)
    with pytest.raises(InvalidInput):
        service.delete(tramite_id, admin, "otro")

    service.delete(tramite_id, admin, folio.lower())
    with pytest.raises(NotFound):
        service.get(tramite_id, admin)
    # La bitácora sobrevive
    assert _acciones(service, tramite_id)[-1] == "ELIMINACION"


def test_historial_dotaciones(service, capturista):
    first = service.create(make_command(), capturista)
    second = service.create(make_command(), capturista)
    service.create(make_command(make_hijo("11111111111")), capturista)

    historial = service.historial_dotaciones(second, capturista)
    assert [t.id for t in historial] == [first, second]
    assert [t.dotacion_numero for t in historial] == [1, 2]
