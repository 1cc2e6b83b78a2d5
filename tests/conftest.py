"""
Fixtures compartidas: almacén SQLite en memoria, bitácora y usuarios por rol.
"""

from datetime import date, timedelta

import pytest

from sistra_core.audit import StoreAuditSink
from sistra_core.commands import CrearTramite
from sistra_core.config import Settings
from sistra_core.db.store import SqlDocumentStore
from sistra_core.domain_models import Beneficiario, Receta, Role, TipoBeneficiario, Usuario
from sistra_core.printing import PrintService
from sistra_core.tramites import TramiteService


@pytest.fixture
def settings():
    """Configuración con los defaults de la norma, sin leer el entorno."""
    return Settings(database_url="sqlite://")


@pytest.fixture
def store():
    """Almacén nuevo por test (SQLite en memoria)."""
    return SqlDocumentStore.from_url("sqlite://")


@pytest.fixture
def audit_sink(store):
    return StoreAuditSink(store)


@pytest.fixture
def service(store, audit_sink, settings):
    return TramiteService(store, audit_sink, settings)


@pytest.fixture
def printer(store, audit_sink, settings):
    return PrintService(store, audit_sink, settings)


def _usuario(role: Role, unidad: str = "UMF-01", nombre: str | None = None) -> Usuario:
    return Usuario(
        id=f"u-{role.value.lower()}-{unidad.lower()}",
        nombre=nombre or f"Usuario {role.value.title()}",
        role=role,
        unidad=unidad,
        matricula=f"{role.value[:3]}{unidad[-2:]}",
    )


@pytest.fixture
def capturista():
    return _usuario(Role.CAPTURISTA_UNIDAD)


@pytest.fixture
def capturista_otra_unidad():
    return _usuario(Role.CAPTURISTA_UNIDAD, unidad="UMF-02")


@pytest.fixture
def validador():
    return _usuario(Role.VALIDADOR_PRESTACIONES, unidad="OOAD")


@pytest.fixture
def autorizador():
    return _usuario(Role.AUTORIZADOR_JSDP_DSPNC, unidad="OOAD", nombre="Laura Méndez Ríos")


@pytest.fixture
def consulta():
    return _usuario(Role.CONSULTA_CENTRAL, unidad="OOAD")


@pytest.fixture
def admin():
    return _usuario(Role.ADMIN_SISTEMA, unidad="OOAD", nombre="Admin Sistema")


def make_trabajador(nss: str = "12345678901", **overrides) -> Beneficiario:
    values = dict(
        tipo=TipoBeneficiario.TRABAJADOR,
        nombre="Juan",
        apellido_paterno="Pérez",
        apellido_materno="López",
        nss_trabajador=nss,
        matricula="99123456",
        tipo_contratacion="BASE",
    )
    values.update(overrides)
    return Beneficiario(**values)


def make_hijo(nss_hijo: str | None, nombre: str = "Ana", nss: str = "12345678901", **overrides) -> Beneficiario:
    values = dict(
        tipo=TipoBeneficiario.HIJO,
        nombre=nombre,
        apellido_paterno="Pérez",
        apellido_materno="García",
        nss_trabajador=nss,
        nss_hijo=nss_hijo,
        titular_nombre_completo="Juan Pérez López",
        fecha_nacimiento=date.today() - timedelta(days=365 * 8),
    )
    values.update(overrides)
    return Beneficiario(**values)


def make_receta(**overrides) -> Receta:
    values = dict(
        folio_receta_imss="REC-0001",
        descripcion_lente="Monofocal graduado antirreflejante",
        fecha_expedicion_receta=date.today() - timedelta(days=5),
    )
    values.update(overrides)
    return Receta(**values)


def make_command(beneficiario: Beneficiario | None = None, contrato: str = "CCT-2025", **overrides) -> CrearTramite:
    values = dict(
        beneficiario=beneficiario or make_trabajador(),
        receta=make_receta(),
        contrato_colectivo_aplicable=contrato,
        importe_solicitado=1500.0,
    )
    values.update(overrides)
    return CrearTramite(**values)
