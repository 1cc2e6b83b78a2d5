"""
Tests del grafo de estatus y de la compuerta de permisos.
"""

import pytest

from sistra_core.domain_models import EstatusWorkflow as E
from sistra_core.domain_models import Role
from sistra_core.workflow import (
    WORKFLOW_TRANSITIONS,
    authorization_stamp,
    can_update_status,
    is_printable,
    is_terminal,
    validate_transition,
)


def test_every_status_has_an_entry():
    assert set(WORKFLOW_TRANSITIONS) == set(E)


@pytest.mark.parametrize("status", list(E))
def test_same_status_is_always_valid(status):
    assert validate_transition(status, status).is_valid


@pytest.mark.parametrize("target", [s for s in E if s is not E.CERRADO])
def test_cerrado_is_terminal(target):
    result = validate_transition(E.CERRADO, target)
    assert not result.is_valid
    assert result.allowed_next == ()
    assert "NINGUNO" in result.reason
    assert is_terminal(E.CERRADO)


def test_revision_to_entregado_is_invalid():
    result = validate_transition(E.EN_REVISION_DOCUMENTAL, E.ENTREGADO)
    assert not result.is_valid
    assert result.allowed_next == (E.AUTORIZADO, E.RECHAZADO)
    assert result.reason.startswith("Transición inválida: EN_REVISION_DOCUMENTAL -> ENTREGADO.")


def test_happy_path_is_valid():
    path = [
        E.BORRADOR,
        E.EN_REVISION_DOCUMENTAL,
        E.AUTORIZADO,
        E.ENVIADO_A_OPTICA,
        E.EN_PROCESO_OPTICA,
        E.LISTO_PARA_ENTREGA,
        E.ENTREGADO,
        E.CERRADO,
    ]
    for origin, target in zip(path, path[1:]):
        assert validate_transition(origin, target).is_valid, (origin, target)


def test_validador_cannot_authorize_even_when_graph_allows():
    assert validate_transition(E.EN_REVISION_DOCUMENTAL, E.AUTORIZADO).is_valid
    assert not can_update_status(Role.VALIDADOR_PRESTACIONES, E.AUTORIZADO)


def test_permission_allowed_but_graph_invalid():
    assert can_update_status(Role.AUTORIZADOR_JSDP_DSPNC, E.ENTREGADO)
    assert not validate_transition(E.EN_REVISION_DOCUMENTAL, E.ENTREGADO).is_valid


@pytest.mark.parametrize("role,target,expected", [
    (Role.ADMIN_SISTEMA, E.CERRADO, True),
    (Role.CONSULTA_CENTRAL, E.EN_REVISION_DOCUMENTAL, False),
    (Role.CAPTURISTA_UNIDAD, E.RECHAZADO, True),
    (Role.CAPTURISTA_UNIDAD, E.ENVIADO_A_OPTICA, False),
    (Role.CAPTURISTA_UNIDAD, E.AUTORIZADO, False),
    (Role.VALIDADOR_PRESTACIONES, E.EN_PROCESO_OPTICA, True),
    (Role.AUTORIZADOR_JSDP_DSPNC, E.AUTORIZADO, True),
    ("DESCONOCIDO", E.BORRADOR, False),
])
def test_can_update_status(role, target, expected):
    assert can_update_status(role, target) is expected


def test_printable_statuses():
    assert not is_printable(E.EN_REVISION_DOCUMENTAL)
    assert not is_printable(E.RECHAZADO)
    assert is_printable(E.AUTORIZADO)
    assert is_printable(E.CERRADO)


def test_authorization_stamp(autorizador):
    stamp = authorization_stamp(autorizador, 1200)
    assert stamp["importe_autorizado"] == 1200.0
    assert stamp["nombre_autorizador"] == autorizador.nombre
    assert stamp["firma_autorizacion"] == f"AUTORIZADO ELECTRÓNICAMENTE POR {autorizador.nombre}"
    assert stamp["fecha_validacion_importe"]
