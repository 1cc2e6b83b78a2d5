"""
Indicadores del tablero: conteos por estatus, gasto y búsqueda.

Funciones puras sobre listas de `Tramite` ya cargadas (normalmente el
resultado de `TramiteService.list_tramites`).
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Dict, Iterable, List

from .domain_models import EstatusWorkflow, Tramite
from .scope import normalize_name, normalize_nss

E = EstatusWorkflow

PENDIENTES = frozenset({E.BORRADOR, E.EN_REVISION_DOCUMENTAL})
AUTORIZADOS = frozenset({E.AUTORIZADO, E.ENVIADO_A_OPTICA, E.EN_PROCESO_OPTICA, E.LISTO_PARA_ENTREGA})
ENTREGADOS = frozenset({E.ENTREGADO, E.CERRADO})

# Estatus que representan gasto ejercido
CON_GASTO = frozenset({E.AUTORIZADO, E.ENTREGADO, E.CERRADO})


def resumen_estatus(tramites: Iterable[Tramite]) -> Dict[str, int]:
    resumen = {"total": 0, "pendientes": 0, "autorizados": 0, "entregados": 0, "rechazados": 0}
    for t in tramites:
        resumen["total"] += 1
        if t.estatus in PENDIENTES:
            resumen["pendientes"] += 1
        elif t.estatus in AUTORIZADOS:
            resumen["autorizados"] += 1
        elif t.estatus in ENTREGADOS:
            resumen["entregados"] += 1
        elif t.estatus is E.RECHAZADO:
            resumen["rechazados"] += 1
    return resumen


def importe_ejercido(tramite: Tramite) -> float:
    """Importe autorizado; si no se capturó, el solicitado."""
    if tramite.importe_autorizado is not None:
        return float(tramite.importe_autorizado)
    return float(tramite.importe_solicitado or 0)


def metricas_gasto(tramites: Iterable[Tramite]) -> Dict[str, Any]:
    """
    Gasto global, por unidad y por periodo.

    Returns:
        {
            "total": float,
            "tramites": int,
            "por_unidad": [{"unidad", "total", "tramites"}]  # mayor gasto primero
            "por_periodo": [{"periodo": "YYYY-MM", "total", "tramites"}]  # cronológico
        }
    """
    total = 0.0
    count = 0
    por_unidad: Dict[str, List[float]] = defaultdict(lambda: [0.0, 0])
    por_periodo: Dict[str, List[float]] = defaultdict(lambda: [0.0, 0])

    for t in tramites:
        if t.estatus not in CON_GASTO:
            continue
        importe = importe_ejercido(t)
        total += importe
        count += 1

        unidad = por_unidad[t.unidad or "SIN UNIDAD"]
        unidad[0] += importe
        unidad[1] += 1

        if t.fecha_creacion:
            periodo = por_periodo[t.fecha_creacion.strftime("%Y-%m")]
            periodo[0] += importe
            periodo[1] += 1

    return {
        "total": round(total, 2),
        "tramites": count,
        "por_unidad": [
            {"unidad": k, "total": round(v[0], 2), "tramites": int(v[1])}
            for k, v in sorted(por_unidad.items(), key=lambda kv: (-kv[1][0], kv[0]))
        ],
        "por_periodo": [
            {"periodo": k, "total": round(v[0], 2), "tramites": int(v[1])}
            for k, v in sorted(por_periodo.items())
        ],
    }


def buscar_tramites(tramites: Iterable[Tramite], termino: str) -> List[Tramite]:
    """
    Búsqueda libre por nombre, apellido paterno, NSS o folio.

    Ignora mayúsculas y acentos. Un término vacío devuelve todo.
    """
    tramites = list(tramites)
    needle = normalize_name(termino)
    if not needle:
        return tramites
    digits = normalize_nss(termino)

    def matches(t: Tramite) -> bool:
        b = t.beneficiario
        if needle in normalize_name(b.nombre) or needle in normalize_name(b.apellido_paterno):
            return True
        if needle in (t.folio or "").upper():
            return True
        return bool(digits) and digits in normalize_nss(b.nss_trabajador)

    return [t for t in tramites if matches(t)]
