"""
Comparador de alcance de elegibilidad.

Decide si dos registros de beneficiario ocupan el mismo "lugar" de
prestación (titular + hijo), para contar dotaciones previas sin inflarlas
por nombres re-tecleados ni desinflarlas por NSS duplicados.

Reglas (pares, independientes del orden):

1. NSS del titular en dígitos; si alguno está vacío o difieren -> distinto.
2. Si ninguno es HIJO -> mismo alcance (prestación del titular).
3. Si alguno es HIJO y ambos traen NSS de hijo propio (no vacío y distinto
   del NSS del titular), la igualdad del NSS de hijo decide.
4. Si no, se compara el nombre normalizado del hijo; si ambos tienen fecha
   de nacimiento, también debe coincidir. Con una sola fecha basta el nombre.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Any, Iterable, Mapping

from .domain_models import Beneficiario, TipoBeneficiario, Tramite, parse_date

_NON_DIGITS = re.compile(r"\D+")
_SPACES = re.compile(r"\s+")


def normalize_nss(value: Any) -> str:
    """Deja solo los dígitos de un NSS (None -> "")."""
    if value is None:
        return ""
    return _NON_DIGITS.sub("", str(value))


def normalize_name(*parts: Any) -> str:
    """
    Normaliza un nombre para compararlo: mayúsculas, sin acentos y con
    espacios colapsados.

    >>> normalize_name(" José ", "Pérez  López")
    'JOSE PEREZ LOPEZ'
    """
    raw = " ".join(str(p) for p in parts if p)
    decomposed = unicodedata.normalize("NFKD", raw)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return _SPACES.sub(" ", stripped).strip().upper()


def normalize_contract(value: Any) -> str:
    return str(value or "").strip().upper()


def _as_beneficiario(record: Beneficiario | Mapping[str, Any]) -> Beneficiario:
    if isinstance(record, Beneficiario):
        return record
    return Beneficiario.from_dict(dict(record))


def _own_child_nss(b: Beneficiario, titular: str) -> str:
    child = normalize_nss(b.nss_hijo)
    if child and child != titular:
        return child
    return ""


def same_scope(
    a: Beneficiario | Mapping[str, Any],
    b: Beneficiario | Mapping[str, Any],
) -> bool:
    """Indica si dos beneficiarios corresponden al mismo lugar de prestación."""
    a = _as_beneficiario(a)
    b = _as_beneficiario(b)

    titular_a = normalize_nss(a.nss_trabajador)
    titular_b = normalize_nss(b.nss_trabajador)
    if not titular_a or not titular_b or titular_a != titular_b:
        return False

    if a.tipo is not TipoBeneficiario.HIJO and b.tipo is not TipoBeneficiario.HIJO:
        return True

    child_a = _own_child_nss(a, titular_a)
    child_b = _own_child_nss(b, titular_b)
    if child_a and child_b:
        return child_a == child_b

    name_a = normalize_name(a.nombre, a.apellido_paterno, a.apellido_materno)
    name_b = normalize_name(b.nombre, b.apellido_paterno, b.apellido_materno)
    if not name_a or name_a != name_b:
        return False

    birth_a = parse_date(a.fecha_nacimiento)
    birth_b = parse_date(b.fecha_nacimiento)
    if birth_a and birth_b:
        return birth_a == birth_b
    return True


def same_contract(a: Any, b: Any) -> bool:
    """Comparación de contrato colectivo sin distinguir mayúsculas."""
    left = normalize_contract(a)
    return bool(left) and left == normalize_contract(b)


def matching_tramites(
    candidates: Iterable[Tramite],
    beneficiario: Beneficiario,
    contrato: str,
    exclude_id: str | None = None,
) -> list[Tramite]:
    """
    Filtra los trámites del mismo contrato y mismo alcance de beneficiario.

    El alta la usa para contar y para citar los folios previos en bitácora.
    """
    return [
        t
        for t in candidates
        if t.id != exclude_id
        and same_contract(t.contrato_colectivo_aplicable, contrato)
        and same_scope(t.beneficiario, beneficiario)
    ]


def count_same_scope(
    candidates: Iterable[Tramite],
    beneficiario: Beneficiario,
    contrato: str,
    exclude_id: str | None = None,
) -> int:
    """Conteo de `matching_tramites`; la edición excluye el propio registro."""
    return len(matching_tramites(candidates, beneficiario, contrato, exclude_id))
