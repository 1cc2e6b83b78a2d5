"""
Reglas de validación de trámites y credenciales.

Validadores puros y sin estado: nunca lanzan excepciones. Devuelven `None`
(o lista vacía) cuando todo está bien, y el mensaje (o la lista de
mensajes) cuando algo falla. El llamador decide si bloquea o solo avisa.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Iterable, Optional

from .config import Settings, get_settings
from .domain_models import Beneficiario, Receta, TipoBeneficiario, parse_date

NSS_PATTERN = re.compile(r"^\d{10,11}$")

MSG_LOGIN_REQUIRED = "Captura matrícula y contraseña."
MSG_LOGIN_SHORT = "La contraseña debe tener mínimo {n} caracteres."

MSG_PWD_LENGTH = "Debe tener mínimo {n} caracteres."
MSG_PWD_UPPER = "Debe incluir al menos una letra mayúscula."
MSG_PWD_LOWER = "Debe incluir al menos una letra minúscula."
MSG_PWD_DIGIT = "Debe incluir al menos un número."
MSG_PWD_SYMBOL = "Debe incluir al menos un símbolo."

MSG_NOMBRE_REQUIRED = "El nombre del beneficiario es obligatorio."
MSG_NSS_INVALID = "El NSS debe tener 10 u 11 dígitos."
MSG_FOLIO_RECETA_REQUIRED = "El folio de la receta es obligatorio."
MSG_DESCRIPCION_LENTE_SHORT = "La descripción del lente debe tener al menos 10 caracteres."
MSG_IMPORTE_NEGATIVO = "El importe solicitado no puede ser negativo."
MSG_RECETA_VENCIDA = "La receta tiene más de {n} días de expedida."

MSG_TITULAR_NOMBRE_REQUIRED = "Para un hijo se requiere el nombre completo del titular."
MSG_TITULAR_NSS_REQUIRED = "Para un hijo se requiere el NSS del titular."
MSG_NSS_HIJO_INVALID = "El NSS del hijo debe tener 10 u 11 dígitos."
MSG_CONSTANCIA_REQUIRED = "El hijo mayor de {n} años requiere constancia de estudios vigente."


# ============================================================
# Helpers de fechas
# ============================================================

def calcular_edad(fecha_nacimiento, today: date | None = None) -> int:
    """Edad cumplida en años (0 si no hay fecha)."""
    nacimiento = parse_date(fecha_nacimiento)
    if not nacimiento:
        return 0
    today = today or date.today()
    edad = today.year - nacimiento.year
    if (today.month, today.day) < (nacimiento.month, nacimiento.day):
        edad -= 1
    return edad


def _months_between(start: date, end: date) -> int:
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return months


def is_receta_vigente(fecha_expedicion, today: date | None = None, settings: Settings | None = None) -> bool:
    """Días naturales desde la expedición <= vigencia de la receta."""
    expedicion = parse_date(fecha_expedicion)
    if not expedicion:
        return False
    settings = settings or get_settings()
    today = today or date.today()
    return (today - expedicion).days <= settings.vigencia_receta_dias


def is_constancia_estudios_vigente(fecha_expedicion, today: date | None = None, settings: Settings | None = None) -> bool:
    expedicion = parse_date(fecha_expedicion)
    if not expedicion:
        return False
    settings = settings or get_settings()
    today = today or date.today()
    return _months_between(expedicion, today) <= settings.vigencia_constancia_meses


# ============================================================
# Credenciales
# ============================================================

def validate_login_input(matricula: str | None, password: str | None, settings: Settings | None = None) -> Optional[str]:
    """Primer problema del formulario de acceso, o None."""
    settings = settings or get_settings()
    if not (matricula or "").strip() or not password:
        return MSG_LOGIN_REQUIRED
    if len(password) < settings.password_min_length:
        return MSG_LOGIN_SHORT.format(n=settings.password_min_length)
    return None


def validate_password_strength(password: str | None, settings: Settings | None = None) -> list[str]:
    """
    Cláusulas de la política de contraseñas que no se cumplen.

    Lista vacía = contraseña aceptable.
    """
    settings = settings or get_settings()
    password = password or ""
    issues: list[str] = []
    if len(password) < settings.password_min_length:
        issues.append(MSG_PWD_LENGTH.format(n=settings.password_min_length))
    if not any(c.isupper() for c in password):
        issues.append(MSG_PWD_UPPER)
    if not any(c.islower() for c in password):
        issues.append(MSG_PWD_LOWER)
    if not any(c.isdigit() for c in password):
        issues.append(MSG_PWD_DIGIT)
    if not any(not c.isalnum() for c in password):
        issues.append(MSG_PWD_SYMBOL)
    return issues


# ============================================================
# Wizard de captura
# ============================================================

def validate_create_step1(beneficiario: Beneficiario) -> Optional[str]:
    """Paso 1 (solicitante): nombre y NSS del titular."""
    if not (beneficiario.nombre or "").strip():
        return MSG_NOMBRE_REQUIRED
    if not NSS_PATTERN.match((beneficiario.nss_trabajador or "").strip()):
        return MSG_NSS_INVALID
    return None


def validate_create_step2(
    receta: Receta,
    importe_solicitado: float = 0,
    today: date | None = None,
    settings: Settings | None = None,
) -> Optional[str]:
    """Paso 2 (médico): folio de receta, descripción del lente e importe."""
    settings = settings or get_settings()
    if not (receta.folio_receta_imss or "").strip():
        return MSG_FOLIO_RECETA_REQUIRED
    if len((receta.descripcion_lente or "").strip()) < 10:
        return MSG_DESCRIPCION_LENTE_SHORT
    if (importe_solicitado or 0) < 0:
        return MSG_IMPORTE_NEGATIVO
    if receta.fecha_expedicion_receta and not is_receta_vigente(
        receta.fecha_expedicion_receta, today=today, settings=settings
    ):
        return MSG_RECETA_VENCIDA.format(n=settings.vigencia_receta_dias)
    return None


def validate_child_rules(
    beneficiario: Beneficiario,
    today: date | None = None,
    settings: Settings | None = None,
) -> list[str]:
    """Reglas propias de un beneficiario tipo HIJO (lista vacía si no aplica)."""
    if beneficiario.tipo is not TipoBeneficiario.HIJO:
        return []
    settings = settings or get_settings()
    issues: list[str] = []
    if not (beneficiario.titular_nombre_completo or "").strip():
        issues.append(MSG_TITULAR_NOMBRE_REQUIRED)
    if not (beneficiario.nss_trabajador or "").strip():
        issues.append(MSG_TITULAR_NSS_REQUIRED)
    if beneficiario.nss_hijo and not NSS_PATTERN.match(beneficiario.nss_hijo.strip()):
        issues.append(MSG_NSS_HIJO_INVALID)

    limite = settings.edad_limite_hijo_sin_constancia
    if calcular_edad(beneficiario.fecha_nacimiento, today) > limite:
        vigente = bool(beneficiario.constancia_estudios_vigente) and is_constancia_estudios_vigente(
            beneficiario.fecha_constancia_estudios, today=today, settings=settings
        )
        if not vigente:
            issues.append(MSG_CONSTANCIA_REQUIRED.format(n=limite))
    return issues


def validate_create(
    beneficiario: Beneficiario,
    receta: Receta,
    importe_solicitado: float = 0,
    today: date | None = None,
    settings: Settings | None = None,
) -> list[str]:
    """Validación agregada del alta, en el orden en que la ve el usuario."""
    violations: list[str] = []
    step1 = validate_create_step1(beneficiario)
    if step1:
        violations.append(step1)
    violations.extend(validate_child_rules(beneficiario, today=today, settings=settings))
    step2 = validate_create_step2(receta, importe_solicitado, today=today, settings=settings)
    if step2:
        violations.append(step2)
    return violations


def first_violation(violations: Iterable[Optional[str]]) -> Optional[str]:
    """Primer mensaje no vacío: la razón de bloqueo que ve el usuario."""
    return next((v for v in violations if v), None)
