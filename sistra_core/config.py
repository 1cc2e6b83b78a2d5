# sistra_core/config.py
from dataclasses import dataclass
from functools import lru_cache
import os

from dotenv import load_dotenv

"""
sistra_core.config
==================

Gestión centralizada de configuración del core de trámites.

Este módulo define:
- La estructura de configuración (`Settings`)
- El mecanismo para cargar variables desde entorno (.env)
- Un acceso único y cacheado a la configuración (`get_settings`)

Convenciones
------------
- Las variables de entorno se cargan desde un archivo `.env` si existe.
- Las constantes de negocio (tope de dotaciones, vigencias) usan el prefijo
  `SISTRA_`. Los defaults son los de la norma vigente.
- Los servicios aceptan un `Settings` explícito; si no se pasa, usan
  `get_settings()`. Así en tests se construye uno a mano sin tocar el entorno.
"""

# Cargar variables de entorno desde .env (si existe)
load_dotenv()


@dataclass
class Settings:
    """
    Contenedor tipado de configuración del core.

    Attributes
    ----------
    database_url:
        URL SQLAlchemy del almacén de documentos.
    log_level:
        Nivel de logging para la CLI.
    max_dotaciones_por_contrato:
        Tope de dotaciones por beneficiario y contrato colectivo.
    max_dotacion_numero:
        Número de dotación máximo asignable (con dictamen médico).
    dotacion_requiere_dictamen:
        A partir de qué número de dotación se exige dictamen médico.
    historial_limite:
        Cuántos trámites del mismo NSS se leen para contar dotaciones.
    listado_limite:
        Tamaño por defecto del listado de trámites.
    vigencia_receta_dias:
        Días naturales de vigencia de la receta.
    vigencia_constancia_meses:
        Meses de vigencia de la constancia de estudios.
    edad_limite_hijo_sin_constancia:
        Edad a partir de la cual un hijo debe acreditar estudios.
    concurrencia_max_reintentos:
        Reintentos cuando otro escritor modifica el mismo cupo o trámite a la vez.
    """

    database_url: str = "sqlite:///data/sistra.sqlite"
    log_level: str = "INFO"

    # Reglas de dotación
    max_dotaciones_por_contrato: int = 2
    max_dotacion_numero: int = 4
    dotacion_requiere_dictamen: int = 3

    # Consultas
    historial_limite: int = 200
    listado_limite: int = 100

    # Vigencias
    vigencia_receta_dias: int = 90
    vigencia_constancia_meses: int = 3
    edad_limite_hijo_sin_constancia: int = 16

    # Credenciales
    password_min_length: int = 10

    # Datos fijos del formato
    clave_presupuestal_default: str = "1A14-009-027"

    # Bitácora
    audit_max_retries: int = 3
    audit_retry_delay: float = 0.5

    # Escrituras que compiten por el mismo cupo o contador
    concurrencia_max_reintentos: int = 5


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


@lru_cache
def get_settings() -> Settings:
    """
    Devuelve una instancia única y cacheada de `Settings`.

    Variables de entorno utilizadas
    -------------------------------
    - DATABASE_URL (default: "sqlite:///data/sistra.sqlite")
    - LOG_LEVEL (default: "INFO")
    - SISTRA_MAX_DOTACIONES (default: 2)
    - SISTRA_HISTORIAL_LIMITE (default: 200)
    - SISTRA_VIGENCIA_RECETA_DIAS (default: 90)
    - SISTRA_VIGENCIA_CONSTANCIA_MESES (default: 3)
    - SISTRA_EDAD_LIMITE_HIJO (default: 16)
    - SISTRA_AUDIT_MAX_RETRIES (default: 3)
    """
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///data/sistra.sqlite"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        max_dotaciones_por_contrato=_env_int("SISTRA_MAX_DOTACIONES", 2),
        historial_limite=_env_int("SISTRA_HISTORIAL_LIMITE", 200),
        vigencia_receta_dias=_env_int("SISTRA_VIGENCIA_RECETA_DIAS", 90),
        vigencia_constancia_meses=_env_int("SISTRA_VIGENCIA_CONSTANCIA_MESES", 3),
        edad_limite_hijo_sin_constancia=_env_int("SISTRA_EDAD_LIMITE_HIJO", 16),
        audit_max_retries=_env_int("SISTRA_AUDIT_MAX_RETRIES", 3),
    )
