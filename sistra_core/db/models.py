"""
Modelos ORM del almacén de documentos.

Cada colección es una tabla con:
- Columnas indexadas para los campos por los que se consulta u ordena
  (NSS del titular, unidad, estatus, trámite de una bitácora, ...).
- El registro completo serializado en `data_json`.
- `version`, el token de concurrencia optimista que se incrementa en cada
  actualización.

`INDEXED` mapea la ruta del campo dentro del registro (con puntos) a la
columna que lo refleja. Solo esas rutas se pueden usar en filtros.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import ClassVar

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class DocumentRowMixin:
    """Columnas comunes a todas las colecciones."""

    INDEXED: ClassVar[dict[str, str]] = {}

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    data_json: Mapped[str] = mapped_column(Text, default="{}")
    version: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class TramiteRow(DocumentRowMixin, Base):
    """
    Trámite de dotación de anteojos.
    """
    __tablename__ = "tramites"

    INDEXED = {
        "folio": "folio",
        "unidad": "unidad",
        "estatus": "estatus",
        "beneficiario.nss_trabajador": "nss_trabajador",
        "contrato_colectivo_aplicable": "contrato_colectivo_aplicable",
        "fecha_creacion": "fecha_creacion",
    }

    folio: Mapped[str] = mapped_column(String(64), default="", index=True)
    unidad: Mapped[str] = mapped_column(String(64), default="", index=True)
    estatus: Mapped[str] = mapped_column(String(32), default="", index=True)
    nss_trabajador: Mapped[str] = mapped_column(String(16), default="", index=True)
    contrato_colectivo_aplicable: Mapped[str] = mapped_column(String(64), default="")
    fecha_creacion: Mapped[str] = mapped_column(String(40), default="", index=True)  # ISO-8601


class BitacoraRow(DocumentRowMixin, Base):
    """
    Entrada de bitácora. Append-only: nada en el core la actualiza ni borra.
    """
    __tablename__ = "bitacora"

    INDEXED = {
        "tramite_id": "tramite_id",
        "categoria": "categoria",
        "accion": "accion",
        "fecha": "fecha",
    }

    # Sin FK: la bitácora sobrevive a la eliminación del trámite
    tramite_id: Mapped[str] = mapped_column(String(36), default="", index=True)
    categoria: Mapped[str] = mapped_column(String(20), default="")
    accion: Mapped[str] = mapped_column(String(64), default="")
    fecha: Mapped[str] = mapped_column(String(40), default="", index=True)  # ISO-8601


class UsuarioRow(DocumentRowMixin, Base):
    """
    Usuario del sistema (autenticación/autorización).
    """
    __tablename__ = "usuarios"

    INDEXED = {
        "matricula": "matricula",
        "role": "role",
        "unidad": "unidad",
        "activo": "activo",
        "nombre": "nombre",
    }

    matricula: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    nombre: Mapped[str] = mapped_column(String(200), default="")
    role: Mapped[str] = mapped_column(String(32), default="")
    unidad: Mapped[str] = mapped_column(String(64), default="")
    activo: Mapped[bool] = mapped_column(Boolean, default=True)


class CupoRow(DocumentRowMixin, Base):
    """
    Token de cupo por (NSS del titular, contrato colectivo).

    No guarda el conteo: su `version` avanza con cada alta o edición que
    ocupa un lugar en ese alcance, y los escritores lo usan como compuerta
    optimista entre procesos.
    """
    __tablename__ = "cupos"

    INDEXED = {
        "nss_trabajador": "nss_trabajador",
    }

    nss_trabajador: Mapped[str] = mapped_column(String(16), default="", index=True)


COLLECTIONS: dict[str, type[DocumentRowMixin]] = {
    "tramites": TramiteRow,
    "bitacora": BitacoraRow,
    "usuarios": UsuarioRow,
    "cupos": CupoRow,
}
