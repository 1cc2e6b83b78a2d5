"""
Implementación SQLAlchemy del protocolo `DocumentStore`.

Guarda cada registro como JSON en `data_json` y refleja en columnas los
campos indexados de la colección (ver `models.INDEXED`). Las consultas
solo filtran y ordenan por esas columnas.
"""

from __future__ import annotations

import json
import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import Boolean
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from ..errors import ConcurrentModification, NotFound
from .database import create_db_engine, init_db, make_session_factory, session_scope
from .models import COLLECTIONS, DocumentRowMixin

logger = logging.getLogger(__name__)

# Llaves que viven en columnas propias y no se guardan dentro del JSON
_RESERVED = ("id", "version")


class UnsupportedQuery(ValueError):
    """Colección desconocida o filtro/orden sobre un campo no indexado."""


def _dig(data: Mapping[str, Any], path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class SqlDocumentStore:
    """
    Almacén de documentos sobre SQLAlchemy.

    Cada operación abre y cierra su propia sesión (commit/rollback
    automático), así que una instancia se puede compartir entre servicios.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, url: str) -> "SqlDocumentStore":
        """Crea engine, esquema y almacén a partir de una URL."""
        engine = init_db(create_db_engine(url))
        return cls(make_session_factory(engine))

    # ------------------------------------------------------------
    # Helpers internos
    # ------------------------------------------------------------

    def _model(self, collection: str) -> type[DocumentRowMixin]:
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise UnsupportedQuery(f"Colección desconocida: {collection}") from None

    def _column(self, model: type[DocumentRowMixin], path: str):
        column_name = model.INDEXED.get(path)
        if not column_name:
            raise UnsupportedQuery(f"El campo '{path}' no está indexado en {model.__tablename__}")
        return getattr(model, column_name)

    @staticmethod
    def _indexed_values(model: type[DocumentRowMixin], data: Mapping[str, Any]) -> Dict[str, Any]:
        table = model.__table__
        values: Dict[str, Any] = {}
        for path, column_name in model.INDEXED.items():
            value = _plain(_dig(data, path))
            if isinstance(table.c[column_name].type, Boolean):
                values[column_name] = bool(value) if value is not None else True
            else:
                values[column_name] = "" if value is None else str(value)
        return values

    @staticmethod
    def _record(row: DocumentRowMixin) -> Dict[str, Any]:
        data = json.loads(row.data_json) if row.data_json else {}
        data["id"] = row.id
        data["version"] = row.version
        return data

    @staticmethod
    def _serialize(data: Mapping[str, Any]) -> str:
        payload = {k: v for k, v in data.items() if k not in _RESERVED}
        return json.dumps(payload, ensure_ascii=False, default=str)

    # ------------------------------------------------------------
    # Protocolo DocumentStore
    # ------------------------------------------------------------

    def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> List[Dict[str, Any]]:
        model = self._model(collection)
        with session_scope(self._session_factory) as session:
            q = session.query(model)
            for path, value in (filters or {}).items():
                q = q.filter(self._column(model, path) == _plain(value))
            if order_by:
                column = self._column(model, order_by)
                q = q.order_by(column.desc() if descending else column.asc(), model.created_at)
            if limit:
                q = q.limit(limit)
            return [self._record(row) for row in q.all()]

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        model = self._model(collection)
        with session_scope(self._session_factory) as session:
            row = session.get(model, record_id)
            return self._record(row) if row else None

    def insert(self, collection: str, data: Mapping[str, Any]) -> str:
        model = self._model(collection)
        record_id = str(data.get("id") or uuid.uuid4())
        try:
            with session_scope(self._session_factory) as session:
                row = model(
                    id=record_id,
                    data_json=self._serialize(data),
                    version=0,
                    **self._indexed_values(model, data),
                )
                session.add(row)
        except IntegrityError:
            # Otro escritor insertó primero el mismo id (o la misma llave única)
            raise ConcurrentModification(f"{collection}/{record_id} ya existe") from None
        logger.debug(f"{collection}: insertado {record_id}")
        return record_id

    def update(
        self,
        collection: str,
        record_id: str,
        partial: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> None:
        model = self._model(collection)
        with session_scope(self._session_factory) as session:
            row = session.get(model, record_id, with_for_update=True)
            if not row:
                raise NotFound(f"{collection}/{record_id} no encontrado")
            if expected_version is not None and row.version != expected_version:
                raise ConcurrentModification(
                    "El registro fue modificado por otro usuario. Recarga e intenta de nuevo."
                )
            data = json.loads(row.data_json) if row.data_json else {}
            data.update({k: v for k, v in partial.items() if k not in _RESERVED})
            # Compare-and-set sobre la versión leída: atómico también entre procesos
            result = session.execute(
                sa_update(model)
                .where(model.id == record_id, model.version == row.version)
                .values(
                    data_json=self._serialize(data),
                    version=row.version + 1,
                    **self._indexed_values(model, data),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConcurrentModification(
                    "El registro fue modificado por otro usuario. Recarga e intenta de nuevo."
                )

    def delete(self, collection: str, record_id: str) -> None:
        model = self._model(collection)
        with session_scope(self._session_factory) as session:
            row = session.get(model, record_id)
            if not row:
                raise NotFound(f"{collection}/{record_id} no encontrado")
            session.delete(row)
