"""
Bitácora institucional.

- `StoreAuditSink` escribe cada entrada en la colección "bitacora" del
  almacén de documentos.
- `QueuedAuditSink` envuelve otro sink y escribe desde un hilo de fondo con
  reintentos locales, para que una caída de la bitácora no bloquee el
  trámite. Lo que agota los reintentos se loguea como ERROR con la entrada
  completa: nunca se descarta en silencio.
- `safe_append` es el punto por el que pasan los servicios: si el sink
  falla, registra una advertencia y sigue.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
import uuid
from datetime import UTC, datetime
from typing import Any, Dict, Mapping

from .config import Settings, get_settings
from .core.abstractions import AuditSink, DocumentStore
from .domain_models import Bitacora, CategoriaBitacora

logger = logging.getLogger(__name__)

COLLECTION = "bitacora"


def build_entry(
    tramite_id: str,
    usuario: str,
    accion: str,
    descripcion: str,
    categoria: CategoriaBitacora = CategoriaBitacora.WORKFLOW,
    datos: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    """Arma una entrada de bitácora como dict listo para el sink."""
    return Bitacora(
        tramite_id=tramite_id,
        usuario=usuario,
        accion=accion,
        descripcion=descripcion,
        categoria=categoria,
        datos=datos or {},
        fecha=datetime.now(UTC).replace(tzinfo=None),
    ).to_dict()


class StoreAuditSink:
    """Escribe la bitácora en el almacén de documentos."""

    def __init__(self, store: DocumentStore):
        self._store = store

    def append(self, entry: Mapping[str, Any]) -> None:
        data = dict(entry)
        data["id"] = data.get("id") or str(uuid.uuid4())
        if not data.get("fecha"):
            data["fecha"] = datetime.now(UTC).replace(tzinfo=None).isoformat()
        self._store.insert(COLLECTION, data)


class QueuedAuditSink:
    """
    Sink asíncrono con reintentos.

    `append` encola y regresa de inmediato; un hilo de fondo entrega al
    sink delegado. `flush()` espera a que la cola se vacíe.
    """

    _STOP = object()

    def __init__(
        self,
        delegate: AuditSink,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self._delegate = delegate
        self._max_retries = settings.audit_max_retries if max_retries is None else max_retries
        self._retry_delay = settings.audit_retry_delay if retry_delay is None else retry_delay
        self._queue: queue.Queue = queue.Queue()
        self.failed: list[Dict[str, Any]] = []
        self._worker = threading.Thread(target=self._run, name="sistra-audit", daemon=True)
        self._worker.start()

    def append(self, entry: Mapping[str, Any]) -> None:
        data = dict(entry)
        # La fecha es la del evento, no la de la escritura diferida
        if not data.get("fecha"):
            data["fecha"] = datetime.now(UTC).replace(tzinfo=None).isoformat()
        self._queue.put(data)

    def flush(self) -> None:
        self._queue.join()

    def close(self) -> None:
        self._queue.put(self._STOP)
        self._worker.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                self._deliver(item)
            finally:
                self._queue.task_done()

    def _deliver(self, entry: Dict[str, Any]) -> None:
        for attempt in range(1, self._max_retries + 1):
            try:
                self._delegate.append(entry)
                return
            except Exception as e:
                logger.warning(
                    f"Bitácora: intento {attempt}/{self._max_retries} fallido "
                    f"({type(e).__name__}: {e})"
                )
                if attempt < self._max_retries:
                    time.sleep(self._retry_delay)
        self.failed.append(entry)
        logger.error(f"Bitácora: entrada no registrada tras {self._max_retries} intentos: {entry}")


def safe_append(sink: AuditSink, entry: Mapping[str, Any]) -> bool:
    """
    Registra en bitácora sin bloquear la operación principal.

    Returns:
        True si el sink aceptó la entrada, False si falló (ya logueado).
    """
    try:
        sink.append(entry)
        return True
    except Exception as e:
        logger.warning(
            f"No fue posible registrar en bitácora '{entry.get('accion')}' "
            f"del trámite {entry.get('tramite_id')}: {e}"
        )
        return False
