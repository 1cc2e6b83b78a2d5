"""
Contabilidad de impresiones y reimpresiones.

Cada impresión del Formato 027 o de la Tarjeta 028 queda en bitácora. La
primera es ORIGINAL; cualquier otra es REIMPRESION y exige motivo. El
contador del trámite decide cuál es la primera (se escribe con la versión
leída) y es lo único que puede cambiar en un trámite CERRADO.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from .audit import build_entry, safe_append
from .config import Settings, get_settings
from .core.abstractions import AuditSink, DocumentStore
from .domain_models import (
    CategoriaBitacora,
    PrintMetadata,
    TipoDocumentoImpresion,
    TipoEmision,
    Tramite,
    Usuario,
)
from .errors import ConcurrentModification, InvalidInput, NotFound, WorkflowViolation
from .roles import ensure_unit_scope, require_principal
from .workflow import is_printable

logger = logging.getLogger(__name__)

ACCION_IMPRESION = "IMPRESION_DOCUMENTO"

NOMBRE_DOCUMENTO = {
    TipoDocumentoImpresion.FORMATO: "Formato 027",
    TipoDocumentoImpresion.TARJETA: "Tarjeta de control 028",
}


class PrintService:
    """Registra impresiones y devuelve la metadata para el renderizado."""

    def __init__(self, store: DocumentStore, audit_sink: AuditSink, settings: Settings | None = None):
        self.store = store
        self.audit_sink = audit_sink
        self.settings = settings or get_settings()

    def _load(self, tramite_id: str) -> Tramite:
        record = self.store.get("tramites", tramite_id)
        if not record:
            raise NotFound(f"Trámite {tramite_id} no encontrado")
        return Tramite.from_dict(record)

    def _prior_prints(self, tramite: Tramite, documento: TipoDocumentoImpresion) -> int:
        entries = self.store.query(
            "bitacora",
            filters={"tramite_id": tramite.id, "categoria": CategoriaBitacora.IMPRESION.value},
        )
        logged = sum(1 for e in entries if (e.get("datos") or {}).get("documento") == documento.value)
        # Con bitácora diferida el contador puede ir adelante de las entradas
        return max(logged, tramite.impresiones.total(documento))

    def request_print(
        self,
        tramite_id: str,
        documento: TipoDocumentoImpresion | str,
        actor: Usuario | None,
        motivo: str | None = None,
    ) -> PrintMetadata:
        """
        Registra la impresión de un documento del trámite.

        El contador se escribe primero, con la versión leída del trámite;
        si otra impresión ganó la carrera se relee y se vuelve a decidir si
        es ORIGINAL o REIMPRESION. La bitácora se escribe al final.

        Args:
            tramite_id: ID del trámite
            documento: "formato" (027) o "tarjeta" (028)
            actor: Usuario que imprime
            motivo: Obligatorio si ya hubo una impresión previa del documento

        Returns:
            PrintMetadata con folio, tipo de emisión y autorizador.

        Raises:
            InvalidSession, Unauthorized, NotFound
            WorkflowViolation: El trámite aún no está autorizado.
            InvalidInput: Reimpresión sin motivo. No se escribe nada.
            ConcurrentModification: Se agotaron los reintentos.
        """
        actor = require_principal(actor)
        documento = TipoDocumentoImpresion(documento)
        motivo = (motivo or "").strip() or None

        intentos = self.settings.concurrencia_max_reintentos
        for intento in range(1, intentos + 1):
            tramite = self._load(tramite_id)
            ensure_unit_scope(actor, tramite.unidad)

            if not is_printable(tramite.estatus):
                raise WorkflowViolation(
                    f"El trámite {tramite.folio} está en {tramite.estatus.value}; "
                    "solo se imprimen documentos de trámites autorizados."
                )

            previas = self._prior_prints(tramite, documento)
            emision = TipoEmision.REIMPRESION if previas else TipoEmision.ORIGINAL
            if emision is TipoEmision.REIMPRESION and not motivo:
                raise InvalidInput(
                    f"La reimpresión del {NOMBRE_DOCUMENTO[documento]} requiere capturar el motivo."
                )

            now = datetime.now(UTC).replace(tzinfo=None)
            metadata = PrintMetadata(
                folio=tramite.folio,
                documento=documento,
                emision=emision,
                autorizado_por=tramite.nombre_autorizador or actor.nombre,
                fecha_autorizacion=tramite.fecha_validacion_importe or now,
                motivo_reimpresion=motivo,
            )

            contador = tramite.impresiones
            setattr(contador, documento.value, contador.total(documento) + 1)
            contador.ultima_fecha = now
            contador.ultimo_usuario = actor.nombre
            if motivo:
                contador.ultimo_motivo_reimpresion = motivo
            try:
                self.store.update(
                    "tramites",
                    tramite.id,
                    {"impresiones": contador.to_dict()},
                    expected_version=tramite.version,
                )
            except ConcurrentModification:
                logger.warning(
                    f"Impresión concurrente de {tramite.folio} (intento {intento} de {intentos}); se relee"
                )
                continue

            safe_append(
                self.audit_sink,
                build_entry(
                    tramite.id,
                    actor.nombre,
                    ACCION_IMPRESION,
                    f"{emision.value} del {NOMBRE_DOCUMENTO[documento]} ({tramite.folio}).",
                    CategoriaBitacora.IMPRESION,
                    metadata.to_dict(),
                ),
            )
            logger.info(f"{emision.value} {documento.value} de {tramite.folio} por {actor.nombre}")
            return metadata

        raise ConcurrentModification(
            f"No fue posible registrar la impresión del trámite {tramite_id}. Intenta de nuevo."
        )
