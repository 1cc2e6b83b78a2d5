"""
Comandos de alta y actualización de trámites.

Estos modelos definen la forma de lo que la UI le manda al core. Pydantic
valida tipos; las reglas de negocio (NSS, receta, tope de dotaciones)
las aplican `validators` y `tramites`.

Las actualizaciones son una unión discriminada por `tipo`, una variante por
grupo de campos, para que no se puedan mezclar en un mismo comando un
cambio de estatus y una edición de captura.
"""

from __future__ import annotations

from datetime import date
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from .domain_models import Beneficiario, EstatusWorkflow, Receta


class CrearTramite(BaseModel):
    """Alta de un trámite desde el wizard de captura."""

    beneficiario: Beneficiario
    receta: Receta
    contrato_colectivo_aplicable: str = Field(default="", description="Contrato colectivo cuyo tope aplica")
    importe_solicitado: float = Field(default=0.0, description="Importe solicitado en pesos")
    lugar_solicitud: Optional[str] = None
    clave_presupuestal: Optional[str] = None
    qna_inclusion: Optional[str] = Field(default=None, description="Quincena de inclusión, ej. 2026/003")


class CambioEstatus(BaseModel):
    """Mover el trámite a otro estatus del workflow."""

    tipo: Literal["estatus"] = "estatus"
    estatus: EstatusWorkflow
    nota: Optional[str] = Field(default=None, description="Motivo de rechazo u observación")
    importe_autorizado: Optional[float] = Field(
        default=None,
        description="Solo al autorizar; lo fija un rol con facultad de autorizar importes",
    )


class EdicionBeneficiario(BaseModel):
    """Corrección de datos del beneficiario o del contrato aplicable."""

    tipo: Literal["beneficiario"] = "beneficiario"
    beneficiario: Optional[Beneficiario] = None
    contrato_colectivo_aplicable: Optional[str] = None


class EdicionReceta(BaseModel):
    """Corrección de los datos médicos."""

    tipo: Literal["receta"] = "receta"
    receta: Optional[Receta] = None
    importe_solicitado: Optional[float] = None


class EdicionProceso(BaseModel):
    """Fechas y costos del surtimiento en óptica."""

    tipo: Literal["proceso"] = "proceso"
    fecha_recepcion_optica: Optional[date] = None
    fecha_entrega_optica: Optional[date] = None
    fecha_entrega_real: Optional[date] = None
    costo_solicitud: Optional[float] = None
    qna_inclusion: Optional[str] = None


ComandoActualizacion = Annotated[
    Union[CambioEstatus, EdicionBeneficiario, EdicionReceta, EdicionProceso],
    Field(discriminator="tipo"),
]

_comando_adapter = TypeAdapter(ComandoActualizacion)


def parse_comando(payload: dict) -> CambioEstatus | EdicionBeneficiario | EdicionReceta | EdicionProceso:
    """Construye el comando correcto a partir de un dict con `tipo`."""
    return _comando_adapter.validate_python(payload)
