from __future__ import annotations

"""
sistra_core.domain_models
=========================

Modelos de dominio (dataclasses) usados por todo el core.

Este módulo define las estructuras "neutras" del sistema:

- Enumeraciones cerradas (`Role`, `EstatusWorkflow`, `TipoBeneficiario`, ...)
- El principal autenticado (`Usuario`)
- El beneficiario y la receta embebidos en cada trámite
- El agregado central (`Tramite`) y su contador de impresiones
- La entrada de bitácora (`Bitacora`) y la metadata de impresión

Principios de diseño
--------------------
- Dataclasses sin lógica de negocio: este módulo NO habla con la base ni
  decide reglas. Solo sabe convertirse a dict y reconstruirse desde dict.
- El almacén de documentos guarda dicts planos; las fechas viajan como
  ISO-8601 y los enums como su valor string.
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional


# ============================================================
# Enumeraciones
# ============================================================

class Role(str, Enum):
    """Roles institucionales del sistema."""

    CAPTURISTA_UNIDAD = "CAPTURISTA_UNIDAD"
    VALIDADOR_PRESTACIONES = "VALIDADOR_PRESTACIONES"
    AUTORIZADOR_JSDP_DSPNC = "AUTORIZADOR_JSDP_DSPNC"
    CONSULTA_CENTRAL = "CONSULTA_CENTRAL"
    ADMIN_SISTEMA = "ADMIN_SISTEMA"


class EstatusWorkflow(str, Enum):
    """Estatus del ciclo de vida de un trámite."""

    BORRADOR = "BORRADOR"
    EN_REVISION_DOCUMENTAL = "EN_REVISION_DOCUMENTAL"
    RECHAZADO = "RECHAZADO"
    AUTORIZADO = "AUTORIZADO"
    ENVIADO_A_OPTICA = "ENVIADO_A_OPTICA"
    EN_PROCESO_OPTICA = "EN_PROCESO_OPTICA"
    LISTO_PARA_ENTREGA = "LISTO_PARA_ENTREGA"
    ENTREGADO = "ENTREGADO"
    CERRADO = "CERRADO"


class TipoBeneficiario(str, Enum):
    """Tipo de persona que recibe los anteojos."""

    TRABAJADOR = "TRABAJADOR"
    HIJO = "HIJO"
    JUBILADO_PENSIONADO = "JUBILADO_PENSIONADO"


class TipoDocumentoImpresion(str, Enum):
    """Documentos imprimibles de un trámite."""

    FORMATO = "formato"  # Formato 027
    TARJETA = "tarjeta"  # Tarjeta de control 028


class TipoEmision(str, Enum):
    ORIGINAL = "ORIGINAL"
    REIMPRESION = "REIMPRESION"


class CategoriaBitacora(str, Enum):
    WORKFLOW = "WORKFLOW"
    IMPRESION = "IMPRESION"
    SISTEMA = "SISTEMA"


# ============================================================
# Helpers de serialización
# ============================================================

def _to_plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    return value


def parse_date(value: Any) -> Optional[date]:
    """Acepta `date`, `datetime` o string ISO; vacío -> None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def parse_datetime(value: Any) -> Optional[datetime]:
    """Acepta `datetime` o string ISO; vacío -> None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value))


def _known(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


# ============================================================
# Principal
# ============================================================

@dataclass
class Usuario:
    """
    Principal autenticado que opera el sistema.

    Attributes:
        id: Identificador del usuario en el almacén.
        nombre: Nombre completo (se usa en firmas y bitácora).
        matricula: Matrícula institucional, en mayúsculas. Es el login.
        role: Rol institucional.
        unidad: Unidad de adscripción (alcance de los capturistas).
        ooad: Órgano de operación administrativa desconcentrada.
        activo: Si False, no puede iniciar sesión ni operar.
    """

    id: str
    nombre: str
    role: Role
    unidad: str
    matricula: str = ""
    ooad: str = ""
    activo: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Usuario":
        values = _known(cls, data)
        values["role"] = Role(values["role"])
        return cls(**values)


# ============================================================
# Beneficiario y receta
# ============================================================

@dataclass
class Beneficiario:
    """
    Persona que recibe la dotación de anteojos.

    `nss_trabajador` es siempre el NSS del titular, incluso cuando el
    beneficiario es un hijo: la prestación del hijo cuelga del titular.
    """

    tipo: TipoBeneficiario
    nombre: str
    nss_trabajador: str
    apellido_paterno: str = ""
    apellido_materno: str = ""
    nss_hijo: Optional[str] = None
    matricula: Optional[str] = None
    clave_adscripcion: Optional[str] = None
    entidad_laboral: str = ""
    tipo_contratacion: str = ""
    fecha_nacimiento: Optional[date] = None
    ooad: str = ""
    titular_nombre_completo: Optional[str] = None
    constancia_estudios_vigente: Optional[bool] = None
    fecha_constancia_estudios: Optional[date] = None

    @property
    def nombre_completo(self) -> str:
        partes = [self.nombre, self.apellido_paterno, self.apellido_materno]
        return " ".join(p for p in partes if p)

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Beneficiario":
        values = _known(cls, data)
        values["tipo"] = TipoBeneficiario(values["tipo"])
        values["fecha_nacimiento"] = parse_date(values.get("fecha_nacimiento"))
        values["fecha_constancia_estudios"] = parse_date(values.get("fecha_constancia_estudios"))
        return cls(**values)


@dataclass
class Receta:
    """Datos de la receta IMSS que ampara la dotación."""

    folio_receta_imss: str
    descripcion_lente: str
    fecha_expedicion_receta: Optional[date] = None
    dioptrias: Optional[str] = None
    medicion_anteojos: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Receta":
        values = _known(cls, data)
        values["fecha_expedicion_receta"] = parse_date(values.get("fecha_expedicion_receta"))
        return cls(**values)


# ============================================================
# Trámite
# ============================================================

@dataclass
class ContadorImpresiones:
    """Cuántas veces se imprimió cada documento y la última reimpresión."""

    formato: int = 0
    tarjeta: int = 0
    ultima_fecha: Optional[datetime] = None
    ultimo_usuario: Optional[str] = None
    ultimo_motivo_reimpresion: Optional[str] = None

    def total(self, documento: TipoDocumentoImpresion) -> int:
        return getattr(self, documento.value)

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "ContadorImpresiones":
        values = _known(cls, data or {})
        values["ultima_fecha"] = parse_datetime(values.get("ultima_fecha"))
        return cls(**values)


@dataclass
class Tramite:
    """
    Solicitud de dotación de anteojos (agregado central).

    `dotacion_numero` es el índice de esta dotación dentro del alcance
    (contrato colectivo + beneficiario). `version` es el token de
    concurrencia optimista que mantiene el almacén.
    """

    id: str
    folio: str
    beneficiario: Beneficiario
    contrato_colectivo_aplicable: str
    receta: Receta
    estatus: EstatusWorkflow = EstatusWorkflow.EN_REVISION_DOCUMENTAL
    dotacion_numero: int = 1
    requiere_dictamen_medico: bool = False
    fecha_creacion: Optional[datetime] = None
    creador_id: str = ""
    unidad: str = ""
    lugar_solicitud: Optional[str] = None
    motivo_rechazo: Optional[str] = None

    # Importes
    importe_solicitado: float = 0.0
    importe_autorizado: Optional[float] = None
    costo_solicitud: Optional[float] = None
    validado_por: Optional[str] = None
    fecha_validacion_importe: Optional[datetime] = None
    nombre_autorizador: Optional[str] = None
    firma_autorizacion: Optional[str] = None

    clave_presupuestal: str = ""
    qna_inclusion: Optional[str] = None  # Formato 2026/003

    # Fechas de proceso
    fecha_recepcion_optica: Optional[date] = None
    fecha_entrega_optica: Optional[date] = None
    fecha_entrega_real: Optional[date] = None

    impresiones: ContadorImpresiones = field(default_factory=ContadorImpresiones)
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = _to_plain(asdict(self))
        data.pop("id", None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tramite":
        values = _known(cls, data)
        values["beneficiario"] = Beneficiario.from_dict(values["beneficiario"])
        values["receta"] = Receta.from_dict(values["receta"])
        values["estatus"] = EstatusWorkflow(values.get("estatus", EstatusWorkflow.EN_REVISION_DOCUMENTAL))
        values["impresiones"] = ContadorImpresiones.from_dict(values.get("impresiones"))
        for key in ("fecha_creacion", "fecha_validacion_importe"):
            values[key] = parse_datetime(values.get(key))
        for key in ("fecha_recepcion_optica", "fecha_entrega_optica", "fecha_entrega_real"):
            values[key] = parse_date(values.get(key))
        return cls(**values)


# ============================================================
# Bitácora e impresión
# ============================================================

@dataclass
class Bitacora:
    """
    Entrada append-only de la bitácora institucional.

    Se registra en cada creación, cada intento de transición (aceptado o
    rechazado), cada impresión, cada edición de captura y cada eliminación.
    """

    tramite_id: str
    usuario: str
    accion: str
    descripcion: str
    categoria: CategoriaBitacora = CategoriaBitacora.WORKFLOW
    datos: Dict[str, Any] = field(default_factory=dict)
    fecha: Optional[datetime] = None
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = _to_plain(asdict(self))
        data.pop("id", None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bitacora":
        values = _known(cls, data)
        values["categoria"] = CategoriaBitacora(values.get("categoria", CategoriaBitacora.WORKFLOW))
        values["fecha"] = parse_datetime(values.get("fecha"))
        return cls(**values)


@dataclass
class PrintMetadata:
    """Metadata que recibe el colaborador de renderizado al imprimir."""

    folio: str
    documento: TipoDocumentoImpresion
    emision: TipoEmision
    autorizado_por: str
    fecha_autorizacion: datetime
    motivo_reimpresion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain(asdict(self))
