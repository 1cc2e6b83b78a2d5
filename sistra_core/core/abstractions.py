"""
Abstracciones (Protocols) de los colaboradores que consume el core.

Estos protocols definen las interfaces que la infraestructura debe
implementar para que el gestor de trámites funcione con cualquier backend:
- Quién es el usuario autenticado
- Dónde se guardan los documentos
- A dónde van las entradas de bitácora
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol

from ..domain_models import Usuario


class AuthPrincipalProvider(Protocol):
    """
    Proveedor del principal autenticado.

    Una instancia por sesión de UI: no hay sesión global compartida.
    """

    def current_principal(self) -> Optional[Usuario]:
        """Usuario de la sesión, o None si no hay sesión iniciada."""
        ...

    def sign_in(self, identifier: str, secret: str) -> Usuario:
        """
        Inicia sesión con matrícula y contraseña.

        Raises:
            InvalidInput: Si el formulario no pasa `validate_login_input`.
            InvalidSession: Si las credenciales no son válidas.
        """
        ...

    def sign_out(self) -> None:
        ...


class DocumentStore(Protocol):
    """
    Almacén de documentos con consulta por campo.

    Los registros son dicts planos; el id viaja aparte y `get`/`query`
    lo devuelven dentro del dict bajo la llave "id".
    """

    def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> List[Dict[str, Any]]:
        """
        Devuelve los registros que cumplen todos los filtros de igualdad.

        Args:
            collection: Nombre de la colección ("tramites", "bitacora", ...)
            filters: Campo (ruta con puntos) -> valor esperado
            order_by: Campo por el cual ordenar
            descending: Orden descendente si True
            limit: Máximo de registros
        """
        ...

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        ...

    def insert(self, collection: str, data: Mapping[str, Any]) -> str:
        """Guarda un registro nuevo y devuelve su id."""
        ...

    def update(
        self,
        collection: str,
        record_id: str,
        partial: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> None:
        """
        Mezcla `partial` sobre el registro (nivel superior).

        Raises:
            NotFound: Si el registro no existe.
            ConcurrentModification: Si `expected_version` no coincide.
        """
        ...

    def delete(self, collection: str, record_id: str) -> None:
        ...


class AuditSink(Protocol):
    """Destino append-only de la bitácora."""

    def append(self, entry: Mapping[str, Any]) -> None:
        """
        Registra una entrada. Puede ser fire-and-forget; si falla, el
        llamador lo registra como advertencia y sigue.
        """
        ...
