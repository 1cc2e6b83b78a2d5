"""
Core de trámites de dotación de anteojos.

Reglas de negocio sin UI: roles, elegibilidad por contrato colectivo,
workflow de estatus, validaciones de captura, impresión y bitácora.

El núcleo es `tramites.TramiteService`; recibe un `DocumentStore` y un
`AuditSink` (ver `core.abstractions`), y el usuario que opera en cada
llamada.
"""
