"""
Contratos del core con sus colaboradores externos.

El core no habla directamente con una base de datos ni con una UI: recibe
implementaciones de estos protocolos (autenticación, almacén de documentos
y bitácora) y las usa a través de llamadas tipadas.
"""
