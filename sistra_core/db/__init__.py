"""
Persistencia SQLAlchemy: engine y sesiones (`database`), filas ORM
(`models`) y el almacén de documentos (`store`).
"""
