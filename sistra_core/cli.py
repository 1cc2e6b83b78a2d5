"""
CLI de operación del core.

Ejecutar:
    sistra init-db
    sistra create-admin --matricula ADM001 --nombre "Nombre" --unidad UMF-01 --password '...'
    sistra transitions [ESTATUS]
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys

from .auth import bootstrap_admin
from .config import get_settings
from .db.store import SqlDocumentStore
from .domain_models import EstatusWorkflow
from .errors import SistraError
from .workflow import WORKFLOW_TRANSITIONS, describe_allowed

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def cmd_init_db(args: argparse.Namespace) -> int:
    url = args.database_url or get_settings().database_url
    SqlDocumentStore.from_url(url)
    print(f"✅ Base de datos inicializada: {url}")
    return 0


def cmd_create_admin(args: argparse.Namespace) -> int:
    settings = get_settings()
    url = args.database_url or settings.database_url
    password = args.password or getpass.getpass("Contraseña: ")

    store = SqlDocumentStore.from_url(url)
    usuario = bootstrap_admin(
        store,
        matricula=args.matricula,
        nombre=args.nombre,
        unidad=args.unidad,
        password=password,
        ooad=args.ooad,
        settings=settings,
    )
    print(f"✅ Administrador creado: {usuario.matricula}")
    print(f"   ID: {usuario.id}")
    return 0


def cmd_transitions(args: argparse.Namespace) -> int:
    if args.estatus:
        origin = EstatusWorkflow(args.estatus.upper())
        print(f"{origin.value} -> {describe_allowed(WORKFLOW_TRANSITIONS[origin])}")
        return 0

    for origin, nexts in WORKFLOW_TRANSITIONS.items():
        print(f"{origin.value:<24} -> {describe_allowed(nexts)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sistra", description="Herramientas del core de trámites")
    parser.add_argument("--database-url", default=None, help="URL SQLAlchemy (default: DATABASE_URL)")
    parser.add_argument("--log-level", default=None, help="Nivel de logging (default: LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init-db", help="Crea las tablas que falten")
    p_init.set_defaults(func=cmd_init_db)

    p_admin = sub.add_parser("create-admin", help="Crea el primer ADMIN_SISTEMA")
    p_admin.add_argument("--matricula", required=True)
    p_admin.add_argument("--nombre", required=True)
    p_admin.add_argument("--unidad", required=True)
    p_admin.add_argument("--ooad", default="")
    p_admin.add_argument("--password", default=None, help="Si se omite, se pide por consola")
    p_admin.set_defaults(func=cmd_create_admin)

    p_trans = sub.add_parser("transitions", help="Muestra el grafo de estatus")
    p_trans.add_argument(
        "estatus",
        nargs="?",
        choices=[s.value for s in EstatusWorkflow] + [s.value.lower() for s in EstatusWorkflow],
        metavar="ESTATUS",
    )
    p_trans.set_defaults(func=cmd_transitions)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level or get_settings().log_level)

    try:
        return args.func(args)
    except SistraError as e:
        logger.error(f"{type(e).__name__}: {e.message}")
        print(f"❌ {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
