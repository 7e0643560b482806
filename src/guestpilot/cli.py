"""Operator CLI: schema setup, knowledge sync runs and credential encryption."""

from __future__ import annotations

import argparse
import asyncio
import sys
from uuid import UUID

from guestpilot.core.config import AppSettings
from guestpilot.core.db.models import Tenant
from guestpilot.core.db.session import create_engine_from_settings, init_db, session_scope
from guestpilot.core.errors import CoreError
from guestpilot.core.logging import configure_logging
from guestpilot.core.security import CredentialCipher
from guestpilot.integrations.hostaway import HostawayClient
from guestpilot.knowledge_sync.progress import InMemorySyncProgressStore
from guestpilot.knowledge_sync.service import KnowledgeSyncService, SyncResult
from guestpilot.rag.embeddings import build_embedder
from guestpilot.rag.knowledge import KnowledgeStore


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="guestpilot",
        description="GuestPilot operator commands.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create database tables.")

    sync = commands.add_parser(
        "sync-knowledge",
        help="Mine a tenant's Hostaway conversation history into the knowledge base.",
    )
    sync.add_argument("--tenant-id", type=_parse_uuid, required=True, help="Tenant UUID.")
    sync.add_argument(
        "--user-id",
        required=True,
        help="Identifier the run's progress is recorded under.",
    )
    sync.add_argument(
        "--limit",
        type=_positive_int,
        default=None,
        help="Process only the first N reservations (default: all).",
    )

    encrypt = commands.add_parser(
        "encrypt-secret",
        help="Encrypt a credential with SECURITY_ENCRYPTION_KEY for storage on a tenant.",
    )
    encrypt.add_argument(
        "value",
        nargs="?",
        default=None,
        help="Plain-text secret (read from stdin when omitted).",
    )
    encrypt.add_argument(
        "--generate-key",
        action="store_true",
        help="Print a fresh base64 encryption key instead.",
    )
    return parser


def _init_db(settings: AppSettings) -> int:
    init_db(create_engine_from_settings(settings))
    print("database tables created")
    return 0


async def _sync_knowledge(
    settings: AppSettings, tenant_id: UUID, user_id: str, limit: int | None
) -> SyncResult:
    cipher = CredentialCipher(settings.security.encryption_key)
    platform = HostawayClient(settings.hostaway, cipher, rate_limit_retries=0)
    try:
        with session_scope(settings) as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None:
                raise CoreError(f"tenant {tenant_id} not found", status_code=404)
            service = KnowledgeSyncService(
                platform,
                KnowledgeStore(session, build_embedder(settings.openai)),
                InMemorySyncProgressStore(
                    ttl_seconds=settings.knowledge_sync.progress_ttl_seconds
                ),
                settings.knowledge_sync,
            )
            return await service.run(tenant, user_id, limit=limit)
    finally:
        await platform.close()


def _encrypt_secret(settings: AppSettings, value: str | None, generate_key: bool) -> int:
    if generate_key:
        print(CredentialCipher.generate_key())
        return 0
    secret = value if value is not None else sys.stdin.read().strip()
    if not secret:
        print("error: nothing to encrypt", file=sys.stderr)
        return 2
    print(CredentialCipher(settings.security.encryption_key).encrypt(secret))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = AppSettings.load()
    configure_logging(settings.log_level)

    try:
        if args.command == "init-db":
            return _init_db(settings)
        if args.command == "sync-knowledge":
            result = asyncio.run(
                _sync_knowledge(settings, args.tenant_id, args.user_id, args.limit)
            )
            print(result.message)
            return 0
        return _encrypt_secret(settings, args.value, args.generate_key)
    except CoreError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
