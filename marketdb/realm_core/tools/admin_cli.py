"""
Admin CLI tool for MarketDB.

This tool operates on the local replica named by DATA_DIR / DB_FILENAME:
- init: Create the database file and schema
- register: Register a buyer
- become-vendor: Onboard a registered user as a vendor
- realms: List a user's realms
- authorize: Ask the policy engine for a decision
- stats: Row counts per table

Usage:
    marketdb-admin init
    marketdb-admin register --email ann@example.com --name Ann
    marketdb-admin become-vendor --user-id u1 --store-name "Fashion Store"
    marketdb-admin realms --user-id u1 --role vendor
    marketdb-admin authorize --realm-id shop/fashion-store --entity-type product --operation update

Invariants:
    - Output is JSON on stdout; errors are JSON on stderr with exit code 1
    - The CLI goes through RealmService like every other caller

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripting
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from ..access import Capability
from ..config import CoreConfig
from ..errors import RealmDbError
from ..schema import EntityType, Role
from ..service import RealmService

logger = logging.getLogger(__name__)


class AdminCLI:
    """Commands over one RealmService, each returning a JSON-able value.

    Example:
        >>> cli = AdminCLI(RealmService.from_config(CoreConfig.from_env()))
        >>> cli.register("ann@example.com", "Ann")
        {'id': '...', 'email': 'ann@example.com', ...}
    """

    def __init__(self, service: RealmService) -> None:
        self.service = service

    def init(self) -> dict[str, Any]:
        self.service.store.initialize()
        return {"db_path": str(self.service.store.db_path), "initialized": True}

    def register(self, email: str, name: str, user_id: str | None = None) -> dict[str, Any]:
        return self.service.users.register(email, name, user_id=user_id).to_row()

    def become_vendor(
        self,
        user_id: str,
        store_name: str,
        description: str = "",
        image: str = "",
    ) -> dict[str, Any]:
        ctx = self.service.users.context_for(user_id)
        return self.service.become_vendor(ctx, store_name, description, image).to_dict()

    def realms(self, user_id: str, role: str | None = None) -> list[dict[str, Any]]:
        role_filter = Role(role) if role else None
        return [r.to_row() for r in self.service.realms_of(user_id, role_filter)]

    def authorize(
        self,
        user_id: str | None,
        realm_id: str,
        entity_type: str,
        operation: str,
        target_realm_id: str | None = None,
    ) -> dict[str, Any]:
        ctx = self.service.users.context_for(user_id) if user_id else None
        decision = self.service.authorize(
            ctx,
            realm_id,
            EntityType.from_str(entity_type),
            Capability.from_str(operation),
            target_realm_id,
        )
        return decision.to_dict()

    def stats(self) -> dict[str, int]:
        return self.service.store.stats()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MarketDB admin tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create the database and schema")

    register_parser = subparsers.add_parser("register", help="Register a buyer")
    register_parser.add_argument("--email", required=True, help="Unique email")
    register_parser.add_argument("--name", required=True, help="Display name")
    register_parser.add_argument("--user-id", help="Id from the identity provider")

    vendor_parser = subparsers.add_parser("become-vendor", help="Onboard a user as a vendor")
    vendor_parser.add_argument("--user-id", required=True, help="Registered user id")
    vendor_parser.add_argument("--store-name", required=True, help="Store name")
    vendor_parser.add_argument("--description", default="", help="Store description")
    vendor_parser.add_argument("--image", default="", help="Store image URL")

    realms_parser = subparsers.add_parser("realms", help="List a user's realms")
    realms_parser.add_argument("--user-id", required=True, help="User id")
    realms_parser.add_argument(
        "--role", choices=[r.value for r in Role if r != Role.OWNER], help="Role filter"
    )

    authorize_parser = subparsers.add_parser("authorize", help="Show a policy decision")
    authorize_parser.add_argument("--user-id", help="Caller (omit for anonymous)")
    authorize_parser.add_argument("--realm-id", required=True, help="Scoped realm")
    authorize_parser.add_argument(
        "--entity-type", required=True, choices=[t.value for t in EntityType], help="Entity type"
    )
    authorize_parser.add_argument(
        "--operation", required=True, choices=["create", "read", "update", "delete"], help="Operation"
    )
    authorize_parser.add_argument("--target-realm-id", help="The target entity's own realm")

    subparsers.add_parser("stats", help="Row counts per table")
    return parser


def run(args: argparse.Namespace, cli: AdminCLI) -> Any:
    if args.command == "init":
        return cli.init()
    if args.command == "register":
        return cli.register(args.email, args.name, args.user_id)
    if args.command == "become-vendor":
        return cli.become_vendor(args.user_id, args.store_name, args.description, args.image)
    if args.command == "realms":
        return cli.realms(args.user_id, args.role)
    if args.command == "authorize":
        return cli.authorize(
            args.user_id, args.realm_id, args.entity_type, args.operation, args.target_realm_id
        )
    if args.command == "stats":
        return cli.stats()
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the admin tool."""
    args = build_parser().parse_args(argv)

    try:
        config = CoreConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    cli = AdminCLI(RealmService.from_config(config))
    try:
        result = run(args, cli)
    except RealmDbError as e:
        print(
            json.dumps({"error": e.message, "error_code": e.code, "details": e.details}, indent=2),
            file=sys.stderr,
        )
        sys.exit(1)

    print(json.dumps(result, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
