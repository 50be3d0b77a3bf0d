import argparse
import asyncio

from thcplus.core.config import settings
from thcplus.db.session import SessionLocal
from thcplus.models.admin import AdminRole
from thcplus.services import auth as auth_service
from thcplus.services import coupon_sync
from thcplus.services.square import get_discount_provider


async def seed_admin(*, email: str, password: str, name: str, role: AdminRole) -> None:
    async with SessionLocal() as session:
        admin, created = await auth_service.create_admin(
            session, email=email, password=password, name=name, role=role
        )
    if created:
        print(f"Created admin {admin.email}")
    else:
        print(f"Admin {admin.email} already exists; nothing to do")


async def sync_square_usage() -> None:
    provider = get_discount_provider()
    if provider is None:
        raise SystemExit("Square integration is not configured")
    async with SessionLocal() as session:
        result = await coupon_sync.sync_all_coupons_from_square(session, provider=provider)
    print(f"Synced {result.synced_count} coupons ({result.failed_count} failed)")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="THC Plus maintenance commands")
    subparsers = parser.add_subparsers(dest="command")

    seed = subparsers.add_parser("seed-admin", help="Create the initial admin account if missing")
    seed.add_argument("--email", default=None, help="Admin email (defaults to ADMIN_EMAIL)")
    seed.add_argument("--password", default=None, help="Admin password (defaults to ADMIN_PASSWORD)")
    seed.add_argument("--name", default="Admin User", help="Display name")
    seed.add_argument("--super-admin", action="store_true", help="Grant the super_admin role")

    subparsers.add_parser("sync-square-usage", help="Reconcile coupon usage counts from Square orders")
    return parser


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command == "seed-admin":
        email = (args.email or settings.admin_email or "").strip()
        password = args.password or settings.admin_password
        if not email or not password:
            raise SystemExit("Admin email and password are required (flags or ADMIN_EMAIL/ADMIN_PASSWORD)")
        role = AdminRole.super_admin if args.super_admin else AdminRole.admin
        asyncio.run(seed_admin(email=email, password=password, name=args.name, role=role))
        return True

    if args.command == "sync-square-usage":
        asyncio.run(sync_square_usage())
        return True

    return False


def main():
    parser = _build_parser()
    args = parser.parse_args()
    if not _run_cli_command(args):
        parser.print_help()


if __name__ == "__main__":
    main()
