#!/usr/bin/env python3
"""Command-line interface for voucher shop operations.

Usage:
    voucher-shop sweep --older-than-minutes 60
    voucher-shop load-vouchers --denomination 1000 codes.txt
    voucher-shop status 3f1c9a52-0a8e-4d7e-9a55-2b0f6f1f8c11
"""

import argparse
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..connectors import get_connector
from ..database import (
    VoucherRepository,
    create_async_engine,
    create_tables,
    get_async_session_factory,
    get_database_url,
)
from ..errors import VoucherShopError
from ..services import PaymentService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _session_scope() -> AsyncIterator[AsyncSession]:
    engine = create_async_engine(database_url=get_database_url())
    await create_tables(engine)
    session_factory = get_async_session_factory(engine)
    try:
        async with session_factory() as session:
            yield session
    finally:
        await engine.dispose()


async def run_sweep_async(older_than_minutes: Optional[int] = None) -> int:
    """Expire payments stuck in processing.

    Returns:
        Exit code (0 clean, 1 if some payments could not be processed).
    """
    settings = get_settings()
    minutes = older_than_minutes if older_than_minutes is not None else settings.stale_payment_minutes

    async with _session_scope() as session:
        service = PaymentService(session, get_connector(settings), settings)
        summary = await service.sweep_stale_payments(older_than=timedelta(minutes=minutes))

    print(json.dumps(summary, indent=2))
    if summary["errors"]:
        logger.warning(f"Sweep finished with {summary['errors']} errors")
        return 1
    return 0


async def load_vouchers_async(path: str, denomination: int) -> int:
    """Load voucher codes from a file, one per line.

    Returns:
        Exit code (0 all added, 1 if duplicates were skipped, 2 on bad input).
    """
    settings = get_settings()
    if not settings.is_valid_denomination(denomination):
        logger.error(
            f"Invalid denomination {denomination}. "
            f"Expected one of: {', '.join(str(d) for d in settings.denominations)}"
        )
        return 2

    try:
        with open(path) as f:
            codes = f.read().splitlines()
    except OSError as e:
        logger.error(f"Cannot read {path}: {e}")
        return 2

    async with _session_scope() as session:
        added, duplicates = await VoucherRepository(session).add_many(codes, denomination)
        await session.commit()

    print(json.dumps({"added": len(added), "duplicates": duplicates}, indent=2))
    if duplicates:
        logger.warning(f"Skipped {len(duplicates)} duplicate codes")
        return 1
    return 0


async def show_status_async(reference: str, poll: bool = True) -> int:
    """Print the status of a payment.

    Returns:
        Exit code (0 found, 2 otherwise).
    """
    settings = get_settings()
    async with _session_scope() as session:
        connector = get_connector(settings) if poll else None
        service = PaymentService(session, connector, settings)
        try:
            status = await service.get_status(reference, poll=poll)
        except VoucherShopError as e:
            logger.error(str(e))
            return 2

    print(json.dumps(status, indent=2))
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="voucher-shop",
        description="Voucher shop maintenance tools.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sweep_parser = subparsers.add_parser(
        "sweep",
        help="Fail payments that stayed in processing for too long",
    )
    sweep_parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=None,
        help="Age after which a processing payment is stale (default: STALE_PAYMENT_MINUTES)",
    )

    load_parser = subparsers.add_parser(
        "load-vouchers",
        help="Add voucher codes from a file with one code per line",
    )
    load_parser.add_argument(
        "--denomination", "-d",
        type=int,
        required=True,
        help="Face value of every code in the file",
    )
    load_parser.add_argument("file", help="Path to the code file")

    status_parser = subparsers.add_parser(
        "status",
        help="Show the status of a payment",
    )
    status_parser.add_argument("reference", help="Payment reference")
    status_parser.add_argument(
        "--no-poll",
        action="store_true",
        help="Only read the local record, do not ask the provider",
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 2

    try:
        if parsed_args.command == "sweep":
            return asyncio.run(run_sweep_async(parsed_args.older_than_minutes))
        if parsed_args.command == "load-vouchers":
            return asyncio.run(load_vouchers_async(parsed_args.file, parsed_args.denomination))
        if parsed_args.command == "status":
            return asyncio.run(show_status_async(parsed_args.reference, poll=not parsed_args.no_poll))
    except (VoucherShopError, ValueError) as e:
        logger.error(f"{parsed_args.command} failed: {e}")
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(main())
