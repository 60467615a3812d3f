"""Command line entry point.

Usage:
    python -m assetflow balances [--refresh] [--asset BTC]
    python -m assetflow quote BTC ETH 0.01 [--side SELL] [--ngnz]
    python -m assetflow swap NGNZ BTC 50000 --ngnz
    python -m assetflow withdraw USDT 25 TXYZ... TRC20 --code 123456 --pin 654321
    python -m assetflow transfer alice USDT 10 --code 123456 --pin 654321
    python -m assetflow fee USDT 25 TRC20
    python -m assetflow max-amount USDT
    python -m assetflow status TX_ID [--kind WITHDRAWAL]

Results are printed as JSON; the exit code is 1 when the call failed.
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from assetflow.client.api_client import ApiClient
from assetflow.config import get_settings
from assetflow.contracts.transfers import TransferKind, UsernameTransferSpec, WithdrawalSpec
from assetflow.services.balance_cache import BalanceCache
from assetflow.services.idempotency import generate_key
from assetflow.services.status_service import StatusPoller
from assetflow.services.swap_service import NgnzSwapService, SwapService
from assetflow.services.transfer_service import TransferService
from assetflow.services.withdrawal_service import WithdrawalService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="assetflow", description="Wallet transfer client")
    sub = parser.add_subparsers(dest="command", required=True)

    balances = sub.add_parser("balances", help="Show balances")
    balances.add_argument("--asset", type=str, help="Only show one asset")
    balances.add_argument("--refresh", action="store_true", help="Bypass the cache")

    for name, help_text in (("quote", "Request a swap quote"), ("swap", "Quote and accept a swap")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("from_asset")
        cmd.add_argument("to_asset")
        cmd.add_argument("amount")
        cmd.add_argument("--side", default="SELL", help="BUY, SELL, SOURCE_GIVEN or TARGET_GIVEN")
        cmd.add_argument("--ngnz", action="store_true", help="Use the NGNZ on/off-ramp flow")

    withdraw = sub.add_parser("withdraw", help="Withdraw to an external address")
    withdraw.add_argument("currency")
    withdraw.add_argument("amount")
    withdraw.add_argument("address")
    withdraw.add_argument("network")
    withdraw.add_argument("--code", required=True, help="2FA code")
    withdraw.add_argument("--pin", required=True, help="Password PIN")
    withdraw.add_argument("--destination-memo", help="Destination tag / memo")
    withdraw.add_argument("--memo", help="Note")
    withdraw.add_argument("--key", help="Idempotency key to reuse when retrying")

    transfer = sub.add_parser("transfer", help="Send to another user by username")
    transfer.add_argument("username")
    transfer.add_argument("currency")
    transfer.add_argument("amount")
    transfer.add_argument("--code", required=True, help="2FA code")
    transfer.add_argument("--pin", required=True, help="Password PIN")
    transfer.add_argument("--memo", help="Note for the recipient")
    transfer.add_argument("--key", help="Idempotency key to reuse when retrying")

    fee = sub.add_parser("fee", help="Estimate a withdrawal fee")
    fee.add_argument("currency")
    fee.add_argument("amount")
    fee.add_argument("network")

    max_amount = sub.add_parser("max-amount", help="Max withdrawable amount")
    max_amount.add_argument("currency")

    status = sub.add_parser("status", help="Look up a transaction")
    status.add_argument("transaction_id")
    status.add_argument(
        "--kind",
        default=TransferKind.WITHDRAWAL.value,
        choices=[k.value for k in TransferKind],
    )
    return parser


async def run(args: argparse.Namespace) -> BaseModel:
    async with ApiClient() as api:
        cache = BalanceCache(api_client=api)

        if args.command == "balances":
            if args.asset:
                if args.refresh:
                    cache.invalidate(args.asset)
                return await cache.get(args.asset)
            if args.refresh:
                return await cache.force_refresh()
            return await cache.get_all()

        if args.command in ("quote", "swap"):
            service_cls = NgnzSwapService if args.ngnz else SwapService
            service = service_cls(api_client=api, balance_cache=cache)
            if args.command == "quote":
                return await service.create_quote(args.from_asset, args.to_asset, args.amount, args.side)
            return await service.execute_swap(args.from_asset, args.to_asset, args.amount, args.side)

        if args.command in ("withdraw", "fee", "max-amount"):
            service = WithdrawalService(api_client=api, balance_cache=cache)
            if args.command == "fee":
                return await service.calculate_withdrawal_fee(args.amount, args.currency, args.network)
            if args.command == "max-amount":
                return await service.get_max_withdrawable(args.currency)
            spec = WithdrawalSpec(
                currency=args.currency,
                amount=args.amount,
                address=args.address,
                network=args.network,
                two_factor_code=args.code,
                passwordpin=args.pin,
                destination_memo=args.destination_memo,
                memo=args.memo,
            )
            key = args.key or generate_key()
            logger.info("Withdrawal idempotency key: %s", key)
            return await service.submit_withdrawal(spec, key)

        if args.command == "transfer":
            service = TransferService(api_client=api, balance_cache=cache)
            spec = UsernameTransferSpec(
                recipient_username=args.username,
                currency=args.currency,
                amount=args.amount,
                two_factor_code=args.code,
                passwordpin=args.pin,
                memo=args.memo,
            )
            key = args.key or generate_key()
            logger.info("Transfer idempotency key: %s", key)
            return await service.transfer_to_username(spec, key)

        poller = StatusPoller(api_client=api)
        return await poller.get_status(args.transaction_id, args.kind)


def main(argv=None) -> None:
    load_dotenv()
    args = build_parser().parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        result = asyncio.run(run(args))
    except ValidationError as e:
        print(e, file=sys.stderr)
        sys.exit(2)
    print(result.model_dump_json(indent=2))
    sys.exit(0 if getattr(result, "success", False) else 1)


if __name__ == "__main__":
    main()
