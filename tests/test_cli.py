"""Tests for command line parsing."""

import pytest

from assetflow.cli import build_parser, main


def test_swap_arguments():
    args = build_parser().parse_args(["swap", "NGNZ", "BTC", "50000", "--ngnz"])

    assert args.command == "swap"
    assert args.from_asset == "NGNZ"
    assert args.amount == "50000"
    assert args.side == "SELL"
    assert args.ngnz


def test_withdraw_requires_auth_proof():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["withdraw", "USDT", "25", "TXYZ1234567890", "TRC20"])


def test_status_kind_choices():
    args = build_parser().parse_args(["status", "tx-1", "--kind", "SWAP"])
    assert args.kind == "SWAP"

    with pytest.raises(SystemExit):
        build_parser().parse_args(["status", "tx-1", "--kind", "REFUND"])


def test_invalid_amount_exits_with_usage_error(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["transfer", "alice", "USDT", "lots", "--code", "123456", "--pin", "654321"])

    assert exc.value.code == 2
    assert "amount" in capsys.readouterr().err
