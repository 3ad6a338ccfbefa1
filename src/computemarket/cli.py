"""Compute market CLI — inspect parameters, price workloads, audit logs.

Usage:
    computemarket status --log data/events.jsonl
    computemarket quote --size 1000 --max-payment 2000000000000000000
    computemarket simulate-price --supply 10 --demand 8 --ticks 20
    computemarket verify-log data/events.jsonl
    computemarket check-invariants
    computemarket token-balance 0xAbC...
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path

from dotenv import load_dotenv

from computemarket.errors import MarketError
from computemarket.persistence.event_log import EventKind, EventLog
from computemarket.policy.resolver import PolicyResolver
from computemarket.pricing.oscillator import PriceOscillator


ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = ROOT / "config"
DEFAULT_LOG = ROOT / "data" / "events.jsonl"


def _resolver(args: argparse.Namespace) -> PolicyResolver:
    return PolicyResolver.from_config_dir(args.config)


def cmd_status(args: argparse.Namespace) -> int:
    resolver = _resolver(args)
    status: dict = {"params": asdict(resolver.params)}
    if args.log.exists():
        log = EventLog(storage_path=args.log)
        updates = log.events(EventKind.MARKET_STATE_UPDATED)
        status["events"] = {
            "total": log.count,
            "by_kind": log.counts_by_kind(),
        }
        status["market"] = updates[-1].payload if updates else None
    else:
        status["events"] = None
    print(json.dumps(status, indent=2))
    return 0


def cmd_quote(args: argparse.Namespace) -> int:
    resolver = _resolver(args)
    oscillator = PriceOscillator(resolver, now=0, initial_price=args.price)
    cost = oscillator.estimate_cost(args.size)
    buffered = resolver.buffered_escrow(cost)
    max_payment = buffered if args.max_payment is None else args.max_payment
    escrow = min(max_payment, buffered) if max_payment >= cost else None
    print(json.dumps({
        "price": oscillator.price,
        "size": args.size,
        "cost": cost,
        "buffered": buffered,
        "max_payment": max_payment,
        "escrow": escrow,
        "fee_on_release": resolver.fee_for(escrow) if escrow is not None else None,
    }, indent=2))
    return 0 if escrow is not None else 1


def cmd_simulate_price(args: argparse.Namespace) -> int:
    """Step the oscillator at fixed supply and demand."""
    resolver = _resolver(args)
    interval = resolver.params.price_update_interval
    oscillator = PriceOscillator(resolver, now=0, initial_price=args.price)
    oscillator.add_supply(args.supply)
    for _ in range(args.demand):
        oscillator.increment_demand()

    rows = []
    for tick in range(1, args.ticks + 1):
        oscillator.step(tick * interval)
        stats = oscillator.stats()
        rows.append({
            "tick": tick,
            "price": stats.equilibrium_price,
            "velocity": stats.price_velocity,
            "utilization_bps": stats.utilization_bps,
        })
    print(json.dumps(rows, indent=2))
    return 0


def cmd_verify_log(args: argparse.Namespace) -> int:
    if not args.path.exists():
        print(f"Failed: no such log {args.path}", file=sys.stderr)
        return 1
    try:
        log = EventLog(storage_path=args.path)
    except (ValueError, KeyError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    print(f"Event log OK: {log.count} events")
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run market parameter invariant checks."""
    tools_dir = ROOT / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(args.config)


def cmd_token_balance(args: argparse.Namespace) -> int:
    """Read an ERC-20 balance using chain settings from the environment."""
    from computemarket.chain.erc20 import Erc20TokenLedger

    load_dotenv(ROOT / ".env")
    rpc_url = os.getenv("RPC_URL")
    token_address = os.getenv("TOKEN_ADDRESS")
    private_key = os.getenv("MARKET_PRIVATE_KEY")
    if not rpc_url or not token_address or not private_key:
        print(
            "Failed: RPC_URL, TOKEN_ADDRESS and MARKET_PRIVATE_KEY must be set",
            file=sys.stderr,
        )
        return 1
    token = Erc20TokenLedger.from_rpc(rpc_url, token_address, private_key)
    address = args.address or token.address
    print(json.dumps({"address": address, "balance": token.balance_of(address)}, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="computemarket",
        description="Compute market engine CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # status
    p_status = sub.add_parser("status", help="Show parameters and event log summary")
    p_status.add_argument("--log", type=Path, default=DEFAULT_LOG, help="Event log path")

    # quote
    p_quote = sub.add_parser("quote", help="Quote cost and escrow for a workload")
    p_quote.add_argument("--size", type=int, required=True, help="Estimated workload size")
    p_quote.add_argument("--max-payment", type=int, help="Requester's payment ceiling")
    p_quote.add_argument("--price", type=int, help="Equilibrium price (default: initial)")

    # simulate-price
    p_sim = sub.add_parser("simulate-price", help="Simulate oscillator ticks")
    p_sim.add_argument("--supply", type=int, required=True, help="Total capacity")
    p_sim.add_argument("--demand", type=int, required=True, help="Open requests")
    p_sim.add_argument("--ticks", type=int, default=10, help="Number of updates")
    p_sim.add_argument("--price", type=int, help="Starting price (default: initial)")

    # verify-log
    p_verify = sub.add_parser("verify-log", help="Verify event log integrity")
    p_verify.add_argument("path", type=Path, help="JSONL event log")

    # check-invariants
    sub.add_parser("check-invariants", help="Run market parameter invariant checks")

    # token-balance
    p_bal = sub.add_parser("token-balance", help="Read an on-chain token balance")
    p_bal.add_argument("address", nargs="?", help="Account (default: market account)")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "quote": cmd_quote,
        "simulate-price": cmd_simulate_price,
        "verify-log": cmd_verify_log,
        "check-invariants": cmd_check_invariants,
        "token-balance": cmd_token_balance,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (MarketError, ValueError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
