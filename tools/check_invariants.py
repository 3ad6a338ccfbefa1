#!/usr/bin/env python3
"""Compute market invariant checks against the economic parameter file."""

import json
import sys
from pathlib import Path
from typing import Optional


ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = ROOT / "config"
PARAMS_FILENAME = "market_params.json"
BPS = 10_000


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_bps(section: dict, key: str, label: str, errors: list[str]) -> None:
    """Basis-point values must lie within [0, 10000]."""
    value = section.get(key)
    if not isinstance(value, int):
        errors.append(f"{label}.{key} must be an integer, got {value!r}")
    elif not 0 <= value <= BPS:
        errors.append(f"{label}.{key} must be within [0, {BPS}], got {value}")


def check(config_dir: Optional[Path] = None) -> int:
    params = load_json(Path(config_dir or CONFIG_DIR) / PARAMS_FILENAME)
    errors: list[str] = []

    for section in ("staking", "fees", "requests", "pricing", "reputation"):
        if section not in params:
            errors.append(f"Missing section: {section}")
    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    # --- Staking invariants ---
    staking = params["staking"]
    if staking["MIN_STAKE"] <= 0:
        errors.append("MIN_STAKE must be > 0")
    check_bps(staking, "SLASH_BPS", "staking", errors)
    if staking["SLASH_BPS"] == 0:
        errors.append("SLASH_BPS must be > 0 (missed deadlines must cost stake)")

    # --- Fee invariants ---
    fees = params["fees"]
    check_bps(fees, "MARKET_FEE_BPS", "fees", errors)
    if fees["MARKET_FEE_BPS"] >= BPS:
        errors.append("MARKET_FEE_BPS must leave the provider a non-zero share")

    # --- Request invariants ---
    requests = params["requests"]
    if requests["MAX_DURATION"] <= 0:
        errors.append("MAX_DURATION must be > 0")
    if requests["DISPUTE_WINDOW"] < 0:
        errors.append("DISPUTE_WINDOW must be >= 0")
    if requests["ESCROW_BUFFER_BPS"] < BPS:
        errors.append("ESCROW_BUFFER_BPS must be >= 10000 (escrow covers the quote)")

    # --- Pricing invariants ---
    pricing = params["pricing"]
    floor = pricing["PRICE_FLOOR"]
    cap = pricing["PRICE_CAP"]
    if floor <= 0:
        errors.append("PRICE_FLOOR must be > 0")
    if cap < floor:
        errors.append("PRICE_CAP must be >= PRICE_FLOOR")
    if not floor <= pricing["INITIAL_PRICE"] <= cap:
        errors.append("INITIAL_PRICE must lie within [PRICE_FLOOR, PRICE_CAP]")
    if pricing["PRICE_UPDATE_INTERVAL"] <= 0:
        errors.append("PRICE_UPDATE_INTERVAL must be > 0 (rate limit on repricing)")
    check_bps(pricing, "DAMPING_FACTOR", "pricing", errors)
    if pricing["DAMPING_FACTOR"] >= BPS:
        errors.append("DAMPING_FACTOR must be < 10000 so velocity decays")
    check_bps(pricing, "TARGET_UTILIZATION_BPS", "pricing", errors)
    if pricing["TARGET_UTILIZATION_BPS"] in (0, BPS):
        errors.append("TARGET_UTILIZATION_BPS must be strictly between 0 and 10000")

    # --- Reputation invariants ---
    reputation = params["reputation"]
    if reputation["MAX"] <= 0:
        errors.append("Reputation MAX must be > 0")
    if not 0 <= reputation["INITIAL"] <= reputation["MAX"]:
        errors.append("Reputation INITIAL must lie within [0, MAX]")
    if reputation["REWARD"] <= 0:
        errors.append("Reputation REWARD must be > 0")
    if reputation["PENALTY"] <= reputation["REWARD"]:
        errors.append("Reputation PENALTY must exceed REWARD (failures cost more than successes earn)")

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check(Path(sys.argv[1]) if len(sys.argv) > 1 else None))
