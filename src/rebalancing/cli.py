"""Rebalancer CLI entry point.

Runs the optimizer against a signals JSON file and prints the result as
JSON. Vault workflows run against in-process vaults seeded with a demo
allocation, so nothing leaves the machine.

Usage::

    rebalancer plan signals.json --model bandit
    rebalancer compare signals.json
    rebalancer what-if signals.json --portfolio-value 250000
    rebalancer rebalance signals.json --vault-id 1 2 3            # dry run
    rebalancer rebalance signals.json --vault-id 1 --execute
    cat signals.json | rebalancer plan -
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import numpy as np

from src.core.utils.logging_config import configure_logging
from src.rebalancing.models import (
    AllocationConstraints,
    InvalidConstraintsError,
    InvalidSignalsError,
    MarketSignals,
    RebalanceRequest,
)
from src.rebalancing.optimizer import AllocationOptimizer
from src.rebalancing.orchestrator import RebalanceOrchestrator
from src.rebalancing.vault_client import InMemoryVaultClient, VaultError

# Starting allocation of every demo vault
DEMO_ALLOCATION = {"Staking": 4000, "Lending": 3000, "LP": 2000, "PerpsHedge": 1000}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments.

    Args:
        argv: Argument list (defaults to sys.argv[1:]).
    """
    parser = argparse.ArgumentParser(
        prog="rebalancer",
        description="Generate and compare DeFi vault allocation plans.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  rebalancer plan signals.json --model markowitz\n"
            "  rebalancer compare signals.json\n"
            "  rebalancer rebalance signals.json --vault-id 1 2 --execute\n"
        ),
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for the bandit draw")
    parser.add_argument("--verbose", action="store_true", help="Emit debug logs")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("signals", help="Path to a signals JSON file, or - for stdin")
    common.add_argument("--max-single-bps", type=int, default=None)
    common.add_argument("--min-diversification", type=int, default=None)

    sub = parser.add_subparsers(dest="command", required=True)

    plan = sub.add_parser("plan", parents=[common], help="Enforced plan for one model")
    plan.add_argument("--model", default=None, help="markowitz, bandit or rl")

    sub.add_parser("compare", parents=[common], help="All models with a recommendation")

    what_if = sub.add_parser("what-if", parents=[common], help="Projection and risk report")
    what_if.add_argument("--model", default=None)
    what_if.add_argument("--portfolio-value", type=float, default=None)

    rebalance = sub.add_parser("rebalance", parents=[common], help="Rebalance demo vaults")
    rebalance.add_argument("--model", default=None)
    rebalance.add_argument("--vault-id", type=int, nargs="+", required=True)
    rebalance.add_argument(
        "--execute",
        action="store_true",
        default=False,
        help="Execute against the demo vaults instead of a dry run",
    )
    return parser.parse_args(argv)


def load_signals(source: str) -> MarketSignals:
    """Read signals from a file path or ``-`` (stdin)."""
    if source == "-":
        payload = json.load(sys.stdin)
    else:
        with open(source, encoding="utf-8") as f:
            payload = json.load(f)
    return MarketSignals.from_dict(payload)


def _constraints(args: argparse.Namespace) -> AllocationConstraints:
    return AllocationConstraints.from_dict({
        "max_single_allocation_bps": args.max_single_bps,
        "min_diversification": args.min_diversification,
    })


async def _rebalance(
    orchestrator: RebalanceOrchestrator,
    requests: list[RebalanceRequest],
    execute: bool,
) -> dict[str, Any]:
    if not execute:
        return {"results": [orchestrator.dry_run(r).to_dict() for r in requests]}
    if len(requests) == 1:
        result = await orchestrator.rebalance(requests[0])
        return result.to_dict()
    summary = await orchestrator.rebalance_batch(requests)
    return summary.to_dict()


def run(args: argparse.Namespace) -> dict[str, Any]:
    """Execute the selected command and return its JSON-ready output."""
    signals = load_signals(args.signals)
    constraints = _constraints(args)
    optimizer = AllocationOptimizer(
        rng=np.random.default_rng(args.seed), default_constraints=constraints,
    )
    orchestrator = RebalanceOrchestrator(
        InMemoryVaultClient(default_allocation=DEMO_ALLOCATION), optimizer,
    )

    if args.command == "plan":
        return optimizer.optimize(signals, args.model).to_dict()
    if args.command == "compare":
        return orchestrator.compare(signals).to_dict()
    if args.command == "what-if":
        return orchestrator.what_if(
            signals, model=args.model, portfolio_value=args.portfolio_value,
        ).to_dict()

    requests = [
        RebalanceRequest(vault_id=vault_id, signals=signals, model=args.model)
        for vault_id in args.vault_id
    ]
    return asyncio.run(_rebalance(orchestrator, requests, args.execute))


def main(argv: list[str] | None = None) -> int:
    """Entry point for the rebalancer CLI.

    Returns:
        Exit code: 0 on success, 1 on vault failure, 2 on invalid input.
    """
    args = parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)

    try:
        output = run(args)
    except (OSError, json.JSONDecodeError, InvalidSignalsError, InvalidConstraintsError) as exc:
        print(f"Invalid input: {exc}", file=sys.stderr)
        return 2
    except VaultError as exc:
        print(f"Rebalance failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
