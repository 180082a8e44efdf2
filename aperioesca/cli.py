"""
Developer CLI.

Usage:
    aperioesca analyze lunch.jpg --save
    aperioesca quota
    aperioesca circuit
    aperioesca meals
    aperioesca reset all
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, List, Optional

from aperioesca.config import load_settings
from aperioesca.container import AnalysisContainer, build_container
from aperioesca.domain.shared.errors import AnalysisError
from aperioesca.logging_config import configure_logging


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _analyze(container: AnalysisContainer, photo: str, save: bool) -> int:
    try:
        outcome = await container.orchestrator.analyze(photo)
    except AnalysisError as exc:
        _print({"error": exc.to_dict()})
        return 1
    output: dict[str, Any] = {
        "result": outcome.result.to_wire(),
        "energyBandLabel": outcome.result.energy_band.label,
        "attempts": outcome.attempts,
        "quota": outcome.quota.model_dump(mode="json"),
    }
    if outcome.approaching_limit:
        output["warning"] = "Approaching daily analysis limit."
    if save:
        entry = await container.meals.save_meal(outcome.result, photo_ref=photo)
        output["mealId"] = entry.id
    _print(output)
    return 0


async def _run(args: argparse.Namespace) -> int:
    settings = load_settings()
    configure_logging(settings.log_level)
    try:
        container = await build_container(settings)
    except AnalysisError as exc:
        _print({"error": exc.to_dict()})
        return 1

    try:
        if args.command == "analyze":
            return await _analyze(container, args.photo, args.save)
        if args.command == "quota":
            _print((await container.quota.get_quota_info()).model_dump(mode="json"))
        elif args.command == "circuit":
            state = await container.circuit_breaker.get_state()
            wait = container.circuit_breaker.get_time_until_retry()
            _print(
                {
                    **state.model_dump(mode="json"),
                    "retry_in_s": wait.total_seconds() if wait is not None else None,
                }
            )
        elif args.command == "meals":
            meals = await container.meals.get_all_meals()
            _print([m.model_dump(mode="json", by_alias=True) for m in meals])
        elif args.command == "reset":
            if args.target in ("quota", "all"):
                await container.quota.reset()
            if args.target in ("circuit", "all"):
                await container.circuit_breaker.reset()
            _print({"reset": args.target})
        return 0
    finally:
        await container.aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aperioesca", description="Meal-photo energy analysis"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Analyze a meal photo")
    analyze.add_argument("photo", help="Path to the photo")
    analyze.add_argument("--save", action="store_true", help="Store the result as a meal")

    sub.add_parser("quota", help="Show today's quota")
    sub.add_parser("circuit", help="Show circuit breaker state")
    sub.add_parser("meals", help="List stored meals, newest first")

    reset = sub.add_parser("reset", help="Reset persisted state")
    reset.add_argument("target", choices=("quota", "circuit", "all"))
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
