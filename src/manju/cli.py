"""Command line interface for the manju adaptation pipeline."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv

from .config import (
    ARTIFACT_POLICIES,
    DUPLICATE_POLICIES,
    SCRIPT_CONCURRENCY_MODES,
    BudgetConfig,
    LLMConfig,
    ManjuConfig,
    PipelineConfig,
)
from .io import load_input_resource
from .llm.cost import CostTracker
from .pipeline.errors import PipelineError
from .pipeline.export import PackageExporter
from .pipeline.factory import PROVIDERS, build_controller, build_cost_tracker

__all__ = ["main", "build_parser"]

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="manju",
        description="Adapt a web novel into an episode plan and manju (motion comic) scripts.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    subparsers = parser.add_subparsers(dest="command")

    plan_parser = subparsers.add_parser(
        "plan",
        help="Analyse the novel and plan its episodes.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    _register_shared_arguments(plan_parser)

    run_parser = subparsers.add_parser(
        "run",
        help="Analyse, plan, then generate episode scripts.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    _register_shared_arguments(run_parser)
    run_parser.add_argument(
        "--episodes",
        type=_episode_selection_type,
        default=None,
        help="Episodes to script: 'all', a list such as 1,3 or a range such as 2:5. Defaults to all.",
    )
    return parser


def _register_shared_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--input", required=True, help="Path to the source novel (.txt, .md or .markdown).")
    parser.add_argument("--output", required=True, help="Directory where the adaptation package is written.")
    parser.add_argument("--provider", default="mock", choices=PROVIDERS, help="Generative provider to use.")
    parser.add_argument("--model", default=None, help="Model for analysis and planning.")
    parser.add_argument("--script-model", dest="script_model", default=None, help="Model for script generation.")
    parser.add_argument(
        "--base-url",
        dest="base_url",
        default=None,
        help="Optional base URL for API-compatible providers.",
    )
    parser.add_argument(
        "--api-key-env",
        dest="api_key_env",
        default=None,
        help="Environment variable containing the provider API key.",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=None,
        help="Sampling temperature for analysis and planning.",
    )
    parser.add_argument(
        "--max-tokens",
        type=int,
        default=None,
        help="Maximum tokens for provider responses.",
    )
    parser.add_argument(
        "--budget-usd",
        type=float,
        default=None,
        help="Optional spend budget in USD before capability calls start failing.",
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed for deterministic mock outputs.")
    parser.add_argument(
        "--mock-episodes",
        dest="mock_episodes",
        type=_positive_int,
        default=None,
        help="Number of episodes the mock provider plans.",
    )
    parser.add_argument(
        "--duplicate-policy",
        dest="duplicate_policy",
        choices=DUPLICATE_POLICIES,
        default="reject",
        help="How duplicate episode numbers in a plan are handled.",
    )
    parser.add_argument(
        "--artifact-policy",
        dest="artifact_policy",
        choices=ARTIFACT_POLICIES,
        default="purge",
        help="What happens to existing scripts when a new plan is committed.",
    )
    parser.add_argument(
        "--concurrency",
        choices=SCRIPT_CONCURRENCY_MODES,
        default="serial",
        help="Generate scripts one at a time or one worker per episode.",
    )
    parser.add_argument("--workers", type=_positive_int, default=4, help="Worker threads for per_episode mode.")
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default="WARNING",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging verbosity.",
    )


def _episode_selection_type(value: str) -> Optional[list[int]]:
    token = value.strip().lower()
    if token == "all":
        return None
    if ":" in token:
        left, right = token.split(":", 1)
        start = _positive_int(left) if left else 1
        end = _positive_int(right) if right else start
        if end < start:
            raise argparse.ArgumentTypeError("episode range end must not be earlier than start")
        return list(range(start, end + 1))
    return [_positive_int(part) for part in token.split(",") if part.strip()]


def _positive_int(token: str) -> int:
    try:
        value = int(token)
    except ValueError as exc:  # pragma: no cover - argparse formatting
        raise argparse.ArgumentTypeError(f"Invalid integer value: {token}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError("Values must be positive integers")
    return value


def _llm_overrides(base: LLMConfig, args: argparse.Namespace, *, model: Optional[str], temperature: Optional[float]) -> LLMConfig:
    updates: dict[str, object] = {}
    if model:
        updates["model"] = model
    if args.base_url:
        updates["base_url"] = args.base_url
    if args.api_key_env:
        updates["api_key_env"] = args.api_key_env
    if temperature is not None:
        updates["temperature"] = temperature
    if args.max_tokens is not None:
        updates["max_tokens"] = args.max_tokens
    return replace(base, **updates) if updates else base


def _build_config(args: argparse.Namespace) -> ManjuConfig:
    base = ManjuConfig()
    budget = base.budget
    if args.budget_usd is not None:
        budget = BudgetConfig(limit_usd=args.budget_usd, warn_ratio=base.budget.warn_ratio, hard_limit=True)
    pipeline = replace(
        base.pipeline,
        duplicate_policy=args.duplicate_policy,
        artifact_policy=args.artifact_policy,
        script_concurrency=args.concurrency,
        max_workers=args.workers,
    )
    config = replace(
        base,
        llm=_llm_overrides(base.llm, args, model=args.model, temperature=args.temperature),
        script_llm=_llm_overrides(base.script_llm, args, model=args.script_model, temperature=None),
        budget=budget,
        pipeline=pipeline,
    )
    return config.with_paths(input_path=Path(args.input), output_path=Path(args.output))


def _execute(args: argparse.Namespace) -> int:
    config = _build_config(args)
    document = load_input_resource(config.paths.input_path)
    tracker: CostTracker = build_cost_tracker(config)
    controller = build_controller(
        config,
        provider=args.provider,
        cost_tracker=tracker,
        seed=args.seed,
        mock_episodes=args.mock_episodes,
    )
    exporter = PackageExporter(config.output_path)

    started = controller.start(document.content)
    if not started.ok:
        exporter.export(controller, cost_tracker=tracker, source=document.source)
        print(f"Error: {started.error}", file=sys.stderr)
        return 1

    failed: list[int] = []
    if args.command == "run":
        results = controller.generate_all(args.episodes)
        failed = [number for number, result in results.items() if not result.ok]
        for number in failed:
            print(f"Error: episode {number}: {results[number].error}", file=sys.stderr)

    package = exporter.export(controller, cost_tracker=tracker, source=document.source)
    print(
        f"Planned {len(controller.plan)} episodes, scripted {len(package.scripts)}; "
        f"package written to {package.output_dir}"
    )
    if tracker.should_warn():
        logger.warning("Spend %.4f is close to the configured budget", tracker.total_cost)
    return 1 if failed else 0


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in {"plan", "run"}:
        parser.print_help()
        return 0

    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")

    try:
        return _execute(args)
    except (FileNotFoundError, ValueError, RuntimeError, PipelineError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
