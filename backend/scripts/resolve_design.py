#!/usr/bin/env python3
"""Run the design-context pipeline against a live Figma file.

Usage:
    # Reduced tree + stats for a selection:
    python scripts/resolve_design.py process --figma-url "https://www.figma.com/design/xxx/yyy?node-id=123-456"

    # Comments bound to nodes, with intent:
    python scripts/resolve_design.py comments --figma-url "..."

    # Download export-flagged assets + reference.png:
    python scripts/resolve_design.py assets --figma-url "..." --output-dir output/assets

Requires:
    - FIGMA_TOKEN env var set
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys

from design_context.errors import DesignContextError
from design_context.integrations.figma_url import parse_figma_url
from design_context.logging_config import get_pipeline_logger
from design_context.pipeline import DesignContextPipeline
from design_context.processing.rules import RuleConfiguration

DEFAULT_OUTPUT_DIR = "output/assets"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Design-context pipeline driver")
    parser.add_argument("command", choices=["process", "comments", "assets"])
    parser.add_argument("--figma-url", required=True, help="Figma design URL (node-id optional)")
    parser.add_argument(
        "--env", default=None,
        help="Rule profile: production | development (default: DESIGN_CONTEXT_ENV)",
    )
    parser.add_argument("--depth", type=int, default=None, help="Override max depth")
    parser.add_argument(
        "--output-dir", default=DEFAULT_OUTPUT_DIR,
        help=f"Asset target directory (default: {DEFAULT_OUTPUT_DIR})",
    )
    parser.add_argument("--scale", type=float, default=1.0, help="Fallback export scale")
    parser.add_argument("--format", default="png", help="Fallback export format")
    parser.add_argument("--timeout", type=float, default=None, help="Per-call timeout in seconds")
    return parser.parse_args()


def step(msg: str) -> None:
    """Print a step header."""
    print(f"\n{'='*60}", file=sys.stderr)
    print(f"  {msg}", file=sys.stderr)
    print(f"{'='*60}", file=sys.stderr)


async def run(args: argparse.Namespace) -> dict:
    file_key, node_id = parse_figma_url(args.figma_url)
    rules = RuleConfiguration.for_environment(args.env)

    async with DesignContextPipeline() as pipeline:
        if args.command == "process":
            step(f"ProcessGraph {file_key} {node_id or '<document>'}")
            result = await pipeline.process_graph(
                file_key, node_id, depth=args.depth, rule_config=rules, timeout=args.timeout,
            )
            return result.model_dump()

        if args.command == "comments":
            step(f"MatchAnnotations {file_key} {node_id or '<document>'}")
            matches = await pipeline.match_annotations(
                file_key, node_id, rule_config=rules, timeout=args.timeout,
            )
            return {"status": "success", "matches": [m.model_dump() for m in matches]}

        step(f"ResolveAssets {file_key} -> {args.output_dir}")
        resolution = await pipeline.resolve_assets(
            file_key, node_id, args.output_dir,
            fallback_scale=args.scale, fallback_format=args.format, timeout=args.timeout,
        )
        summary = resolution.summary
        print(
            f"  {summary.successful}/{summary.total} assets, "
            f"reference: {'ok' if resolution.reference.success else resolution.reference.error}",
            file=sys.stderr,
        )
        return resolution.model_dump()


def main() -> int:
    args = parse_args()
    get_pipeline_logger()
    try:
        output = asyncio.run(run(args))
    except DesignContextError as e:
        print(json.dumps(e.to_dict(), indent=2, ensure_ascii=False))
        return 1
    print(json.dumps(output, indent=2, ensure_ascii=False))
    return 0 if output.get("status") in ("success", "partial") else 1


if __name__ == "__main__":
    sys.exit(main())
