#!/usr/bin/env python3
"""
TradeWizard CLI

Analyze a business website, group or categorize a product list, or serve the HTTP API.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter

from .config import log_level
from .consolidation import ProductConsolidationEngine
from .models import ProductVariant
from .pipeline import AnalysisPipeline

logger = logging.getLogger(__name__)


async def _analyze(url: str, profile: bool, use_cache: bool) -> str:
    async with AnalysisPipeline.from_env() as pipeline:
        if profile:
            result = await pipeline.analyze_profile(url, use_cache=use_cache)
        else:
            result = await pipeline.analyze(url, use_cache=use_cache)
    return result.model_dump_json(indent=2)


def analyze_command(args: argparse.Namespace) -> int:
    output = asyncio.run(_analyze(args.url, args.profile, not args.no_cache))
    if args.output:
        args.output.write_text(output, encoding="utf-8")
        logger.info(f"✅ Wrote result to {args.output}")
    else:
        print(output)
    return 0


def _load_products(path: Path) -> List[ProductVariant]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("products", [])
    return TypeAdapter(List[ProductVariant]).validate_python(data)


def consolidate_command(args: argparse.Namespace) -> int:
    variants = _load_products(args.file)
    result = ProductConsolidationEngine().consolidate(variants)
    print(json.dumps([group.model_dump(mode="json") for group in result.output or []], indent=2))
    return 0 if result.ok else 1


async def _categorize(variants: List[ProductVariant]) -> str:
    pipeline = AnalysisPipeline.from_env()
    result = await pipeline.categorize(variants)
    if result.error:
        logger.warning(f"⚠️  {result.error}")
    return json.dumps([category.model_dump(mode="json") for category in result.output or []], indent=2)


def categorize_command(args: argparse.Namespace) -> int:
    print(asyncio.run(_categorize(_load_products(args.file))))
    return 0


def serve_command(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("tradewizard.api:app", host=args.host, port=args.port, reload=False)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=log_level(), format='%(asctime)s | %(levelname)s | %(message)s')

    parser = argparse.ArgumentParser(description="TradeWizard business website analysis")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze_parser = subparsers.add_parser("analyze", help="Analyze a business website")
    analyze_parser.add_argument("url", help="Website URL or bare domain")
    analyze_parser.add_argument("--profile", action="store_true", help="Return the condensed business profile")
    analyze_parser.add_argument("--no-cache", action="store_true", help="Ignore cached results")
    analyze_parser.add_argument("--output", type=Path, help="Write JSON to this file instead of stdout")
    analyze_parser.set_defaults(func=analyze_command)

    consolidate_parser = subparsers.add_parser("consolidate", help="Group products from a JSON file")
    consolidate_parser.add_argument("file", type=Path, help="JSON list of products, or {\"products\": [...]}")
    consolidate_parser.set_defaults(func=consolidate_command)

    categorize_parser = subparsers.add_parser("categorize", help="Sort products from a JSON file into trade categories")
    categorize_parser.add_argument("file", type=Path, help="JSON list of products, or {\"products\": [...]}")
    categorize_parser.set_defaults(func=categorize_command)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=serve_command)

    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except ValueError as e:
        logger.error(f"❌ {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
