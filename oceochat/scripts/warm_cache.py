"""Warm the aggregation cache for known regions.

Fetches every requested domain for each region so the first chat queries
after startup are served from cache. Only useful with a shared cache
backend (CACHE_REDIS_URL); the in-memory cache dies with this process.

Usage:
    # All regions, all domains
    python -m oceochat.scripts.warm_cache

    # Specific regions and domains
    python -m oceochat.scripts.warm_cache --regions mumbai arabian_sea --domains argo tides
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone

import httpx
from redis.asyncio import Redis

from oceochat.agents.classifier import DEFAULT_WINDOW_DAYS, time_window_for
from oceochat.agents.orchestrator import FetchOrchestrator
from oceochat.config import get_settings
from oceochat.data.cache import AggregationCache, MemoryCacheBackend, RedisCacheBackend
from oceochat.data.regions import get_region, known_region_ids
from oceochat.data.schema import Domain
from oceochat.data.sources import build_adapters

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Warm the aggregation cache for known regions.",
    )
    parser.add_argument(
        "--regions",
        nargs="+",
        choices=known_region_ids(),
        default=None,
        help="Regions to warm (default: all)",
    )
    parser.add_argument(
        "--domains",
        nargs="+",
        choices=[d.value for d in Domain],
        default=None,
        help="Domains to fetch (default: all)",
    )
    return parser.parse_args(argv)


async def warm(
    orchestrator: FetchOrchestrator,
    region_ids: list[str],
    domains: list[Domain],
) -> tuple[int, int]:
    """Fetch each region. Returns (regions fully live, regions with degraded domains)."""
    today = datetime.now(timezone.utc).date()
    windows = {d: time_window_for(DEFAULT_WINDOW_DAYS[d], today) for d in domains}

    live = 0
    degraded = 0
    for region_id in region_ids:
        aggregated = await orchestrator.gather(frozenset(domains), get_region(region_id), windows)
        if aggregated.degraded_domains:
            logger.warning(
                "Region %s: degraded %s",
                region_id,
                sorted(d.value for d in aggregated.degraded_domains),
            )
            degraded += 1
        else:
            logger.info("Region %s: all %d domains cached", region_id, len(domains))
            live += 1
    return live, degraded


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    region_ids = args.regions or known_region_ids()
    domains = [Domain(d) for d in args.domains] if args.domains else list(Domain)

    if not settings.cache_redis_url:
        logger.warning("CACHE_REDIS_URL is not set; warmed entries will not outlive this process")

    redis = Redis.from_url(settings.cache_redis_url) if settings.cache_redis_url else None
    backend = RedisCacheBackend(redis) if redis is not None else MemoryCacheBackend(settings.cache_max_entries)
    cache = AggregationCache(backend=backend, ttl_by_domain=settings.ttl_by_domain())

    logger.info(
        "Warming %d regions for domains %s",
        len(region_ids),
        [d.value for d in domains],
    )
    async with httpx.AsyncClient(timeout=settings.adapter_timeout) as client:
        orchestrator = FetchOrchestrator(
            build_adapters(client, settings=settings),
            cache,
            adapter_timeout=settings.adapter_timeout,
            fetch_deadline=settings.fetch_deadline,
        )
        try:
            live, degraded = await warm(orchestrator, region_ids, domains)
        finally:
            if redis is not None:
                await redis.aclose()

    logger.info(
        "Warm-up complete: %d fully live, %d degraded out of %d regions",
        live,
        degraded,
        len(region_ids),
    )
    return 1 if degraded else 0


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    code = asyncio.run(run(args))
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
