"""Fetch orchestrator: concurrent, cache-backed, per-domain degrading fan-out."""

import asyncio
import logging
import time

from oceochat.data.cache import AggregationCache
from oceochat.data.schema import (
    AggregatedDataset,
    DataRequest,
    Domain,
    FetchError,
    FetchResult,
    Region,
    TimeWindow,
)
from oceochat.data.sources import SourceAdapter, empty_dataset

logger = logging.getLogger(__name__)


class FetchOrchestrator:
    """Fans a request out to every required domain and merges the results.

    Never fails for data-layer reasons: a domain that errors, times out or
    misses the overall deadline is filled with its adapter's fallback
    dataset and listed as degraded.
    """

    def __init__(
        self,
        adapters: dict[Domain, SourceAdapter],
        cache: AggregationCache,
        adapter_timeout: float = 12.0,
        fetch_deadline: float = 20.0,
    ) -> None:
        self._adapters = adapters
        self._cache = cache
        self._adapter_timeout = adapter_timeout
        self._fetch_deadline = fetch_deadline

    async def _fetch_domain(self, request: DataRequest) -> FetchResult:
        adapter = self._adapters.get(request.domain)
        if adapter is None:
            return FetchResult.failed(
                FetchError.unavailable(f"no adapter registered for {request.domain.value}")
            )

        result, cached = await self._cache.get_or_fetch(
            request,
            lambda: adapter.fetch(request, self._adapter_timeout),
            source_label=adapter.name,
        )
        if cached:
            logger.info("Cache hit for %s (%s)", request.domain.value, request.region.id)
        return result

    async def gather(
        self,
        domains: frozenset[Domain] | set[Domain],
        region: Region,
        time_windows: dict[Domain, TimeWindow],
        deadline: float | None = None,
    ) -> AggregatedDataset:
        """Fetch every domain concurrently and return the merged dataset.

        Args:
            domains: Domains the query needs. Empty means nothing is fetched.
            region: Region every request is scoped to.
            time_windows: Window per domain, as produced by the classifier.
            deadline: Overall fan-in deadline in seconds.

        Returns:
            AggregatedDataset holding an entry for every requested domain.
        """
        aggregated = AggregatedDataset(region=region, time_windows=dict(time_windows))
        if not domains:
            return aggregated

        deadline = self._fetch_deadline if deadline is None else deadline
        requests = {
            domain: DataRequest(domain=domain, region=region, time_window=time_windows[domain])
            for domain in sorted(domains, key=lambda d: d.value)
        }
        tasks = {
            domain: asyncio.create_task(self._fetch_domain(req), name=f"fetch-{domain.value}")
            for domain, req in requests.items()
        }

        start = time.perf_counter()
        try:
            done, pending = await asyncio.wait(tasks.values(), timeout=deadline)
        finally:
            # Runs on deadline and on caller cancellation alike.
            still_running = [task for task in tasks.values() if not task.done()]
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)

        for domain, task in tasks.items():
            adapter = self._adapters.get(domain)
            result = _task_result(task, domain, deadline)
            if result.succeeded:
                aggregated.per_domain[domain] = result.dataset
                aggregated.succeeded_domains.add(domain)
                continue

            logger.warning(
                "Domain %s degraded (%s: %s), using fallback",
                domain.value, result.error.kind.value, result.error.reason,
            )
            if adapter is None:
                aggregated.per_domain[domain] = empty_dataset(domain)
            else:
                aggregated.per_domain[domain] = adapter.fallback(requests[domain])
            aggregated.degraded_domains.add(domain)

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "Fetch complete: %d/%d domains live, degraded=%s, %dms",
            len(aggregated.succeeded_domains),
            len(tasks),
            sorted(d.value for d in aggregated.degraded_domains),
            elapsed_ms,
        )
        return aggregated


def _task_result(task: asyncio.Task, domain: Domain, deadline: float) -> FetchResult:
    if task.cancelled():
        return FetchResult.failed(FetchError.timeout(f"missed the {deadline:.1f}s fetch deadline"))
    error = task.exception()
    if error is not None:
        return FetchResult.failed(FetchError.unavailable(f"{domain.value} fetch crashed: {error}"))
    return task.result()
