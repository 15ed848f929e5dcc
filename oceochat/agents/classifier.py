"""Keyword rule table that decides which data domains a query needs."""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable

from oceochat.data.schema import Domain, TimeWindow

logger = logging.getLogger(__name__)

Predicate = Callable[[str], bool]


def _words(*patterns: str) -> Predicate:
    """Build a case-insensitive word-boundary predicate over the patterns."""
    compiled = re.compile(r"\b(" + "|".join(patterns) + r")\b", re.IGNORECASE)
    return lambda text: compiled.search(text) is not None


# (domain, rule name, predicate). Every rule is evaluated; a query may
# need several domains at once.
DOMAIN_RULES: tuple[tuple[Domain, str, Predicate], ...] = (
    (Domain.PROFILING_FLOAT, "argo_keywords", _words(
        "argo", "floats?", "temperatures?", "salinity", "pressure", "profiles?",
        "ctd", "thermocline", "deep", "depths?",
    )),
    (Domain.TIDAL_CURRENT, "tide_keywords", _words(
        "tides?", "tidal", "currents?", "water levels?", "stations?", "coastal",
        "shore", "noaa",
    )),
    (Domain.SATELLITE_COLOR, "satellite_keywords", _words(
        "satellites?", "chlorophyll", "ocean colou?r", "modis", "viirs",
        "productivity", "blooms?", "algae", "nasa",
    )),
    (Domain.OCEAN_FORECAST, "forecast_keywords", _words(
        "forecasts?", "copernicus", "models?", "ssh", "sea surface height",
        "circulation",
    )),
)

GENERIC_OCEAN: Predicate = _words(
    "oceans?", "oceanic", "oceanography", "marine", "seas?", "water", "atlantic",
    "pacific", "indian", "arctic", "antarctic", "mediterranean", "research", "data",
    "coast", "bay", "gulf",
)

RESEARCH_REQUEST: Predicate = _words(
    "research", "sources?", "references?", "browse", "find articles?", "web search",
)

DEFAULT_WINDOW_DAYS: dict[Domain, int] = {
    Domain.PROFILING_FLOAT: 30,
    Domain.TIDAL_CURRENT: 7,
    Domain.SATELLITE_COLOR: 7,
    Domain.OCEAN_FORECAST: 7,
}

# Explicit phrases override every domain's default window.
_WINDOW_PHRASES: tuple[tuple[re.Pattern[str], int], ...] = (
    (re.compile(r"\b(last|past) year\b", re.IGNORECASE), 365),
    (re.compile(r"\b(last|past) month\b", re.IGNORECASE), 30),
    (re.compile(r"\b((last|past) week|7 days)\b", re.IGNORECASE), 7),
)

_TOOL_DIRECTIVE = re.compile(r"^\s*\[Using ([^\]]+)\]\s*(.+)$", re.DOTALL)


@dataclass(frozen=True)
class Classification:
    """Outcome of classifying one query."""

    domains: frozenset[Domain]
    time_windows: dict[Domain, TimeWindow] = field(default_factory=dict)
    matched_rules: tuple[str, ...] = ()
    research_requested: bool = False
    tool: str | None = None
    query_text: str = ""

    @property
    def ambiguous(self) -> bool:
        """No domain or generic vocabulary matched: text-only path."""
        return not self.domains


def split_tool_directive(text: str) -> tuple[str | None, str]:
    """Split "[Using <tool>] <query>" into (tool, query)."""
    match = _TOOL_DIRECTIVE.match(text or "")
    if match is None:
        return None, text or ""
    return match.group(1).strip(), match.group(2).strip()


def explicit_window_days(text: str) -> int | None:
    for pattern, days in _WINDOW_PHRASES:
        if pattern.search(text):
            return days
    return None


def time_window_for(days: int, today: date) -> TimeWindow:
    return TimeWindow(start=(today - timedelta(days=days)).isoformat(), end=today.isoformat())


def classify_query(
    text: str,
    mode: str | None = None,
    now: datetime | None = None,
) -> Classification:
    """Decide which domains a query needs and the time window for each.

    Args:
        text: Raw user message, possibly prefixed with a tool directive.
        mode: Optional client hint; "research" forces research mode.
        now: Reference time for the windows (defaults to current UTC time).

    Returns:
        Classification with an empty domain set when neither domain
        keywords nor generic ocean vocabulary were found.
    """
    tool, query_text = split_tool_directive(text)
    today = (now or datetime.now(timezone.utc)).date()

    domains: set[Domain] = set()
    matched: list[str] = []
    for domain, name, predicate in DOMAIN_RULES:
        if predicate(query_text):
            domains.add(domain)
            matched.append(name)

    if not domains and GENERIC_OCEAN(query_text):
        domains.add(Domain.PROFILING_FLOAT)
        matched.append("generic_ocean")

    override = explicit_window_days(query_text)
    windows = {
        domain: time_window_for(override or DEFAULT_WINDOW_DAYS[domain], today)
        for domain in domains
    }

    research = mode == "research" or RESEARCH_REQUEST(query_text)

    logger.info(
        "Classified query domains=%s rules=%s research=%s tool=%s",
        sorted(d.value for d in domains), matched, research, tool,
    )
    return Classification(
        domains=frozenset(domains),
        time_windows=windows,
        matched_rules=tuple(matched),
        research_requested=research,
        tool=tool,
        query_text=query_text,
    )
