"""Prompt assembly: instructions, fetched ocean data, citations and history."""

from typing import Any, Iterable

import numpy as np

from oceochat.data.schema import (
    AggregatedDataset,
    Domain,
    OceanForecastDataset,
    ProfilingFloatDataset,
    Query,
    Reference,
    SatelliteColorDataset,
    TidalDataset,
)

EXPERT_INSTRUCTIONS = """You are OceoChat, an oceanographic research assistant specializing in marine science and ocean data analysis.

You help researchers, educators and students understand ocean data and marine processes:
- Physical oceanography: circulation, currents, temperature and salinity structure, tides, mixed layer and thermocline dynamics.
- Biological oceanography: primary productivity, chlorophyll distributions, phytoplankton blooms.
- Climate: monsoon systems, ENSO, the Indian Ocean Dipole, marine heatwaves and sea level.
- Observing systems: the Argo float network, satellite ocean color (MODIS, VIIRS), NOAA tide stations, Copernicus Marine forecasts.

Be scientifically accurate. Quote specific values with units when data is provided, explain technical terms when first used, and never invent measurements."""

# Extra focus for the "[Using <tool>] <query>" directives sent by the client.
TOOL_INSTRUCTIONS: dict[str, str] = {
    "Analyze ARGO float data": (
        "Focus on ARGO float data analysis. Provide detailed temperature and salinity profiles, "
        "identify water mass characteristics, and suggest oceanographic interpretations."
    ),
    "Search ocean databases": (
        "Act as a database search specialist. Recommend specific datasets, provide data access "
        "methods, and suggest quality control procedures."
    ),
    "Generate research charts": (
        "Focus on data visualization. Recommend specific chart types, color schemes, axis "
        "configurations, and provide detailed plotting instructions."
    ),
    "Create research document": (
        "Structure your response as a research document with abstract, methodology, results, "
        "and conclusions. Use formal scientific writing style."
    ),
    "Deep ocean analysis": (
        "Provide advanced oceanographic analysis including statistical methods, uncertainty "
        "quantification, and research recommendations."
    ),
}

RESPONSE_STRUCTURE = """Structure your response as follows:
1. DIRECT ANSWER: one or two sentences answering the question.
2. KEY INSIGHTS: three or four bullet points with the most important findings or values.
3. DETAILED EXPLANATION: the scientific context, processes and mechanisms.
4. DATA ANALYSIS: when ocean data is provided, analyze specific values, trends and patterns with units.
5. NEXT STEPS: two or three follow-up questions or research directions.

Where a data section is marked FALLBACK, say that live data was unavailable and treat those values as illustrative only."""

NO_DATA_NOTE = (
    "NOTE: No ocean data was fetched for this query. Provide general oceanographic "
    "guidance and suggest suitable data sources."
)

LIVE_MARKER = "[LIVE]"
FALLBACK_MARKER = "[FALLBACK - representative sample, hedge conclusions]"

_DOMAIN_TITLES: dict[Domain, str] = {
    Domain.PROFILING_FLOAT: "Argo profiling floats",
    Domain.TIDAL_CURRENT: "Tide predictions",
    Domain.SATELLITE_COLOR: "Satellite ocean color",
    Domain.OCEAN_FORECAST: "Ocean forecast",
}


def _stats(values: Iterable[Any]) -> tuple[float, float, float, int] | None:
    """(min, max, mean, count) over the finite values, or None if there are none."""
    arr = np.array([v for v in values if v is not None], dtype=float)
    arr = arr[np.isfinite(arr)]
    if arr.size == 0:
        return None
    return float(arr.min()), float(arr.max()), float(arr.mean()), int(arr.size)


def _describe(label: str, values: Iterable[Any], unit: str) -> str | None:
    stats = _stats(values)
    if stats is None:
        return None
    lo, hi, mean, n = stats
    return f"{label}: {lo:.2f} to {hi:.2f} {unit} (mean {mean:.2f}, n={n})"


def summarize_dataset(dataset: Any) -> list[str]:
    """Compact numeric summary lines for one domain dataset."""
    if isinstance(dataset, ProfilingFloatDataset):
        lines = [f"floats: {len(dataset.floats)}"]
        lines.append(_describe("temperature", (t for f in dataset.floats for t in f.temperature), "degC"))
        lines.append(_describe("salinity", (s for f in dataset.floats for s in f.salinity), "PSU"))
        lines.append(_describe("pressure", (p for f in dataset.floats for p in f.pressure), "dbar"))
    elif isinstance(dataset, TidalDataset):
        highs = sum(1 for p in dataset.predictions if p.type == "H")
        lows = sum(1 for p in dataset.predictions if p.type == "L")
        lines = [f"station {dataset.station}: {len(dataset.predictions)} predictions ({highs} high, {lows} low)"]
        lines.append(_describe(f"water level ({dataset.datum})", (p.value for p in dataset.predictions), "m"))
    elif isinstance(dataset, SatelliteColorDataset):
        lines = [f"{dataset.sensor} {dataset.parameter}: {len(dataset.observations)} observations"]
        lines.append(_describe(dataset.parameter, (o.value for o in dataset.observations), dataset.units))
    elif isinstance(dataset, OceanForecastDataset):
        points = dataset.points
        lines = [f"{dataset.product_id}: {len(points)} points"]
        lines.append(_describe("sea surface temperature", (p.sea_surface_temperature for p in points), "degC"))
        lines.append(_describe("sea surface height", (p.sea_surface_height for p in points), "m"))
        speeds = [
            float(np.hypot(p.current_u, p.current_v))
            for p in points
            if p.current_u is not None and p.current_v is not None
        ]
        lines.append(_describe("current speed", speeds, "m/s"))
        lines.append(_describe("chlorophyll-a", (p.chlorophyll_a for p in points), "mg/m^3"))
    else:
        return []
    return [line for line in lines if line]


def format_data_section(aggregated: AggregatedDataset | None) -> str:
    if aggregated is None or aggregated.is_empty:
        return NO_DATA_NOTE

    parts = ["OCEAN DATA"]
    if aggregated.region is not None:
        box = aggregated.region.bounding_box
        parts.append(
            f"Region: {aggregated.region.id} "
            f"(N {box.north}, S {box.south}, E {box.east}, W {box.west})"
        )
    for domain in sorted(aggregated.per_domain, key=lambda d: d.value):
        dataset = aggregated.per_domain[domain]
        marker = FALLBACK_MARKER if domain in aggregated.degraded_domains else LIVE_MARKER
        window = aggregated.time_windows.get(domain)
        header = f"\n## {_DOMAIN_TITLES[domain]} {marker}"
        if window is not None:
            header += f" {window.start} to {window.end}"
        parts.append(header)
        parts.append(f"Source: {dataset.source}")
        parts.extend(f"- {line}" for line in summarize_dataset(dataset))
        parts.append(dataset.model_dump_json())
    parts.append("\nUse these values in your analysis. Cite the source of every number you quote.")
    return "\n".join(parts)


def format_references(references: list[Reference]) -> str:
    lines = [f"[{ref.index}] {ref.title} - {ref.url}" for ref in references]
    return (
        "RESEARCH SOURCES\n"
        "Cite sources inline as [n] and finish with a References section:\n"
        + "\n".join(lines)
    )


def format_history(query: Query, limit: int) -> str | None:
    if limit <= 0 or not query.conversation_context:
        return None
    turns = query.conversation_context[-limit:]
    lines = [f"{turn.role.upper()}: {turn.content}" for turn in turns]
    return "CONVERSATION SO FAR\n" + "\n".join(lines)


def build_prompt(
    query: Query,
    aggregated: AggregatedDataset | None,
    references: list[Reference] | None = None,
    tool: str | None = None,
    history_limit: int = 6,
) -> str:
    """Assemble the generator prompt.

    Sections, in order: expert instructions, tool focus, ocean data (or a
    no-data note), research sources, recent conversation turns, and finally
    the user's query with the response structure. Pure and deterministic.

    Args:
        query: The user query; ``query.text`` is quoted verbatim.
        aggregated: Fetched data, or None on the text-only path.
        references: Citations gathered in research mode.
        tool: Tool name from a "[Using <tool>]" directive.
        history_limit: Number of most recent prior turns to include.
    """
    sections = [EXPERT_INSTRUCTIONS]

    if tool and tool in TOOL_INSTRUCTIONS:
        sections.append(f"SPECIAL INSTRUCTIONS: {TOOL_INSTRUCTIONS[tool]}")

    sections.append(format_data_section(aggregated))

    if references:
        sections.append(format_references(references))

    history = format_history(query, history_limit)
    if history:
        sections.append(history)

    sections.append(f'User Query: "{query.text}"')
    sections.append(RESPONSE_STRUCTURE)
    return "\n\n".join(sections)
