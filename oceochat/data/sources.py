"""Source adapters: one per external data domain behind a uniform contract.

Every adapter exposes ``fetch(request, deadline) -> FetchResult`` and never
raises for provider failures. Timeouts become ``FetchError.timeout`` and
everything else (network errors, error statuses, non-JSON bodies, payloads
that do not parse) becomes ``FetchError.unavailable``. Each adapter also owns
a static fallback dataset, but substituting it is the orchestrator's job.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import date
from pathlib import Path
from typing import Any

import argopy
import httpx
import numpy as np
import xarray as xr
from pydantic import ValidationError

from oceochat.config import Settings, get_settings
from oceochat.data.schema import (
    ArgoFloat,
    ColorObservation,
    DataRequest,
    Dataset,
    Domain,
    FetchError,
    FetchResult,
    ForecastPoint,
    OceanForecastDataset,
    ProfilingFloatDataset,
    SatelliteColorDataset,
    TidalDataset,
    TidePrediction,
)

logger = logging.getLogger(__name__)

FALLBACK_SOURCE = "representative sample"

_MAX_FLOATS = 20
_MAX_LEVELS = 50
_MAX_POINTS = 200
_QC_VARIABLES = ("TEMP", "PSAL", "PRES")


class SourceUnavailable(Exception):
    """Provider answered with something unusable or could not be reached."""


class SourceAdapter(ABC):
    """Uniform wrapper around a single external data provider."""

    domain: Domain
    name: str

    async def fetch(self, request: DataRequest, deadline: float) -> FetchResult:
        """Fetch a dataset for the request, giving up after ``deadline`` seconds."""
        try:
            dataset = await asyncio.wait_for(self._fetch(request), timeout=deadline)
        except asyncio.TimeoutError:
            logger.warning("%s fetch timed out after %.1fs", self.name, deadline)
            return FetchResult.failed(FetchError.timeout(f"{self.name} timed out after {deadline:.1f}s"))
        except httpx.TimeoutException:
            logger.warning("%s provider timed out", self.name)
            return FetchResult.failed(FetchError.timeout(f"{self.name} provider timed out"))
        except SourceUnavailable as e:
            logger.warning("%s unavailable: %s", self.name, e)
            return FetchResult.failed(FetchError.unavailable(str(e)))
        except httpx.HTTPError as e:
            logger.warning("%s request failed: %s", self.name, e)
            return FetchResult.failed(FetchError.unavailable(f"request failed: {e}"))
        except (ValueError, KeyError, TypeError, IndexError, AttributeError, ValidationError) as e:
            logger.warning("%s returned a malformed payload: %s", self.name, e)
            return FetchResult.failed(FetchError.unavailable(f"malformed payload: {e}"))
        except Exception as e:
            logger.exception("Unexpected error fetching from %s", self.name)
            return FetchResult.failed(FetchError.unavailable(f"unexpected error: {e}"))

        return FetchResult.ok(dataset)

    @abstractmethod
    async def _fetch(self, request: DataRequest) -> Any:
        """Provider-specific fetch. May raise; ``fetch`` converts failures."""

    @abstractmethod
    def fallback(self, request: DataRequest) -> Any:
        """Static representative dataset for this domain."""

    @abstractmethod
    async def probe(self) -> bool:
        """Return True when the provider answers at all."""


class HttpSourceAdapter(SourceAdapter):
    """Base for adapters that talk JSON over HTTP."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings | None = None) -> None:
        self._client = client
        self._settings = settings or get_settings()

    async def _request_json(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        response = await self._client.request(
            method, url, params=params, json=json_body, headers=headers,
        )
        if response.status_code >= 400:
            raise SourceUnavailable(f"HTTP {response.status_code}: {_error_detail(response)}")

        content_type = response.headers.get("content-type", "")
        if "json" not in content_type:
            raise SourceUnavailable(f"non-JSON response ({content_type or 'no content type'})")

        try:
            data = response.json()
        except ValueError as e:
            raise SourceUnavailable(f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise SourceUnavailable(f"unexpected payload type {type(data).__name__}")
        return data

    async def _probe_url(self, url: str, params: dict[str, Any] | None = None) -> bool:
        try:
            response = await self._client.get(url, params=params, timeout=5.0)
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.warning("%s connectivity probe failed: %s", self.name, e)
            return False


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
        if isinstance(data, dict):
            return str(data.get("detail") or data.get("error") or data)[:200]
    except ValueError:
        pass
    return response.text[:200]


def _compact_date(iso_date: str) -> str:
    return date.fromisoformat(iso_date[:10]).strftime("%Y%m%d")


# --- Profiling floats (Argo via argopy) ---


def _apply_qc_filter(ds: xr.Dataset) -> xr.Dataset:
    """Keep only good quality measurements (QC flags 1 and 2)."""
    for var in _QC_VARIABLES:
        qc_var = f"{var}_QC"
        if var in ds and qc_var in ds:
            mask = ds[qc_var].isin([1, 2])
            ds[var] = ds[var].where(mask)
    return ds


def _profile_times(ds: xr.Dataset) -> np.ndarray:
    if "TIME" in ds:
        return ds["TIME"].values
    if "JULD" in ds:
        return ds["JULD"].values
    raise KeyError("dataset has neither TIME nor JULD")


def argo_dataset_from_xarray(ds: xr.Dataset) -> ProfilingFloatDataset:
    """Convert a profile-shaped (N_PROF x N_LEVELS) Argo dataset.

    Levels where pressure, temperature or salinity is missing are dropped,
    profiles with no usable level are skipped. Raises SourceUnavailable when
    nothing usable remains so callers never see an empty dataset.
    """
    ds = _apply_qc_filter(ds)
    n_prof = ds.sizes.get("N_PROF", 0)
    if n_prof == 0:
        raise SourceUnavailable("no Argo profiles in region and time window")

    lats = ds["LATITUDE"].values
    lons = ds["LONGITUDE"].values
    times = _profile_times(ds)
    pres = np.atleast_2d(ds["PRES"].values)
    temp = np.atleast_2d(ds["TEMP"].values)
    psal = np.atleast_2d(ds["PSAL"].values) if "PSAL" in ds else np.full_like(temp, np.nan)
    platforms = ds["PLATFORM_NUMBER"].values if "PLATFORM_NUMBER" in ds else None
    cycles = ds["CYCLE_NUMBER"].values if "CYCLE_NUMBER" in ds else None

    floats: list[ArgoFloat] = []
    for i in range(n_prof):
        mask = np.isfinite(pres[i]) & np.isfinite(temp[i])
        if "PSAL" in ds:
            mask &= np.isfinite(psal[i])
        idx = np.flatnonzero(mask)
        if idx.size == 0:
            continue
        if idx.size > _MAX_LEVELS:
            idx = idx[np.linspace(0, idx.size - 1, _MAX_LEVELS).astype(int)]

        platform = str(platforms[i]).strip() if platforms is not None else "UNKNOWN"
        floats.append(ArgoFloat(
            platform_number=platform,
            latitude=round(float(lats[i]), 4),
            longitude=round(float(lons[i]), 4),
            date=np.datetime_as_string(np.datetime64(times[i], "s")) + "Z",
            cycle_number=int(cycles[i]) if cycles is not None else 0,
            pressure=[round(float(v), 1) for v in pres[i][idx]],
            temperature=[round(float(v), 3) for v in temp[i][idx]],
            salinity=[round(float(v), 3) for v in psal[i][idx]] if "PSAL" in ds else [],
        ))
        if len(floats) >= _MAX_FLOATS:
            break

    if not floats:
        raise SourceUnavailable("Argo profiles contained no good quality levels")
    return ProfilingFloatDataset(floats=floats)


class ArgoProfilingAdapter(HttpSourceAdapter):
    """Argo profiling floats through argopy's ERDDAP fetcher."""

    domain = Domain.PROFILING_FLOAT
    name = "argo"

    def __init__(self, client: httpx.AsyncClient, settings: Settings | None = None) -> None:
        super().__init__(client, settings=settings)
        cache_dir = Path(self._settings.argo_cache_dir)
        cache_dir.mkdir(parents=True, exist_ok=True)
        argopy.set_options(cachedir=str(cache_dir), mode="standard")

    async def _fetch(self, request: DataRequest) -> ProfilingFloatDataset:
        box = request.region.bounding_box
        if box.west > box.east:
            raise SourceUnavailable("bounding box crosses the antimeridian")

        region = [
            box.west, box.east, box.south, box.north, 0.0, 2000.0,
            request.time_window.start, request.time_window.end,
        ]
        logger.info("Fetching Argo region: %s", region)
        # argopy is synchronous; the worker thread is abandoned on deadline.
        ds = await asyncio.to_thread(self._load, region)
        return argo_dataset_from_xarray(ds)

    def _load(self, region: list) -> xr.Dataset:
        fetcher = argopy.DataFetcher(src="erddap", server=self._settings.argo_erddap_server).region(region)
        ds = fetcher.to_xarray()
        if "N_PROF" not in ds.dims and "N_POINTS" in ds.dims:
            ds = ds.argo.point2profile()
        return ds

    def fallback(self, request: DataRequest) -> ProfilingFloatDataset:
        return ProfilingFloatDataset(
            floats=[
                ArgoFloat(
                    platform_number="2902746",
                    latitude=15.5,
                    longitude=68.2,
                    date="2024-01-19T12:00:00Z",
                    cycle_number=245,
                    pressure=[0.0, 10.0, 20.0, 50.0, 100.0],
                    temperature=[28.5, 28.2, 27.8, 26.5, 24.2],
                    salinity=[35.2, 35.4, 35.6, 35.8, 36.0],
                ),
                ArgoFloat(
                    platform_number="2902747",
                    latitude=12.8,
                    longitude=74.1,
                    date="2024-01-19T06:00:00Z",
                    cycle_number=189,
                    pressure=[0.0, 10.0, 20.0, 50.0, 100.0],
                    temperature=[29.1, 28.8, 28.4, 27.1, 25.5],
                    salinity=[35.8, 35.9, 36.0, 36.1, 36.2],
                ),
            ],
            source=FALLBACK_SOURCE,
        )

    async def probe(self) -> bool:
        url = f"{self._settings.argo_erddap_server.rstrip('/')}/info/index.json"
        return await self._probe_url(url, params={"itemsPerPage": 1})


# --- Tides (NOAA CO-OPS) ---


class NoaaTidesAdapter(HttpSourceAdapter):
    """NOAA CO-OPS tide predictions for the region's station."""

    domain = Domain.TIDAL_CURRENT
    name = "noaa_tides"

    async def _fetch(self, request: DataRequest) -> TidalDataset:
        station = request.region.station_id
        if not station:
            raise SourceUnavailable(f"no tide station for region '{request.region.id}'")

        data = await self._request_json("GET", self._settings.noaa_tides_api, params={
            "product": "predictions",
            "application": "OceoChat",
            "format": "json",
            "station": station,
            "begin_date": _compact_date(request.time_window.start),
            "end_date": _compact_date(request.time_window.end),
            "datum": "MLLW",
            "time_zone": "gmt",
            "units": "metric",
            "interval": "hilo",
        })
        if "error" in data:
            error = data["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise SourceUnavailable(f"NOAA error: {message}")

        raw = data.get("predictions") or data.get("data")
        if not raw:
            raise SourceUnavailable("no tide predictions returned")

        predictions = [
            TidePrediction(time=item["t"], value=float(item["v"]), type=item.get("type"))
            for item in raw[:_MAX_POINTS]
        ]
        return TidalDataset(station=station, predictions=predictions)

    def fallback(self, request: DataRequest) -> TidalDataset:
        return TidalDataset(
            station=request.region.station_id or "unknown",
            predictions=[
                TidePrediction(time="2024-01-19 06:00", value=1.5, type="H"),
                TidePrediction(time="2024-01-19 12:00", value=0.2, type="L"),
                TidePrediction(time="2024-01-19 18:00", value=1.8, type="H"),
                TidePrediction(time="2024-01-20 00:00", value=0.1, type="L"),
            ],
            source=FALLBACK_SOURCE,
        )

    async def probe(self) -> bool:
        return await self._probe_url(
            self._settings.noaa_tides_api, params={"product": "stations", "format": "json"},
        )


# --- Satellite ocean colour (NASA) ---


class NasaOceanColorAdapter(HttpSourceAdapter):
    """NASA ocean-colour chlorophyll-a observations (MODIS)."""

    domain = Domain.SATELLITE_COLOR
    name = "nasa_ocean_color"

    sensor = "MODIS"
    product = "chlor_a"

    async def _fetch(self, request: DataRequest) -> SatelliteColorDataset:
        token = self._settings.nasa_ocean_token
        if not token:
            raise SourceUnavailable("NASA_OCEAN_TOKEN not configured")

        box = request.region.bounding_box
        url = f"{self._settings.nasa_ocean_api.rstrip('/')}/file_search"
        data = await self._request_json(
            "GET",
            url,
            params={
                "sensor": self.sensor,
                "prod": self.product,
                "stime": request.time_window.start,
                "etime": request.time_window.end,
                "north": box.north,
                "south": box.south,
                "east": box.east,
                "west": box.west,
            },
            headers={"Authorization": f"Bearer {token}"},
        )

        records = data.get("data") or data.get("files") or []
        observations = [
            ColorObservation(
                latitude=float(item.get("lat", item.get("latitude"))),
                longitude=float(item.get("lon", item.get("longitude"))),
                time=str(item["time"]),
                value=float(item.get(self.product, item.get("value"))),
            )
            for item in records[:_MAX_POINTS]
        ]
        if not observations:
            raise SourceUnavailable("no ocean colour observations returned")

        return SatelliteColorDataset(
            sensor=self.sensor, parameter=self.product, units="mg m^-3", observations=observations,
        )

    def fallback(self, request: DataRequest) -> SatelliteColorDataset:
        return SatelliteColorDataset(
            sensor="MODIS-Aqua",
            parameter="chlor_a",
            units="mg m^-3",
            observations=[
                ColorObservation(latitude=15.0, longitude=70.0, time="2024-01-19T12:00:00Z", value=0.25),
            ],
            source=FALLBACK_SOURCE,
        )

    async def probe(self) -> bool:
        return await self._probe_url(self._settings.nasa_ocean_api)


# --- Ocean forecast (Copernicus Marine) ---


class CopernicusForecastAdapter(HttpSourceAdapter):
    """Copernicus Marine global physics analysis/forecast extract."""

    domain = Domain.OCEAN_FORECAST
    name = "copernicus"

    product_id = "GLOBAL_ANALYSIS_FORECAST_PHY_001_024"

    async def _fetch(self, request: DataRequest) -> OceanForecastDataset:
        token = self._settings.copernicus_token
        if not token:
            raise SourceUnavailable("COPERNICUS_TOKEN not configured")

        box = request.region.bounding_box
        url = f"{self._settings.copernicus_api_base.rstrip('/')}/extract"
        data = await self._request_json(
            "POST",
            url,
            json_body={
                "product": self.product_id,
                "variables": ["temperature", "salinity", "currents"],
                "longitude_min": box.west,
                "longitude_max": box.east,
                "latitude_min": box.south,
                "latitude_max": box.north,
                "time_min": request.time_window.start,
                "time_max": request.time_window.end,
            },
            headers={"Authorization": f"Token {token}"},
        )

        points = [
            ForecastPoint(
                latitude=float(item["lat"]),
                longitude=float(item["lon"]),
                time=str(item["time"]),
                sea_surface_temperature=_optional_float(item.get("temperature")),
                sea_surface_height=_optional_float(item.get("ssh")),
                current_u=_optional_float(item.get("u_velocity")),
                current_v=_optional_float(item.get("v_velocity")),
                chlorophyll_a=_optional_float(item.get("chlorophyll")),
            )
            for item in (data.get("data") or [])[:_MAX_POINTS]
        ]
        if not points:
            raise SourceUnavailable("no forecast points returned")

        return OceanForecastDataset(product_id=self.product_id, points=points)

    def fallback(self, request: DataRequest) -> OceanForecastDataset:
        return OceanForecastDataset(
            product_id=self.product_id,
            points=[
                ForecastPoint(
                    latitude=15.0,
                    longitude=70.0,
                    time="2024-01-19T12:00:00Z",
                    sea_surface_temperature=28.5,
                    sea_surface_height=0.15,
                    current_u=0.25,
                    current_v=-0.18,
                    chlorophyll_a=0.22,
                ),
            ],
            source=FALLBACK_SOURCE,
        )

    async def probe(self) -> bool:
        return await self._probe_url(self._settings.copernicus_api_base)


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def build_adapters(
    client: httpx.AsyncClient,
    settings: Settings | None = None,
) -> dict[Domain, SourceAdapter]:
    """Create one adapter per domain sharing a single HTTP client."""
    settings = settings or get_settings()
    adapters: list[SourceAdapter] = [
        ArgoProfilingAdapter(client, settings=settings),
        NoaaTidesAdapter(client, settings=settings),
        NasaOceanColorAdapter(client, settings=settings),
        CopernicusForecastAdapter(client, settings=settings),
    ]
    return {adapter.domain: adapter for adapter in adapters}


def empty_dataset(domain: Domain) -> Dataset:
    """Dataset with no observations, for a domain no adapter serves."""
    if domain is Domain.PROFILING_FLOAT:
        return ProfilingFloatDataset(floats=[], source=FALLBACK_SOURCE)
    if domain is Domain.TIDAL_CURRENT:
        return TidalDataset(station="unknown", predictions=[], source=FALLBACK_SOURCE)
    if domain is Domain.SATELLITE_COLOR:
        return SatelliteColorDataset(
            sensor="unknown", parameter="chlor_a", units="mg m^-3", observations=[], source=FALLBACK_SOURCE,
        )
    return OceanForecastDataset(product_id="unknown", points=[], source=FALLBACK_SOURCE)
