"""Data models for the OceoChat pipeline."""

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


# --- Domain Models ---


class Domain(str, Enum):
    """External environmental-data domains the pipeline can fetch from."""

    PROFILING_FLOAT = "argo"
    TIDAL_CURRENT = "tides"
    SATELLITE_COLOR = "satellite"
    OCEAN_FORECAST = "forecast"


@dataclass(frozen=True)
class BoundingBox:
    """Geographic bounds in decimal degrees."""

    north: float
    south: float
    east: float
    west: float

    def as_dict(self) -> dict[str, float]:
        return {"north": self.north, "south": self.south, "east": self.east, "west": self.west}

    @property
    def center(self) -> tuple[float, float]:
        """(lat, lon) midpoint of the box."""
        return ((self.north + self.south) / 2, (self.east + self.west) / 2)


@dataclass(frozen=True)
class Region:
    """A named region with its bounding box and optional tide station."""

    id: str
    bounding_box: BoundingBox
    station_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "boundingBox": self.bounding_box.as_dict(),
            "stationId": self.station_id,
        }


@dataclass(frozen=True)
class TimeWindow:
    """Closed date range as ISO-8601 date strings."""

    start: str
    end: str

    def as_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class DataRequest:
    """The canonical unit of work for a source adapter and the cache key."""

    domain: Domain
    region: Region
    time_window: TimeWindow

    def canonical(self) -> dict[str, Any]:
        return {
            "domain": self.domain.value,
            "region": {
                "id": self.region.id,
                "bounding_box": self.region.bounding_box.as_dict(),
                "station_id": self.region.station_id,
            },
            "time_window": self.time_window.as_dict(),
        }

    def cache_key(self) -> str:
        """SHA-256 of the sorted-key JSON encoding of the request."""
        payload = json.dumps(self.canonical(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode()).hexdigest()


@dataclass(frozen=True)
class PriorTurn:
    """One earlier message in the conversation."""

    role: str  # "user" or "assistant"
    content: str


@dataclass(frozen=True)
class Query:
    """A user query with the conversation turns that preceded it."""

    text: str
    conversation_context: tuple[PriorTurn, ...] = ()


# --- Per-domain datasets ---


class ArgoFloat(BaseModel):
    """One Argo float profile."""

    model_config = ConfigDict(frozen=True)

    platform_number: str
    latitude: float
    longitude: float
    date: str
    cycle_number: int = 0
    pressure: list[float] = Field(default_factory=list)
    temperature: list[float] = Field(default_factory=list)
    salinity: list[float] = Field(default_factory=list)


class ProfilingFloatDataset(BaseModel):
    model_config = ConfigDict(frozen=True)

    domain: Literal["argo"] = "argo"
    floats: list[ArgoFloat]
    source: str = "Argo GDAC"


class TidePrediction(BaseModel):
    model_config = ConfigDict(frozen=True)

    time: str
    value: float
    type: Literal["H", "L"] | None = None


class TidalDataset(BaseModel):
    model_config = ConfigDict(frozen=True)

    domain: Literal["tides"] = "tides"
    station: str
    product: str = "predictions"
    datum: str = "MLLW"
    time_zone: str = "GMT"
    predictions: list[TidePrediction]
    source: str = "NOAA CO-OPS"


class ColorObservation(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    time: str
    value: float


class SatelliteColorDataset(BaseModel):
    model_config = ConfigDict(frozen=True)

    domain: Literal["satellite"] = "satellite"
    sensor: str
    parameter: str
    units: str
    observations: list[ColorObservation]
    source: str = "NASA Ocean Color"


class ForecastPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    time: str
    sea_surface_temperature: float | None = None
    sea_surface_height: float | None = None
    current_u: float | None = None
    current_v: float | None = None
    chlorophyll_a: float | None = None


class OceanForecastDataset(BaseModel):
    model_config = ConfigDict(frozen=True)

    domain: Literal["forecast"] = "forecast"
    product_id: str
    points: list[ForecastPoint]
    source: str = "Copernicus Marine"


Dataset = Annotated[
    Union[ProfilingFloatDataset, TidalDataset, SatelliteColorDataset, OceanForecastDataset],
    Field(discriminator="domain"),
]

DATASET_ADAPTER: TypeAdapter[Dataset] = TypeAdapter(Dataset)


# --- Fetch results ---


class FetchErrorKind(str, Enum):
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class FetchError:
    """Why an adapter could not produce a dataset."""

    kind: FetchErrorKind
    reason: str = ""

    @classmethod
    def timeout(cls, reason: str = "request timed out") -> "FetchError":
        return cls(FetchErrorKind.TIMEOUT, reason)

    @classmethod
    def unavailable(cls, reason: str) -> "FetchError":
        return cls(FetchErrorKind.UNAVAILABLE, reason)


@dataclass(frozen=True)
class FetchResult:
    """Either a dataset or a FetchError, never both."""

    dataset: Any = None
    error: FetchError | None = None

    def __post_init__(self) -> None:
        if (self.dataset is None) == (self.error is None):
            raise ValueError("FetchResult needs exactly one of dataset or error")

    @classmethod
    def ok(cls, dataset: Any) -> "FetchResult":
        return cls(dataset=dataset)

    @classmethod
    def failed(cls, error: FetchError) -> "FetchResult":
        return cls(error=error)

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class CacheEntry:
    """A cached dataset. Owned and mutated only by the AggregationCache."""

    key: str
    dataset: Any
    source_label: str
    fetched_at: float
    expires_at: float
    access_count: int = 0

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass
class AggregatedDataset:
    """Best-effort merged view of every requested domain."""

    per_domain: dict[Domain, Any] = field(default_factory=dict)
    succeeded_domains: set[Domain] = field(default_factory=set)
    degraded_domains: set[Domain] = field(default_factory=set)
    region: Region | None = None
    time_windows: dict[Domain, TimeWindow] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.per_domain

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe representation used on the wire and in responses."""
        return {
            "region": self.region.as_dict() if self.region else None,
            "perDomain": {
                domain.value: dataset.model_dump(mode="json")
                for domain, dataset in sorted(self.per_domain.items(), key=lambda kv: kv[0].value)
            },
            "succeededDomains": sorted(d.value for d in self.succeeded_domains),
            "degradedDomains": sorted(d.value for d in self.degraded_domains),
            "timeWindows": {
                domain.value: window.as_dict()
                for domain, window in sorted(self.time_windows.items(), key=lambda kv: kv[0].value)
            },
        }


# --- Stream events ---


@dataclass(frozen=True)
class ContentEvent:
    kind: ClassVar[str] = "content"
    text: str


@dataclass(frozen=True)
class MetadataEvent:
    kind: ClassVar[str] = "metadata"
    payload: dict[str, Any]


@dataclass(frozen=True)
class DoneEvent:
    kind: ClassVar[str] = "done"


@dataclass(frozen=True)
class ErrorEvent:
    kind: ClassVar[str] = "error"
    reason: str


StreamEvent = Union[ContentEvent, MetadataEvent, DoneEvent, ErrorEvent]


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, (DoneEvent, ErrorEvent))


# --- Request/Response Models ---


class ChatRequest(BaseModel):
    """Inbound chat request."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    conversation_id: str | None = Field(default=None, alias="conversationId")
    context: Literal["analysis", "research"] | None = None


class Reference(BaseModel):
    """A citation gathered in research mode."""

    index: int
    title: str
    url: str
    snippet: str = ""


class ResponseMetadata(BaseModel):
    model: str
    context: str
    timestamp: str


class ChatResponse(BaseModel):
    """Single-shot chat response."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    response: str
    ocean_data: dict[str, Any] = Field(default_factory=dict, alias="oceanData")
    references: list[Reference] = Field(default_factory=list)
    conversation_id: str = Field(alias="conversationId")
    metadata: ResponseMetadata


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: bool = False
    error: str
    details: str | None = None


class Message(BaseModel):
    """A single stored conversation message."""

    id: str
    role: str  # "user" or "assistant"
    content: str
    timestamp: str = ""
