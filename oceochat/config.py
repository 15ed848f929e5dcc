"""Application configuration using Pydantic Settings."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """OceoChat application settings loaded from environment variables."""

    # Generator (absent key means the generator is unavailable)
    anthropic_api_key: str | None = None
    anthropic_model: str = "claude-sonnet-4-20250514"
    anthropic_model_priority: list[str] = [
        "claude-sonnet-4-20250514",
        "claude-3-5-haiku-latest",
    ]
    generator_max_tokens: int = 2048
    generator_mode: str = "stream"  # "stream" or "single"

    # Data providers
    argo_erddap_server: str = "https://erddap.ifremer.fr/erddap"
    argo_cache_dir: str = str(Path(__file__).parent.parent / "data" / "argo")
    noaa_tides_api: str = "https://api.tidesandcurrents.noaa.gov/api/prod/datagetter"
    nasa_ocean_api: str = "https://oceandata.sci.gsfc.nasa.gov/api/v2/"
    nasa_ocean_token: str | None = None
    copernicus_api_base: str = "https://marine.copernicus.eu/services/"
    copernicus_token: str | None = None
    search_api: str = "https://api.duckduckgo.com/"
    serpapi_key: str | None = None

    # Timeouts (seconds)
    adapter_timeout: float = 12.0
    fetch_deadline: float = 20.0
    generator_timeout: float = 90.0

    # Aggregation cache
    cache_max_entries: int = 512
    cache_sweep_interval: float = 60.0
    cache_ttl_argo: int = 3600
    cache_ttl_tides: int = 900
    cache_ttl_satellite: int = 21600
    cache_ttl_forecast: int = 3600
    cache_redis_url: str | None = None

    # Prompt / stream shaping
    history_turns: int = 6
    stream_word_group: int = 3

    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    rate_limit_per_minute: int = 20
    debug: bool = False

    model_config = {
        "env_prefix": "",
        "env_file": str(Path(__file__).parent.parent / ".env"),
        "extra": "ignore",
    }

    def ttl_by_domain(self) -> dict[str, int]:
        """Cache TTL in seconds keyed by domain value."""
        return {
            "argo": self.cache_ttl_argo,
            "tides": self.cache_ttl_tides,
            "satellite": self.cache_ttl_satellite,
            "forecast": self.cache_ttl_forecast,
        }


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
