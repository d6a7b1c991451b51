from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """AnimeSub addon settings.

    Every field can be overridden via environment variables prefixed with
    ``ANIMESUB_`` (e.g. ``ANIMESUB_SEARCH_TIMEOUT=3``) or a ``.env`` file.

    Timing budget:
        discovery_deadline bounds a whole /subtitles request and must stay
        under the hosting platform's request ceiling (10s on the free tier).
        Each strategy search gets min(search_timeout, time left - margin).
    """
    host: str = "0.0.0.0"
    port: int = 7000

    base_url: str = "http://animesub.info"
    public_base_url: str = ""
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

    search_timeout: float = 5.0
    discovery_deadline: float = 8.5
    deadline_margin: float = 0.2
    metadata_timeout: float = 4.0
    metadata_retries: int = 1
    download_timeout: float = 8.0

    search_cache_ttl: float = 30 * 60
    meta_cache_ttl: float = 60 * 60
    cache_max_size: int = 2000

    max_aggregate: int = 5  # stop issuing strategies past this many matches
    max_results: int = 10

    archive_tool: str = "7z"
    archive_tool_timeout: float = 10.0
    archive_tool_max_output: int = 10 * 1024 * 1024

    log_level: str = "INFO"
    json_logs: bool = False
    log_file: str = ""

    class Config:
        env_prefix = "ANIMESUB_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
