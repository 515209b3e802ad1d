# backend/src/kwiki/config.py
"""Configuration system for the kwiki backend.

Settings come from three layers, later layers winning:

1. Defaults declared in CONFIG_SCHEMA
2. An optional ``config.ini`` inside the data directory
3. Environment variables (API keys, endpoints, host/port, default provider)
"""

import os
from configparser import ConfigParser
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


PROVIDER_NAMES = ("ollama", "openai", "gemini", "deepseek")

BUNDLED_TEMPLATE_DIR = Path(__file__).parent / "templates" / "prompts"

# Schema: section -> key -> (type, default, min, max, description)
CONFIG_SCHEMA: dict[str, dict[str, tuple[type, Any, Any, Any, str]]] = {
    "server": {
        "host": (str, "0.0.0.0", None, None, "Bind address"),
        "port": (int, 8080, 1, 65535, "Bind port"),
    },
    "ai": {
        "default_provider": (str, "ollama", None, None, "Provider used when a request names none"),
    },
    "ollama": {
        "model": (str, "huihui_ai/deepseek-r1-abliterated:32b", None, None, "Default model"),
        "temperature": (float, 0.7, 0.0, 2.0, "Default temperature"),
        "max_tokens": (int, 8000, 1, 200_000, "Default output token budget"),
        "timeout_seconds": (float, 300.0, 1.0, 3600.0, "HTTP timeout"),
    },
    "openai": {
        "model": (str, "gpt-4o-mini", None, None, "Default model"),
        "temperature": (float, 0.7, 0.0, 2.0, "Default temperature"),
        "max_tokens": (int, 4000, 1, 200_000, "Default output token budget"),
        "timeout_seconds": (float, 120.0, 1.0, 3600.0, "HTTP timeout"),
    },
    "gemini": {
        "model": (str, "gemini-2.0-flash-exp", None, None, "Default model"),
        "temperature": (float, 0.7, 0.0, 2.0, "Default temperature"),
        "max_tokens": (int, 4000, 1, 200_000, "Default output token budget"),
        "timeout_seconds": (float, 120.0, 1.0, 3600.0, "HTTP timeout"),
    },
    "deepseek": {
        "model": (str, "deepseek-chat", None, None, "Default model"),
        "temperature": (float, 0.7, 0.0, 2.0, "Default temperature"),
        "max_tokens": (int, 8000, 1, 200_000, "Default output token budget"),
        "timeout_seconds": (float, 120.0, 1.0, 3600.0, "HTTP timeout"),
    },
    "generator": {
        "max_concurrency": (int, 5, 1, 50, "Concurrent AI calls per language"),
        "reading_speed": (int, 200, 1, 2000, "Words per minute for reading time"),
        "template_language": (str, "zh", None, None, "Default language for template docs"),
        "repository_language": (str, "en", None, None, "Default language for repository docs"),
        "page_retry_attempts": (int, 3, 1, 10, "Attempts per repository page"),
        "stream_idle_timeout_seconds": (float, 300.0, 1.0, 3600.0, "Max silence between stream chunks"),
        "use_streaming": (bool, True, None, None, "Use streaming calls for page generation"),
        "template_dir": (str, "", None, None, "Prompt template directory (empty = bundled)"),
    },
    "progress": {
        "channel_size": (int, 100, 1, 10_000, "Buffered progress events before dropping"),
        "log_retention": (int, 100, 1, 10_000, "Log lines retained per job"),
    },
    "storage": {
        "wikis_dir": (str, "wikis", None, None, "Wiki directory name inside the data dir"),
    },
}


@dataclass(frozen=True)
class ServerConfig:
    """HTTP server configuration."""

    host: str
    port: int


@dataclass(frozen=True)
class ProviderConfig:
    """Per-provider generation defaults."""

    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: float


@dataclass(frozen=True)
class GeneratorConfig:
    """Wiki generation pipeline configuration."""

    max_concurrency: int
    reading_speed: int
    template_language: str
    repository_language: str
    page_retry_attempts: int
    stream_idle_timeout_seconds: float
    use_streaming: bool
    template_dir: str


@dataclass(frozen=True)
class ProgressConfig:
    """Progress channel and job log configuration."""

    channel_size: int
    log_retention: int


@dataclass(frozen=True)
class StorageConfig:
    """Result store configuration."""

    wikis_dir: str


def _load_section(
    parser: ConfigParser, section: str, schema: dict[str, tuple[type, Any, Any, Any, str]]
) -> dict[str, Any]:
    """Load and validate a configuration section.

    Args:
        parser: ConfigParser instance with loaded config
        section: Section name to load
        schema: Schema definition for the section

    Returns:
        Dictionary of validated configuration values

    Raises:
        ConfigError: If validation fails
    """
    result = {}

    for key, (typ, default, min_val, max_val, _) in schema.items():
        if parser.has_option(section, key):
            raw_value = parser.get(section, key)
            value: bool | int | float | str
            try:
                if typ is bool:
                    value = raw_value.lower() in ("true", "1", "yes", "on")
                elif typ is int:
                    value = int(raw_value)
                elif typ is float:
                    value = float(raw_value)
                else:
                    value = raw_value
            except ValueError as e:
                raise ConfigError(
                    f"Invalid value for [{section}].{key}: {raw_value!r} (expected {typ.__name__})"
                ) from e
        else:
            value = default

        if typ in (int, float) and value is not None:
            if min_val is not None and value < min_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but minimum is {min_val}"
                )
            if max_val is not None and value > max_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but maximum is {max_val}"
                )

        result[key] = value

    return result


def _section_defaults(section: str) -> dict[str, Any]:
    return {key: default for key, (_, default, _, _, _) in CONFIG_SCHEMA[section].items()}


@dataclass(frozen=True)
class Config:
    """Complete application configuration."""

    data_dir: Path
    default_provider: str = "ollama"
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    google_api_key: Optional[str] = None
    deepseek_api_key: Optional[str] = None
    deepseek_base_url: Optional[str] = None
    ollama_host: Optional[str] = None

    # Section configs; defaults filled in __post_init__
    server: ServerConfig = None  # type: ignore[assignment]
    generator: GeneratorConfig = None  # type: ignore[assignment]
    progress: ProgressConfig = None  # type: ignore[assignment]
    storage: StorageConfig = None  # type: ignore[assignment]
    providers: dict[str, ProviderConfig] = None  # type: ignore[assignment]

    def __post_init__(self):
        """Initialize section configs with schema defaults if not provided."""
        if self.server is None:
            object.__setattr__(self, "server", ServerConfig(**_section_defaults("server")))
        if self.generator is None:
            object.__setattr__(self, "generator", GeneratorConfig(**_section_defaults("generator")))
        if self.progress is None:
            object.__setattr__(self, "progress", ProgressConfig(**_section_defaults("progress")))
        if self.storage is None:
            object.__setattr__(self, "storage", StorageConfig(**_section_defaults("storage")))
        if self.providers is None:
            object.__setattr__(
                self,
                "providers",
                {name: ProviderConfig(**_section_defaults(name)) for name in PROVIDER_NAMES},
            )

    @property
    def wikis_path(self) -> Path:
        """Directory holding all generated wikis."""
        return self.data_dir / self.storage.wikis_dir

    @property
    def template_path(self) -> Path:
        """Directory holding prompt templates, one subdirectory per language."""
        if self.generator.template_dir:
            return Path(self.generator.template_dir)
        return BUNDLED_TEMPLATE_DIR

    def provider_defaults(self, name: str) -> Optional[ProviderConfig]:
        """Configured defaults for a provider, or None if it has no section."""
        return self.providers.get(name)


def load_config(config_path: Optional[Path] = None, data_dir: Path = Path("data")) -> Config:
    """Load configuration from an INI file without consulting the environment.

    Args:
        config_path: Path to config file. If None or missing, uses schema defaults.
        data_dir: Data directory recorded on the returned Config.

    Returns:
        Config with every section populated.

    Raises:
        ConfigError: If validation fails
    """
    parser = ConfigParser()

    if config_path and config_path.exists():
        parser.read(config_path)

    ai_values = _load_section(parser, "ai", CONFIG_SCHEMA["ai"])

    return Config(
        data_dir=data_dir,
        default_provider=ai_values["default_provider"],
        server=ServerConfig(**_load_section(parser, "server", CONFIG_SCHEMA["server"])),
        generator=GeneratorConfig(**_load_section(parser, "generator", CONFIG_SCHEMA["generator"])),
        progress=ProgressConfig(**_load_section(parser, "progress", CONFIG_SCHEMA["progress"])),
        storage=StorageConfig(**_load_section(parser, "storage", CONFIG_SCHEMA["storage"])),
        providers={
            name: ProviderConfig(**_load_section(parser, name, CONFIG_SCHEMA[name]))
            for name in PROVIDER_NAMES
        },
    )


@lru_cache(maxsize=1)
def load_settings() -> Config:
    """Load settings from environment variables and config file.

    Settings are cached for the lifetime of the application.
    Use load_settings.cache_clear() to reload settings.

    Returns:
        Config object populated from environment variables and config file.

    Raises:
        ConfigError: If the config file or an environment override is invalid.
    """
    data_dir = Path(os.getenv("KWIKI_DATA_DIR", "data"))
    config_file = data_dir / "config.ini"
    try:
        config_exists = config_file.exists()
    except PermissionError:
        config_exists = False
    base_config = load_config(config_file if config_exists else None, data_dir=data_dir)

    server = base_config.server
    port_env = os.getenv("PORT")
    if port_env or os.getenv("HOST"):
        try:
            port = int(port_env) if port_env else server.port
        except ValueError as e:
            raise ConfigError(f"Invalid PORT environment variable: {port_env!r}") from e
        server = ServerConfig(host=os.getenv("HOST", server.host), port=port)

    return Config(
        data_dir=data_dir,
        default_provider=os.getenv("DEFAULT_PROVIDER", base_config.default_provider),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openai_base_url=os.getenv("OPENAI_BASE_URL"),
        google_api_key=os.getenv("GOOGLE_API_KEY"),
        deepseek_api_key=os.getenv("DEEPSEEK_API_KEY"),
        deepseek_base_url=os.getenv("DEEPSEEK_BASE_URL"),
        ollama_host=os.getenv("OLLAMA_HOST"),
        server=server,
        generator=base_config.generator,
        progress=base_config.progress,
        storage=base_config.storage,
        providers=base_config.providers,
    )
