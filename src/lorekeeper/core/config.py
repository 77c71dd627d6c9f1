"""Engine configuration loaded from environment variables."""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

from lorekeeper.core.exceptions import ConfigurationError

ENV_PREFIX = "LOREKEEPER_"
DEFAULT_DATA_DIR = Path.home() / ".lorekeeper"


@dataclass
class EngineConfig:
    """Configuration for the memory engine.

    Attributes:
        model: Generation model passed to the text generation client
        temperature: Sampling temperature for generation
        max_tokens: Maximum tokens to generate per request
        memory_context_length: Number of memories returned by relevance lookups
        enable_memory_learning: Run the interaction learner after each chat turn
        auto_tag_memories: Let the analyzer attach tags to learned memories
        cache_ttl_seconds: Lifetime of a cached memory query
        db_path: SQLite database file
        ollama_url: Ollama server URL
        log_level: Root log level used by the CLI
    """

    model: str = "llama3:8b"
    temperature: float = 0.7
    max_tokens: int = 1000
    memory_context_length: int = 5
    enable_memory_learning: bool = True
    auto_tag_memories: bool = True
    cache_ttl_seconds: float = 300.0
    db_path: Path = field(default_factory=lambda: DEFAULT_DATA_DIR / "lorekeeper.db")
    ollama_url: str = "http://localhost:11434"
    log_level: str = "INFO"


def _coerce(name: str, raw: str, default: object) -> object:
    if isinstance(default, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ConfigurationError(f"{ENV_PREFIX}{name.upper()} must be a boolean, got {raw!r}")
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError as e:
            raise ConfigurationError(f"{ENV_PREFIX}{name.upper()} must be an integer") from e
    if isinstance(default, float):
        try:
            return float(raw)
        except ValueError as e:
            raise ConfigurationError(f"{ENV_PREFIX}{name.upper()} must be a number") from e
    if isinstance(default, Path):
        return Path(raw).expanduser()
    return raw


def load_config(environ: dict[str, str] | None = None, **overrides: object) -> EngineConfig:
    """Load configuration from environment variables.

    Priority: explicit overrides > LOREKEEPER_* environment variables > defaults.

    Raises:
        ConfigurationError: If a variable cannot be parsed or a value is out of range.
    """
    env = os.environ if environ is None else environ
    config = EngineConfig()

    for f in fields(EngineConfig):
        raw = env.get(f"{ENV_PREFIX}{f.name.upper()}")
        if raw is not None:
            setattr(config, f.name, _coerce(f.name, raw, getattr(config, f.name)))

    for name, value in overrides.items():
        if value is None:
            continue
        if not hasattr(config, name):
            raise ConfigurationError(f"Unknown configuration option: {name}")
        setattr(config, name, value)

    if config.cache_ttl_seconds <= 0:
        raise ConfigurationError("cache_ttl_seconds must be positive")
    if config.memory_context_length < 1:
        raise ConfigurationError("memory_context_length must be at least 1")
    config.db_path = Path(config.db_path)

    return config
