"""
Configuration management for depgrok.

Settings come from, in increasing priority: built-in defaults, a JSON or TOML
config file, DEPGROK_* environment variables, and finally command-line flags
(applied by main.py).
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import toml
from rich.console import Console

console = Console(stderr=True)

ERROR_POLICIES = ("abort", "skip")
OUTPUT_FORMATS = ("console", "json")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
SECTIONS = ("search", "clone", "logging")


@dataclass
class SearchConfig:
    """Defaults for the search command."""

    depth: int = 1
    max_workers: Optional[int] = None
    on_error: str = "abort"
    exclude: List[str] = field(default_factory=list)
    include: List[str] = field(default_factory=list)
    output_format: str = "console"


@dataclass
class CloneConfig:
    """GitHub API and git settings for the clone command."""

    api_url: str = "https://api.github.com"
    user_agent: str = "depgrok/0.2.0"
    timeout_seconds: float = 30.0
    clone_depth: int = 1
    skip_existing: bool = True


@dataclass
class LoggingConfig:
    log_level: str = "WARNING"
    log_file: Optional[str] = None


@dataclass
class DepgrokConfig:
    search: SearchConfig = field(default_factory=SearchConfig)
    clone: CloneConfig = field(default_factory=CloneConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_global_config: Optional[DepgrokConfig] = None


def validate_config_values(config: DepgrokConfig) -> List[str]:
    """
    Check a merged configuration.

    Returns:
        List[str]: one message per invalid setting, each prefixed with its
        section name (empty if valid)
    """
    search, clone = config.search, config.clone
    checks: List[Tuple[bool, str]] = [
        (search.depth >= 1, "search.depth must be at least 1"),
        (search.max_workers is None or search.max_workers >= 1, "search.max_workers must be positive"),
        (search.on_error in ERROR_POLICIES, f"search.on_error must be one of {', '.join(ERROR_POLICIES)}"),
        (not (search.include and search.exclude), "search.include and search.exclude cannot both be set"),
        (search.output_format in OUTPUT_FORMATS, f"search.output_format must be one of {', '.join(OUTPUT_FORMATS)}"),
        (clone.timeout_seconds > 0, "clone.timeout_seconds must be positive"),
        (clone.clone_depth >= 1, "clone.clone_depth must be at least 1"),
        (config.logging.log_level.upper() in LOG_LEVELS, f"logging.log_level must be one of {', '.join(LOG_LEVELS)}"),
    ]
    return [message for ok, message in checks if not ok]


def read_config_file(path: Path) -> Dict[str, Any]:
    """Parse a .toml or .json config file; unreadable files count as empty."""
    parsers: Dict[str, Callable[[Any], Dict[str, Any]]] = {".toml": toml.load, ".json": json.load}
    parser = parsers.get(path.suffix.lower())
    if parser is None or not path.is_file():
        return {}

    try:
        with path.open(encoding="utf-8") as fh:
            data = parser(fh)
    except (OSError, ValueError, toml.TomlDecodeError) as e:
        console.print(f"⚠️  Ignoring config file {path}: {e}", style="yellow")
        return {}
    return data if isinstance(data, dict) else {}


def config_search_paths() -> List[Path]:
    """Project-level files first, then the user's config directory."""
    user_dir = Path.home() / ".config" / "depgrok"
    return [
        Path.cwd() / ".depgrok.json",
        Path.cwd() / ".depgrok.toml",
        user_dir / "config.json",
        user_dir / "config.toml",
    ]


def find_config_file() -> Optional[Path]:
    return next((path for path in config_search_paths() if path.is_file()), None)


def merge_section(section: Any, values: Dict[str, Any], section_name: str) -> None:
    """Copy known keys from ``values`` onto a config section, warning about the rest."""
    known = {f.name for f in fields(section)}
    for key, value in values.items():
        if key not in known:
            console.print(f"⚠️  Unknown setting {section_name}.{key} ignored", style="yellow")
            continue
        setattr(section, key, value)


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# (variable, section, key, converter)
ENVIRONMENT_OVERRIDES: List[Tuple[str, str, str, Callable[[str], Any]]] = [
    ("DEPGROK_DEPTH", "search", "depth", int),
    ("DEPGROK_MAX_WORKERS", "search", "max_workers", int),
    ("DEPGROK_ON_ERROR", "search", "on_error", str.lower),
    ("DEPGROK_EXCLUDE", "search", "exclude", _split_list),
    ("DEPGROK_INCLUDE", "search", "include", _split_list),
    ("DEPGROK_GITHUB_API_URL", "clone", "api_url", lambda value: value.rstrip("/")),
    ("DEPGROK_LOG_LEVEL", "logging", "log_level", str.upper),
    ("DEPGROK_LOG_FILE", "logging", "log_file", str),
]


def load_environment_overrides(config: DepgrokConfig) -> None:
    """Apply DEPGROK_* environment variables on top of ``config``."""
    for variable, section, key, convert in ENVIRONMENT_OVERRIDES:
        raw = os.environ.get(variable)
        if not raw:
            continue
        try:
            setattr(getattr(config, section), key, convert(raw))
        except ValueError:
            console.print(f"⚠️  Ignoring {variable}={raw!r}: not a valid value", style="yellow")


def load_config(config_path: Optional[Path] = None) -> DepgrokConfig:
    """
    Build the effective configuration.

    Without an explicit ``config_path`` the result is cached and reused until
    reset_config() is called. Sections holding invalid values fall back to
    their defaults, with a warning.
    """
    global _global_config

    if config_path is None and _global_config is not None:
        return _global_config

    config = DepgrokConfig()
    source = config_path or find_config_file()
    if source is not None:
        file_values = read_config_file(source)
        for section in SECTIONS:
            if isinstance(file_values.get(section), dict):
                merge_section(getattr(config, section), file_values[section], section)

    load_environment_overrides(config)

    problems = validate_config_values(config)
    if problems:
        console.print("⚠️  Invalid configuration, using defaults for:", style="red")
        defaults = DepgrokConfig()
        for section in SECTIONS:
            section_problems = [p for p in problems if p.startswith(f"{section}.")]
            for problem in section_problems:
                console.print(f"  • {problem}", style="red")
            if section_problems:
                setattr(config, section, getattr(defaults, section))

    _global_config = config
    return config


def get_config() -> DepgrokConfig:
    return _global_config if _global_config is not None else load_config()


def reset_config() -> None:
    """Forget the cached configuration."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Sample .depgrok.toml contents."""
    sample = DepgrokConfig(
        search=SearchConfig(depth=2, exclude=["*.md", "*.lock"]),
    )
    data = sample.to_dict()
    # TOML has no null; leave unset optional values out
    for section in data.values():
        for key in [k for k, v in section.items() if v is None or v == []]:
            del section[key]
    return toml.dumps(data)
