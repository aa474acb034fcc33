"""
Configuration management for asm-inspector.

Settings come from defaults, an optional JSON/YAML config file and
ASM_INSPECTOR_* environment variables, in increasing priority. Command-line
flags are applied on top by the CLI.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from rich.console import Console

from .error_handling import ErrorCategory, get_error_handler
from .models import DEFAULT_SYSTEM_PREFIXES, ResolveOptions
from .structured_logging import DEFAULT_LOG_FORMAT

console = Console(stderr=True)

VALID_OUTPUT_FORMATS = ("console", "json")
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class AnalysisConfig:
    """Which groups are reported and what is emitted."""

    include_non_conflicting: bool = False
    exclude_system_named: bool = False
    emit_redirects: bool = False
    system_prefixes: List[str] = field(
        default_factory=lambda: list(DEFAULT_SYSTEM_PREFIXES)
    )
    fail_on_conflict: bool = False
    output_format: str = "console"
    output_file: Optional[str] = None
    quiet: bool = False
    verbose: bool = False

    def to_resolve_options(self) -> ResolveOptions:
        return ResolveOptions(
            include_non_conflicting=self.include_non_conflicting,
            exclude_system_named=self.exclude_system_named,
            emit_redirects=self.emit_redirects,
            system_prefixes=tuple(self.system_prefixes),
        )


@dataclass
class ReaderConfig:
    """Module file discovery settings."""

    module_extensions: List[str] = field(default_factory=lambda: [".dll", ".exe"])
    bin_directory_name: str = "bin"
    max_file_size_mb: int = 512

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


@dataclass
class LoggingConfig:
    """Logging configuration."""

    log_level: str = "WARNING"
    log_format: str = DEFAULT_LOG_FORMAT
    enable_json: bool = True


@dataclass
class ComprehensiveConfig:
    """Main configuration containing all subsections."""

    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    reader: ReaderConfig = field(default_factory=ReaderConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Global configuration instance
_global_config: Optional[ComprehensiveConfig] = None


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) and item for item in value)


def validate_config_values(config: ComprehensiveConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []
    analysis = config.analysis
    reader = config.reader

    if analysis.output_format not in VALID_OUTPUT_FORMATS:
        errors.append(
            f"analysis.output_format must be one of {', '.join(VALID_OUTPUT_FORMATS)}"
        )
    if analysis.output_file and analysis.output_format != "json":
        errors.append("analysis.output_file can only be used with the json format")
    if not _is_string_list(analysis.system_prefixes):
        errors.append("analysis.system_prefixes must be a list of non-empty strings")

    if not _is_string_list(reader.module_extensions) or not reader.module_extensions:
        errors.append("reader.module_extensions must be a non-empty list of strings")
    elif any(not ext.startswith(".") for ext in reader.module_extensions):
        errors.append("reader.module_extensions entries must start with '.'")
    if not isinstance(reader.bin_directory_name, str) or not reader.bin_directory_name:
        errors.append("reader.bin_directory_name must be a non-empty string")
    if (
        not isinstance(reader.max_file_size_mb, int)
        or isinstance(reader.max_file_size_mb, bool)
        or reader.max_file_size_mb <= 0
    ):
        errors.append("reader.max_file_size_mb must be a positive integer")

    log_level = config.logging.log_level
    if not isinstance(log_level, str) or log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(f"logging.log_level must be one of {', '.join(VALID_LOG_LEVELS)}")
    if not isinstance(config.logging.log_format, str) or not config.logging.log_format:
        errors.append("logging.log_format must be a non-empty string")
    if not isinstance(config.logging.enable_json, bool):
        errors.append("logging.enable_json must be true or false")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from a JSON or YAML file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() in [".yaml", ".yml"]:
                return yaml.safe_load(f)
            elif config_path.suffix.lower() == ".json":
                return json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        get_error_handler().warning(
            ErrorCategory.CONFIGURATION,
            f"Error loading config from {config_path}: {e}",
            "cli_config",
            "load_config_file",
            exception=e,
        )
        console.print(
            f"⚠️  Error loading config from {config_path}: {e}", style="yellow"
        )

    return None


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / ".asm-inspector.json",
        Path.cwd() / ".asm-inspector.yaml",
        Path.cwd() / ".asm-inspector.yml",
        Path.home() / ".config" / "asm-inspector" / "config.json",
        Path.home() / ".config" / "asm-inspector" / "config.yaml",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: ComprehensiveConfig) -> None:
    """Apply ASM_INSPECTOR_* environment variables."""

    def get_env_bool(key: str, default: bool = False) -> bool:
        value = os.environ.get(key, "").lower()
        return value in ["true", "1", "yes", "on"] if value else default

    def get_env_int(key: str, default: Optional[int] = None) -> Optional[int]:
        try:
            return int(os.environ[key]) if key in os.environ else default
        except ValueError:
            console.print(f"⚠️  Invalid integer value for {key}, using default", style="yellow")
            return default

    analysis = config.analysis
    analysis.include_non_conflicting = get_env_bool(
        "ASM_INSPECTOR_ALL", analysis.include_non_conflicting
    )
    analysis.exclude_system_named = get_env_bool(
        "ASM_INSPECTOR_NON_SYSTEM", analysis.exclude_system_named
    )
    analysis.emit_redirects = get_env_bool(
        "ASM_INSPECTOR_BINDING_REDIRECTS", analysis.emit_redirects
    )
    analysis.fail_on_conflict = get_env_bool(
        "ASM_INSPECTOR_FAIL_ON_CONFLICT", analysis.fail_on_conflict
    )
    if prefixes := os.environ.get("ASM_INSPECTOR_SYSTEM_PREFIXES"):
        analysis.system_prefixes = [p.strip() for p in prefixes.split(",") if p.strip()]
    if output_format := os.environ.get("ASM_INSPECTOR_OUTPUT_FORMAT"):
        analysis.output_format = output_format.lower()

    if max_file_size := get_env_int("ASM_INSPECTOR_MAX_FILE_SIZE_MB"):
        config.reader.max_file_size_mb = max_file_size
    if bin_name := os.environ.get("ASM_INSPECTOR_BIN_DIRECTORY"):
        config.reader.bin_directory_name = bin_name

    if log_level := os.environ.get("ASM_INSPECTOR_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()


def apply_config_section(
    config: Any, section_data: Dict[str, Any], section_name: str
) -> None:
    """Apply configuration from dictionary to config section."""
    for key, value in section_data.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            console.print(
                f"⚠️  Unknown config key in {section_name}: {key}", style="yellow"
            )


def apply_config_data(config: ComprehensiveConfig, file_config: Dict[str, Any]) -> None:
    """Apply every known section of a loaded config document."""
    for section_name in ("analysis", "reader", "logging"):
        if isinstance(file_config.get(section_name), dict):
            apply_config_section(
                getattr(config, section_name), file_config[section_name], section_name
            )


def load_config(config_path: Optional[Path] = None) -> ComprehensiveConfig:
    """Load configuration from file and environment."""
    global _global_config

    if _global_config is not None and config_path is None:
        return _global_config

    config = ComprehensiveConfig()

    config_file = config_path or find_config_file()
    if config_file:
        file_config = load_config_file(config_file)
        if isinstance(file_config, dict):
            apply_config_data(config, file_config)

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")
        console.print("Using default values for invalid settings.", style="yellow")
        _restore_invalid_defaults(config, validation_errors)

    _global_config = config
    return config


def _restore_invalid_defaults(config: ComprehensiveConfig, errors: List[str]) -> None:
    """Reset every section named in a validation error to its defaults."""
    defaults = ComprehensiveConfig()
    for error in errors:
        section_name = error.split(".", 1)[0]
        if hasattr(defaults, section_name):
            setattr(config, section_name, getattr(defaults, section_name))


def get_config() -> ComprehensiveConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate a sample configuration document."""
    return json.dumps(ComprehensiveConfig().to_dict(), indent=2)


def set_config(config: ComprehensiveConfig) -> None:
    """Replace the global configuration, e.g. after applying CLI flags."""
    global _global_config
    _global_config = config
