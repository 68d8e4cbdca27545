"""
Configuration settings with environment variable loading.

Values come from environment variables (optionally seeded from a .env
file) and are then overridden by command line flags. The resulting
Settings object is immutable and passed explicitly into the sync engine.
"""

import importlib.util
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


DEFAULT_COLLECTION = "apple_ii_library_4am"
DEFAULT_ROWS = 30000
MIN_ROWS = 1
MAX_ROWS = 100000
MAX_COLLECTION_LENGTH = 100

DEFAULT_FTP_HOST = "ftp.apple.asimov.net"
DEFAULT_FTP_DIR = "/pub/apple_II"

SOURCES = ("archive", "ftp")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_COLLECTION_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


class ValidationError(ConfigurationError):
    """Raised when a target identifier or row count is rejected."""
    pass


class DependencyMissing(ConfigurationError):
    """Raised when a module the transports need is not available."""
    pass


@dataclass(frozen=True)
class ArchiveConfig:
    """Internet Archive endpoint configuration."""
    base_url: str = "https://archive.org"
    connect_timeout: float = 30.0
    catalog_max_duration: float = 300.0
    transfer_max_duration: float = 1800.0

    def __post_init__(self):
        if not self.base_url:
            raise ConfigurationError("ARCHIVE_BASE_URL is required")
        if not self.base_url.startswith(("https://", "http://")):
            raise ConfigurationError("ARCHIVE_BASE_URL must be an http(s) URL")


@dataclass(frozen=True)
class FTPConfig:
    """FTP server configuration."""
    host: str = DEFAULT_FTP_HOST
    port: int = 21
    default_dir: str = DEFAULT_FTP_DIR
    use_tls: bool = False
    connect_timeout: float = 30.0
    catalog_max_duration: float = 300.0
    transfer_max_duration: float = 1800.0

    def __post_init__(self):
        if not self.host:
            raise ConfigurationError("FTP_HOST is required")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"FTP_PORT out of range: {self.port}")


@dataclass(frozen=True)
class SyncConfig:
    """
    Immutable run configuration for the sync engine.

    Attributes:
        source: Remote source kind ("archive" or "ftp")
        root_dir: Directory holding one working directory per target
        rows: Maximum number of catalog items per target
        dry_run: Plan and report without transferring or recording
        delete: Remove local items that are no longer in the catalog
        max_retries: Catalog fetch attempts for transient failures
        retry_delay_seconds: Fixed delay between catalog attempts
    """
    source: str = "archive"
    root_dir: Path = field(default_factory=Path.cwd)
    rows: int = DEFAULT_ROWS
    dry_run: bool = False
    delete: bool = False
    max_retries: int = 3
    retry_delay_seconds: float = 2.0

    def __post_init__(self):
        if self.source not in SOURCES:
            raise ConfigurationError(
                f"SYNC_SOURCE must be one of {', '.join(SOURCES)}, got '{self.source}'"
            )
        if self.max_retries < 1:
            raise ConfigurationError("SYNC_MAX_RETRIES must be at least 1")
        object.__setattr__(self, "root_dir", Path(self.root_dir))


@dataclass(frozen=True)
class Settings:
    """
    Application settings container.

    Loaded from environment variables, then refined by CLI flags
    via dataclasses.replace.
    """
    archive: ArchiveConfig
    ftp: FTPConfig
    sync: SyncConfig
    log_level: str = "INFO"

    def __post_init__(self):
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(
                f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got '{self.log_level}'"
            )

    def __repr__(self) -> str:
        return (
            f"Settings(\n"
            f"  archive={self.archive},\n"
            f"  ftp={self.ftp},\n"
            f"  sync={self.sync}\n"
            f")"
        )


def validate_rows(rows: int | str) -> int:
    """
    Validate a catalog row limit.

    Returns:
        The row limit as an integer

    Raises:
        ValidationError: If rows is not an integer of at least MIN_ROWS
    """
    text = str(rows).strip()
    if not text.isdigit():
        raise ValidationError(f"Invalid rows parameter: '{rows}' (must be a number)")

    value = int(text)
    if value < MIN_ROWS:
        raise ValidationError(f"Rows must be at least {MIN_ROWS} (got: {value})")

    if value > MAX_ROWS:
        logger.warning(
            f"Rows value {value} exceeds recommended maximum of {MAX_ROWS}; "
            f"this may result in very long processing times"
        )

    return value


def validate_target(source: str, target: str) -> str:
    """
    Validate a collection identifier or FTP directory.

    Raises:
        ValidationError: If the target cannot be used safely
    """
    if source == "archive":
        if not _COLLECTION_PATTERN.match(target):
            raise ValidationError(
                f"Invalid collection identifier: '{target}' "
                f"(only alphanumerics, underscores, hyphens and dots are allowed)"
            )
        if len(target) > MAX_COLLECTION_LENGTH:
            raise ValidationError(
                f"Collection identifier too long: {len(target)} characters "
                f"(max: {MAX_COLLECTION_LENGTH})"
            )
        return target

    if not target.startswith("/"):
        raise ValidationError(f"FTP directory must be an absolute path: '{target}'")
    if any(ord(ch) < 32 for ch in target):
        raise ValidationError(f"FTP directory contains control characters: {target!r}")
    if ".." in target.split("/"):
        raise ValidationError(f"FTP directory must not contain '..': '{target}'")
    return target


def check_dependencies(settings: Settings) -> None:
    """
    Verify the interpreter provides what the selected transport needs.

    ssl is optional when CPython is built, so it is the one module that
    can be missing from an otherwise working interpreter. It is needed
    for HTTPS archive endpoints and for FTPS. requests and urllib3 are
    declared package dependencies and fail at import time instead.

    Raises:
        DependencyMissing: If a required module is absent
    """
    logger.debug("Checking dependencies...")

    if settings.sync.source == "ftp":
        needs_tls = settings.ftp.use_tls
        purpose = "FTPS (FTP_USE_TLS)"
    else:
        needs_tls = settings.archive.base_url.startswith("https://")
        purpose = f"HTTPS ({settings.archive.base_url})"

    if needs_tls and importlib.util.find_spec("ssl") is None:
        raise DependencyMissing(
            f"Missing required module ssl for {purpose} "
            f"(rebuild Python with OpenSSL support)"
        )
    logger.debug("Dependencies check passed")


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Load settings from environment variables.

    Optionally loads from a .env file first.

    Args:
        env_file: Optional path to .env file

    Returns:
        Configured Settings instance

    Raises:
        ConfigurationError: If configuration is missing or invalid
    """
    if env_file and env_file.exists():
        _load_env_file(env_file)
    elif Path(".env").exists():
        _load_env_file(Path(".env"))

    try:
        archive = ArchiveConfig(
            base_url=os.getenv("ARCHIVE_BASE_URL", "https://archive.org").rstrip("/"),
        )

        ftp = FTPConfig(
            host=os.getenv("FTP_HOST", DEFAULT_FTP_HOST),
            port=int(os.getenv("FTP_PORT", "21")),
            default_dir=os.getenv("FTP_DIR", DEFAULT_FTP_DIR),
            use_tls=os.getenv("FTP_USE_TLS", "false").lower() == "true",
        )

        root_dir = os.getenv("SYNC_ROOT_DIR", "")
        sync = SyncConfig(
            source=os.getenv("SYNC_SOURCE", "archive").lower(),
            root_dir=Path(root_dir) if root_dir else Path.cwd(),
            rows=validate_rows(os.getenv("SYNC_ROWS", str(DEFAULT_ROWS))),
            dry_run=os.getenv("SYNC_DRY_RUN", "false").lower() == "true",
            delete=os.getenv("SYNC_DELETE", "false").lower() == "true",
            max_retries=int(os.getenv("SYNC_MAX_RETRIES", "3")),
            retry_delay_seconds=float(os.getenv("SYNC_RETRY_DELAY", "2.0")),
        )

        settings = Settings(
            archive=archive,
            ftp=ftp,
            sync=sync,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

        logger.debug(f"Settings: {settings}")
        return settings

    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e


def _load_env_file(path: Path) -> None:
    """
    Load environment variables from a file.

    Handles KEY=value, quoted values, comments and empty lines.
    Variables already present in the environment win.
    """
    logger.debug(f"Loading environment from {path}")

    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()

            if not line or line.startswith("#"):
                continue

            if "=" not in line:
                logger.warning(f"Invalid line {line_num} in {path}: no '=' found")
                continue

            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()

            if value.startswith('"') and value.endswith('"'):
                value = value[1:-1]
            elif value.startswith("'") and value.endswith("'"):
                value = value[1:-1]

            if key not in os.environ:
                os.environ[key] = value
