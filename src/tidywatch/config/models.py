"""Configuration models describing tidywatch settings."""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CATEGORIES: Dict[str, List[str]] = {
    "Documents": ["pdf", "doc", "docx", "txt", "rtf", "odt", "xls", "xlsx", "ppt", "pptx"],
    "Images": ["jpg", "jpeg", "png", "gif", "bmp", "webp", "svg"],
    "Videos": ["mp4", "avi", "mov", "wmv", "mkv", "webm"],
    "Music": ["mp3", "wav", "flac", "ogg", "aac"],
    "Archives": ["zip", "rar", "7z", "tar", "gz"],
    "Code": ["js", "ts", "html", "css", "rs", "py", "java", "cpp", "c", "h"],
}


class TidyBaseModel(BaseModel):
    """Shared configuration for tidywatch Pydantic settings models."""

    model_config = ConfigDict(extra="forbid")


class StoreSettings(TidyBaseModel):
    """Metadata store options.

    Attributes:
        path: Location of the SQLite database file.
        busy_timeout_seconds: How long SQLite waits on a locked database.
        write_retry_attempts: Attempts made when committing a record after a move.
        write_retry_delay_seconds: Delay between commit attempts.
        recovery_probe_seconds: Interval between availability probes while the
            store is unreachable.
        seed_defaults: Whether default tags and rules are created on first use.
    """

    path: str = "~/.tidywatch/tidywatch.db"
    busy_timeout_seconds: float = 5.0
    write_retry_attempts: int = Field(default=3, ge=1)
    write_retry_delay_seconds: float = Field(default=0.2, ge=0)
    recovery_probe_seconds: float = Field(default=5.0, gt=0)
    seed_defaults: bool = True


class WatchSettings(TidyBaseModel):
    """Folder watcher options.

    Attributes:
        debounce_seconds: Window used to coalesce bursts of notifications.
        recursive: Whether subdirectories of a watched root are monitored.
        include_hidden: Whether dot-files produce events.
        ignore_patterns: Glob patterns for temporary files that never produce events.
        queue_size: Capacity of the raw notification buffer per session.
        health_check_seconds: Interval between subscription liveness checks.
        scan_on_start: Whether existing files are organized when a session starts.
    """

    debounce_seconds: float = Field(default=0.5, gt=0)
    recursive: bool = False
    include_hidden: bool = False
    ignore_patterns: List[str] = Field(
        default_factory=lambda: ["*.tmp", "*.part", "*.partial", "*.crdownload", "*.swp", "~$*"]
    )
    queue_size: int = Field(default=1024, ge=1)
    health_check_seconds: float = Field(default=1.0, gt=0)
    scan_on_start: bool = False


class OrganizationOptions(TidyBaseModel):
    """Settings that govern rule resolution and relocation.

    Attributes:
        destination_root: Base folder for relative rule destinations. When unset,
            the watched root (or the submitted file's folder) is used.
        fallback_enabled: Whether unmatched files go to their category bucket.
        fallback_template: Destination template of the catch-all fallback rule.
        categories: Mapping of category names to the extensions they cover.
        default_category: Category assigned to unknown extensions.
        auto_tag_categories: Whether organized files receive their category tag.
        max_workers: Number of concurrent organization operations.
        max_disambiguation: Upper bound on ``name (n).ext`` attempts.
        buffered_events_limit: Watch events held while the store is unavailable.
        queue_size: Capacity of the coordinator inbound event queue.
    """

    destination_root: Optional[str] = None
    fallback_enabled: bool = True
    fallback_template: str = "{category}"
    categories: Dict[str, List[str]] = Field(
        default_factory=lambda: {name: list(exts) for name, exts in DEFAULT_CATEGORIES.items()}
    )
    default_category: str = "Other"
    auto_tag_categories: bool = True
    max_workers: int = Field(default=4, ge=1)
    max_disambiguation: int = Field(default=10_000, ge=1)
    buffered_events_limit: int = Field(default=1000, ge=1)
    queue_size: int = Field(default=1024, ge=1)


class BackupSettings(TidyBaseModel):
    """Remote backup options.

    Attributes:
        enabled: Whether the backup worker runs alongside the engine.
        backend: Remote store implementation.
        bucket: Target S3 bucket.
        prefix: Key prefix under which ``{file_id}`` objects are written.
        region: Optional AWS region override.
        endpoint_url: Optional S3-compatible endpoint.
        directory: Target folder for the directory backend.
        max_attempts: Failed attempts before a task becomes terminal.
        base_delay_seconds: First retry delay; doubled for every further attempt.
        max_delay_seconds: Upper bound on the retry delay.
        poll_seconds: Idle wait of the worker between queue checks.
    """

    enabled: bool = False
    backend: Literal["s3", "directory"] = "s3"
    bucket: Optional[str] = None
    prefix: str = ""
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    directory: Optional[str] = None
    max_attempts: int = Field(default=5, ge=1)
    base_delay_seconds: float = Field(default=5.0, ge=0)
    max_delay_seconds: float = Field(default=300.0, ge=0)
    poll_seconds: float = Field(default=1.0, gt=0)


class EventSettings(TidyBaseModel):
    """Outbound event channel options.

    Attributes:
        queue_size: Capacity of each subscriber queue.
    """

    queue_size: int = Field(default=256, ge=1)


class LoggingSettings(TidyBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        path: Log file location.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "WARNING"
    path: str = "~/.tidywatch/logs/tidywatch.log"
    max_size_mb: int = 100
    backup_count: int = 5


class CLIOptions(TidyBaseModel):
    """CLI behavior defaults and presentation preferences.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        summary_default: Whether commands only print summary lines by default.
    """

    quiet_default: bool = False
    summary_default: bool = False


class TidyConfig(TidyBaseModel):
    """Top-level configuration struct for tidywatch.

    Attributes:
        store: Metadata store settings.
        watch: Folder watcher settings.
        organization: Rule resolution and relocation settings.
        backup: Remote backup settings.
        events: Outbound event channel settings.
        logging: Logging configuration.
        cli: CLI presentation defaults.
    """

    store: StoreSettings = Field(default_factory=StoreSettings)
    watch: WatchSettings = Field(default_factory=WatchSettings)
    organization: OrganizationOptions = Field(default_factory=OrganizationOptions)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    events: EventSettings = Field(default_factory=EventSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "DEFAULT_CATEGORIES",
    "TidyBaseModel",
    "StoreSettings",
    "WatchSettings",
    "OrganizationOptions",
    "BackupSettings",
    "EventSettings",
    "LoggingSettings",
    "CLIOptions",
    "TidyConfig",
]
