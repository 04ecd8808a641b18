"""Configuration settings for limeos_imagegen.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the LIMEOS_IMG_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIMEOS_IMG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    build_dir: Path = Field(
        default=Path("build"),
        description="Working directory for intermediate build trees",
    )
    output_dir: Path = Field(
        default=Path("."),
        description="Directory the finished ISO is written to",
    )
    cache_dir: Path | None = Field(
        default=None,
        description="Cache root (defaults to $XDG_CACHE_HOME/limeos or ~/.cache/limeos)",
    )
    local_bin_dir: Path = Field(
        default=Path("bin"),
        description="Directory searched for component binaries before downloading",
    )
    log_dir: Path | None = Field(
        default=None,
        description="Directory for the external command log (streams to console if not set)",
    )

    # Release host
    github_org: str = Field(default="limeos-org")
    api_base: str = Field(default="https://api.github.com/repos")
    api_version: str = Field(default="2022-11-28")
    download_base: str = Field(default="https://github.com")
    user_agent: str = Field(default="limeos-iso-builder/1.0")
    checksums_filename: str = Field(default="SHA256SUMS")

    # Image contents
    distribution: str = Field(
        default="bookworm",
        description="Debian release used for the base rootfs",
    )
    cache_version: int = Field(
        default=1,
        ge=1,
        description="Cache schema version; bump to invalidate cached rootfs tarballs",
    )
    iso_prefix: str = Field(default="limeos")
    splash_logo_path: Path = Field(default=Path("assets/splash.png"))
    background_path: Path = Field(
        default=Path("assets/black.png"),
        description="Background image for the isolinux boot menu",
    )
    isolinux_bin_path: Path = Field(default=Path("/usr/lib/ISOLINUX/isolinux.bin"))
    isolinux_mbr_path: Path = Field(default=Path("/usr/lib/ISOLINUX/isohdpfx.bin"))
    syslinux_modules_dir: Path = Field(
        default=Path("/usr/lib/syslinux/modules/bios")
    )
    grub_efi_path: Path = Field(
        default=Path("/usr/lib/grub/x86_64-efi/monolithic/grubx64.efi")
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    request_timeout: int = Field(
        default=30,
        ge=1,
        description="Timeout for release metadata and checksum requests",
    )
    download_timeout: int = Field(
        default=600,
        ge=60,
        description="Timeout for component binary downloads",
    )


@dataclass(frozen=True)
class BuildConfig:
    """Immutable per-run build settings.

    Attributes:
        version: Requested LimeOS version (e.g. '1.2.0' or 'v1.2.0').
        use_cache: Whether cache lookups and saves are enabled.
        distribution: Base distribution identifier (Debian release).
        cache_version: Cache schema version.
    """

    version: str
    use_cache: bool = True
    distribution: str = "bookworm"
    cache_version: int = 1

    @classmethod
    def from_settings(
        cls, settings: Settings, version: str, use_cache: bool = True
    ) -> "BuildConfig":
        """Create a BuildConfig from settings and CLI arguments."""
        return cls(
            version=version,
            use_cache=use_cache,
            distribution=settings.distribution,
            cache_version=settings.cache_version,
        )


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["BuildConfig", "Settings", "get_settings", "print_settings_json"]
