"""Error definitions shared across limeos_imagegen.

Every error raised by the package carries a stable ``code`` string so the CLI
and the pipeline report can surface failures without parsing messages.
"""

# Error code constants
COMMAND_ERROR = "command_failed"
FILESYSTEM_ERROR = "filesystem_error"
DOWNLOAD_ERROR = "download_error"
VERIFICATION_ERROR = "verification_error"
RELEASE_FETCH_ERROR = "release_fetch_error"
NO_MATCHING_VERSION = "no_matching_version"
INVALID_VERSION_FORMAT = "invalid_version_format"
CACHE_DIR_ERROR = "cache_dir_unavailable"
DEPENDENCY_ERROR = "missing_dependency"
STAGE_ERROR = "stage_failed"
PIPELINE_DEFINITION_ERROR = "pipeline_definition"


class ImagegenError(Exception):
    """Base error for limeos_imagegen operations."""

    def __init__(self, message: str, code: str = "imagegen_error") -> None:
        super().__init__(message)
        self.code = code


class CacheDirectoryError(ImagegenError):
    """Raised when no cache root can be determined from the environment."""

    def __init__(
        self,
        message: str = "Cannot determine cache directory: HOME not set",
        code: str = CACHE_DIR_ERROR,
    ) -> None:
        super().__init__(message, code)


class DependencyError(ImagegenError):
    """Raised when required host tools or files are missing."""

    def __init__(self, missing: list[str], code: str = DEPENDENCY_ERROR) -> None:
        super().__init__(f"Missing host dependencies: {', '.join(missing)}", code)
        self.missing = missing


class StageError(ImagegenError):
    """Raised when a pipeline stage cannot complete."""

    def __init__(self, stage: str, message: str, code: str = STAGE_ERROR) -> None:
        super().__init__(f"[{stage}] {message}", code)
        self.stage = stage


class PipelineDefinitionError(ImagegenError):
    """Raised when a stage consumes an input no earlier stage produces."""

    def __init__(self, message: str, code: str = PIPELINE_DEFINITION_ERROR) -> None:
        super().__init__(message, code)


__all__ = [
    "CACHE_DIR_ERROR",
    "COMMAND_ERROR",
    "DEPENDENCY_ERROR",
    "DOWNLOAD_ERROR",
    "FILESYSTEM_ERROR",
    "INVALID_VERSION_FORMAT",
    "NO_MATCHING_VERSION",
    "PIPELINE_DEFINITION_ERROR",
    "RELEASE_FETCH_ERROR",
    "STAGE_ERROR",
    "VERIFICATION_ERROR",
    "CacheDirectoryError",
    "DependencyError",
    "ImagegenError",
    "PipelineDefinitionError",
    "StageError",
]
