"""
Centralized configuration management for the rendering engine.

Pydantic v2 settings management to enforce strict validation,
zero secret leakage, and fast-failure on invalid configuration.

Every value is environment-driven (prefix ``RENDERER_``) and read-only
at runtime. Settings never influence rendered bytes in
non-deterministic ways.
"""

from functools import lru_cache
from typing import Annotated, Optional

from pydantic import AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

SensitiveEnv = Annotated[
    Optional[SecretStr],
    Field(
        default=None,
        description="Sensitive credential, redacted from logs",
    ),
]

PositiveSeconds = Annotated[
    float,
    Field(gt=0, description="Duration in seconds"),
]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class EngineSettings(BaseSettings):
    """
    Engine settings parsed from the environment.

    Remote bridge credentials are optional at startup; the bridge
    refuses to submit jobs when they are missing.
    """

    # ---------------------------------------------------------------------
    # Field resolution
    # ---------------------------------------------------------------------

    list_separator: Annotated[
        str,
        Field(
            default=", ",
            description=(
                "Separator used when an array field must be flattened "
                "into a single text run"
            ),
        ),
    ]

    # ---------------------------------------------------------------------
    # Raster output
    # ---------------------------------------------------------------------

    default_raster_dpi: Annotated[
        int,
        Field(
            default=192,
            ge=36,
            le=600,
            description="Raster resolution used when a request omits one",
        ),
    ]

    max_raster_dpi: Annotated[
        int,
        Field(
            default=600,
            ge=72,
            le=1200,
            description="Upper bound on requested raster resolution",
        ),
    ]

    font_path: Annotated[
        Optional[str],
        Field(
            default=None,
            description=(
                "Optional TrueType font used as the default face for PDF and "
                "raster text. Helvetica and Pillow's bundled font are used when unset."
            ),
        ),
    ]

    bold_font_path: Annotated[
        Optional[str],
        Field(
            default=None,
            description="Optional TrueType font used as the default bold face",
        ),
    ]

    # ---------------------------------------------------------------------
    # Dynamic template sandbox
    # ---------------------------------------------------------------------

    sandbox_timeout_seconds: Annotated[
        float,
        Field(
            default=5.0,
            gt=0,
            le=120,
            description="Wall-clock budget for one template invocation",
        ),
    ]

    sandbox_max_nodes: Annotated[
        int,
        Field(
            default=20_000,
            ge=1,
            description="Maximum number of boxes a template may return",
        ),
    ]

    sandbox_grace_seconds: Annotated[
        float,
        Field(
            default=5.0,
            gt=0,
            le=60,
            description=(
                "Extra wall-clock time before the template worker process "
                "is killed outright"
            ),
        ),
    ]

    sandbox_memory_limit_mb: Annotated[
        int,
        Field(
            default=1024,
            ge=64,
            description="Address-space limit applied to the template worker process",
        ),
    ]

    compile_cache_size: Annotated[
        int,
        Field(
            default=256,
            ge=1,
            description="Number of compiled templates kept in memory",
        ),
    ]

    # ---------------------------------------------------------------------
    # Remote desktop-publishing service
    # ---------------------------------------------------------------------

    runscript_api_url: Annotated[
        AnyHttpUrl,
        Field(
            default="https://runscript.typefi.com/api/v2/job",
            description="Remote script execution endpoint (job collection)",
        ),
    ]

    runscript_api_key: SensitiveEnv
    runscript_api_secret: SensitiveEnv

    runscript_ids_version: Annotated[
        str,
        Field(
            default="2024",
            description="Desktop-publishing server version requested",
        ),
    ]

    http_timeout_seconds: PositiveSeconds = 60.0

    poll_interval_seconds: Annotated[
        float,
        Field(
            default=2.0,
            ge=0,
            description="Fixed delay between two job status queries",
        ),
    ]

    poll_max_attempts: Annotated[
        int,
        Field(
            default=60,
            ge=1,
            description="Attempt ceiling before a job is declared timed out",
        ),
    ]

    artifact_settle_seconds: Annotated[
        float,
        Field(
            default=3.0,
            ge=0,
            description=(
                "Delay between job completion and artifact retrieval; "
                "the remote service uploads outputs asynchronously"
            ),
        ),
    ]

    artifact_fetch_attempts: Annotated[
        int,
        Field(
            default=3,
            ge=1,
            le=10,
            description="Bounded attempts to download the output artifact",
        ),
    ]

    # ---------------------------------------------------------------------
    # Transient blob store
    # ---------------------------------------------------------------------

    s3_bucket: Annotated[
        Optional[str],
        Field(default=None, description="Bucket used for transient job I/O"),
    ]

    s3_region: Annotated[
        str,
        Field(default="us-east-1", description="Bucket region"),
    ]

    s3_key_prefix: Annotated[
        str,
        Field(
            default="runscript",
            pattern=r"^[a-zA-Z0-9._/-]{1,128}$",
            description="Key prefix for transient job objects",
        ),
    ]

    signed_url_ttl_seconds: Annotated[
        int,
        Field(
            default=3600,
            ge=60,
            le=7 * 24 * 3600,
            description="Lifetime of signed GET/PUT URLs",
        ),
    ]

    model_config = SettingsConfigDict(
        env_prefix="RENDERER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )


# -------------------------------------------------------------------------
# Settings Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """
    Process-wide settings provider.

    Tests construct ``EngineSettings`` directly instead of relying on
    the cached instance.
    """
    return EngineSettings()  # singleton within process
