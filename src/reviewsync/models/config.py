"""Configuration models for Reviewsync."""

from pydantic import BaseModel, Field, HttpUrl
from pathlib import Path
from typing import Any, Dict
import yaml
import os
import stat


DEFAULT_CONFIG_PATH = Path.home() / ".config" / "reviewsync" / "config.yaml"


class ServerConfig(BaseModel):
    """Configuration for the reverse proxy in front of the OData service."""

    base_url: HttpUrl = Field(
        ...,
        description="Base URL of the app router that fronts the OData service"
    )

    odata_path: str = Field(
        default="SuccessFactors_API/odata/v2",
        description="Path of the OData v2 service relative to base_url"
    )

    token_path: str = Field(
        default="user-api/currentUser",
        description="Lightweight endpoint that issues the CSRF token"
    )

    user_lookup_path: str = Field(
        default="api/projman/SFSF_User",
        description="Backend endpoint mapping the session user to a review userId"
    )

    verify_tls: bool = Field(
        default=True,
        description="Verify TLS certificates"
    )

    cookies: Dict[str, str] = Field(
        default_factory=dict,
        description="Session cookies issued by the hosting environment"
    )

    model_config = {"frozen": True}


class SessionConfig(BaseModel):
    """Timeouts for the session transport."""

    connect_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Connection timeout in seconds"
    )

    read_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Read timeout in seconds (composite 360 reads are slow)"
    )

    token_wait_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound in seconds to wait for an in-flight token fetch"
    )

    model_config = {"frozen": True}


class Config(BaseModel):
    """Root configuration for Reviewsync."""

    server: ServerConfig = Field(..., description="Backend connection settings")
    session: SessionConfig = Field(default_factory=SessionConfig, description="Transport settings")

    @classmethod
    def load(cls, path: Path = DEFAULT_CONFIG_PATH) -> "Config":
        """
        Load configuration from YAML file with environment variable overrides.

        Validates file permissions before loading, since the file may hold
        session cookies. Raises PermissionError if it is group/world readable.

        Environment Variables:
            REVIEWSYNC_BASE_URL: Override server.base_url
            REVIEWSYNC_ODATA_PATH: Override server.odata_path
            REVIEWSYNC_VERIFY_TLS: Override server.verify_tls ("0"/"false" disables)

        Args:
            path: Path to config.yaml file

        Returns:
            Validated Config instance

        Raises:
            PermissionError: If file permissions are too open
            FileNotFoundError: If neither the file nor overrides are present
            ValueError: If YAML is invalid or validation fails
        """
        data: Dict[str, Any] = {}

        if path.exists():
            mode = os.stat(path).st_mode
            if mode & (stat.S_IRWXG | stat.S_IRWXO):
                raise PermissionError(
                    f"Config file has overly permissive permissions: {oct(mode)}\n"
                    f"Run: chmod 600 {path}"
                )

            with open(path) as f:
                data = yaml.safe_load(f) or {}

        data = _apply_env_overrides(data)

        if not data.get("server"):
            raise FileNotFoundError(
                f"Configuration file not found at {path}\n\n"
                f"Please create the file with the following format:\n\n"
                f"server:\n"
                f"  base_url: https://approuter.example.com/\n"
                f"  cookies:\n"
                f"    JSESSIONID: YOUR_SESSION_COOKIE\n\n"
                f"session:\n"
                f"  read_timeout: 60\n"
            )

        return cls(**data)

    model_config = {"frozen": True}


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply REVIEWSYNC_* environment variables on top of YAML data."""
    server = dict(data.get("server") or {})

    if env_base_url := os.getenv("REVIEWSYNC_BASE_URL"):
        server["base_url"] = env_base_url

    if env_odata_path := os.getenv("REVIEWSYNC_ODATA_PATH"):
        server["odata_path"] = env_odata_path

    if env_verify := os.getenv("REVIEWSYNC_VERIFY_TLS"):
        server["verify_tls"] = env_verify.strip().lower() not in ("0", "false", "no")

    if server:
        data = {**data, "server": server}
    return data
