"""
Client configuration.

Values can be passed explicitly or read from PEXSDK_* environment variables
with ClientConfig.from_env().
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_BASE_URL = "https://api.pex.com"


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    if value.strip().lower() in ("none", "off"):
        return None
    return float(value)


class ClientConfig(BaseModel):
    """Connection and protocol settings shared by every client variant."""
    base_url: str = Field(default=DEFAULT_BASE_URL, description="Service root URL")
    client_id: str = Field(default="", description="Client ID issued by the service")
    client_secret: str = Field(default="", description="Client secret issued by the service")
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for a single HTTP round trip"
    )
    poll_interval: float = Field(
        default=1.0,
        ge=0,
        description="Seconds between checks while a search is pending"
    )
    lookup_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Client-side deadline for SearchFuture.get (None = wait forever)"
    )
    stream_wait: float = Field(
        default=20.0,
        gt=0,
        description="Long-poll window in seconds for stream events"
    )
    use_mock: bool = Field(
        default=False,
        description="Talk to an in-process mock backend instead of the service"
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @classmethod
    def from_env(cls, **overrides) -> "ClientConfig":
        """
        Build a configuration from environment variables.

        Recognized variables: PEXSDK_BASE_URL, PEXSDK_CLIENT_ID,
        PEXSDK_CLIENT_SECRET, PEXSDK_REQUEST_TIMEOUT, PEXSDK_POLL_INTERVAL,
        PEXSDK_LOOKUP_TIMEOUT, PEXSDK_STREAM_WAIT, PEXSDK_USE_MOCK.
        Keyword overrides win over the environment.
        """
        values = {
            "base_url": os.getenv("PEXSDK_BASE_URL", DEFAULT_BASE_URL),
            "client_id": os.getenv("PEXSDK_CLIENT_ID", ""),
            "client_secret": os.getenv("PEXSDK_CLIENT_SECRET", ""),
            "request_timeout": _env_float("PEXSDK_REQUEST_TIMEOUT", 30.0),
            "poll_interval": _env_float("PEXSDK_POLL_INTERVAL", 1.0),
            "lookup_timeout": _env_float("PEXSDK_LOOKUP_TIMEOUT", None),
            "stream_wait": _env_float("PEXSDK_STREAM_WAIT", 20.0),
            "use_mock": os.getenv("PEXSDK_USE_MOCK", "false").lower() == "true",
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
