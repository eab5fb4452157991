from __future__ import annotations

import json
import os
import uuid
from typing import Any, Dict, List, Optional

import dotenv
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_BASE_URL = "https://game.maj-soul.com/1/"


class ServiceConfig(BaseModel):
    """Remote configuration resolved once at startup."""

    model_config = ConfigDict(frozen=True)

    version: str
    # resource prefix the schema descriptor was served under, e.g. "v0.11.1.w"
    schema_version_tag: str
    message_schema: Dict[str, Any]
    discovery_endpoints: List[str] = Field(default_factory=list)

    @property
    def client_version(self) -> str:
        version = self.version
        if version.endswith(".w"):
            version = version[:-2]
        return f"web-{version}"


class Settings(BaseModel):
    addr: str = "127.0.0.1"
    port: int = 8080
    base_url: str = DEFAULT_BASE_URL
    gateway_url: Optional[str] = None
    transport: str = "websocket"
    call_timeout: float = 10.0
    login_type: int = 10
    access_token: str = ""
    login_extra: Dict[str, Any] = Field(default_factory=dict)
    schema_package: str = "lq"

    @classmethod
    def from_env(cls, env_file: Optional[str] = ".env") -> "Settings":
        if env_file:
            dotenv.load_dotenv(env_file)
        env = os.environ
        extra = env.get("MAJSOUL_LOGIN_EXTRA")
        return cls(
            addr=env.get("MAJSOUL_API_ADDR", "127.0.0.1"),
            port=int(env.get("MAJSOUL_API_PORT", "8080")),
            base_url=env.get("MAJSOUL_BASE_URL", DEFAULT_BASE_URL),
            gateway_url=env.get("MAJSOUL_GATEWAY_URL") or None,
            transport=env.get("MAJSOUL_TRANSPORT", "websocket"),
            call_timeout=float(env.get("MAJSOUL_CALL_TIMEOUT", "10")),
            login_type=int(env.get("MAJSOUL_LOGIN_TYPE", "10")),
            access_token=env.get("MAJSOUL_ACCESS_TOKEN", ""),
            login_extra=json.loads(extra) if extra else {},
        )

    def login_params(self, service_config: ServiceConfig) -> Dict[str, Any]:
        """Parameters of the oauth2Login handshake."""
        params: Dict[str, Any] = {
            "type": self.login_type,
            "access_token": self.access_token,
            "reconnect": False,
            "device": {
                "is_browser": True,
                "platform": "pc",
                "hardware": "pc",
                "os": "windows",
                "os_version": "win10",
                "software": "Chrome",
                "sale_platform": "web",
            },
            "random_key": str(uuid.uuid4()),
            "client_version": {"resource": service_config.version},
            "client_version_string": service_config.client_version,
        }
        params.update(self.login_extra)
        return params
