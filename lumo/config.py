# lumo/config.py
"""
Configuration for the Lumo shell.

All configuration flows through this module. Values are loaded from
environment variables (optionally via a .env file) and validated with
Pydantic. Command-line flags are applied on top by ``lumo.cli``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


# Resolve .env relative to the project root (one level above lumo/ package),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

DEFAULT_SOCKET_HOST = "127.0.0.1"


def parse_socket_address(value: str) -> tuple[str, int]:
    """Parse a ``[host:]port`` string into ``(host, port)``.

    A bare port binds the loopback interface. Raises ValueError for
    anything that is not a valid TCP port.
    """
    text = value.strip()
    host = DEFAULT_SOCKET_HOST
    if ":" in text:
        host, _, text = text.rpartition(":")
        host = host.strip() or DEFAULT_SOCKET_HOST
    try:
        port = int(text)
    except ValueError:
        raise ValueError(f"invalid socket port: {value!r}") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"socket port out of range: {port}")
    return host, port


class ReplConfig(BaseSettings):
    """Behaviour of the local terminal session."""

    dumb_terminal: bool = Field(False, alias="LUMO_DUMB_TERMINAL")
    namespace: str = Field("user", alias="LUMO_NAMESPACE")
    banner: bool = Field(True, alias="LUMO_BANNER")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore"}

    @model_validator(mode="after")
    def normalize_namespace(self) -> "ReplConfig":
        self.namespace = self.namespace.strip() or "user"
        return self


class SocketConfig(BaseSettings):
    """Socket REPL listener. No port means no listener is started."""

    host: str = Field(DEFAULT_SOCKET_HOST, alias="LUMO_SOCKET_HOST")
    port: Optional[int] = Field(None, alias="LUMO_SOCKET_PORT")
    max_connections: int = Field(16, alias="LUMO_SOCKET_MAX_CONNECTIONS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore"}

    @model_validator(mode="after")
    def normalize_limits(self) -> "SocketConfig":
        if self.port is not None and not 0 <= self.port <= 65535:
            raise ValueError(f"LUMO_SOCKET_PORT out of range: {self.port}")
        self.host = self.host.strip() or DEFAULT_SOCKET_HOST
        self.max_connections = max(1, int(self.max_connections))
        return self

    @property
    def enabled(self) -> bool:
        return self.port is not None


class HistoryConfig(BaseSettings):
    """Line history of the local session."""

    enabled: bool = Field(True, alias="LUMO_HISTORY_ENABLED")
    path: Path = Field(Path("~/.lumo_history"), alias="LUMO_HISTORY_FILE")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore"}


class LumoConfig:
    """
    Master configuration that composes the subsystem configs.

    Every component receives its settings from here; nothing reads the
    environment on its own.
    """

    def __init__(self) -> None:
        self.repl = ReplConfig()
        self.socket = SocketConfig()
        self.history = HistoryConfig()
        self.history.path = self.history.path.expanduser()

    def __repr__(self) -> str:
        return (
            f"LumoConfig(dumb_terminal={self.repl.dumb_terminal}, "
            f"namespace={self.repl.namespace!r}, "
            f"socket_port={self.socket.port}, "
            f"history={self.history.enabled})"
        )
