"""Runtime configuration for the telescope control core.

ControlConfig gathers the tunables the registry, the transport factory and
the persistence layer need: where documents and logs live, whether server
logs are written, and the bounded waits used when spawning, connecting
and stopping.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path

# =============================================================================
# Constants
# =============================================================================

#: Number of addressable telescope slots (1..MAX_SLOTS).
MAX_SLOTS = 9

#: Default delay between position reports, in microseconds.
DEFAULT_DELAY_US = 500_000

DEFAULT_SERVER_START_TIMEOUT = 5.0  # seconds to wait for a bridge server to listen
DEFAULT_CONNECT_TIMEOUT = 5.0  # seconds before a pending TCP connect is abandoned
DEFAULT_RECONNECT_INTERVAL = 5.0  # seconds between reconnection attempts
DEFAULT_STOP_GRACE_PERIOD = 2.0  # seconds a server gets to exit before kill

TELESCOPES_FILE = "telescopes.json"
CONNECTIONS_FILE = "connections.json"
DEVICE_MODELS_FILE = "device_models.json"
DEFAULT_INDI_DRIVERS_PATH = Path("/usr/share/indi/drivers.xml")


def _default_config_dir() -> Path:
    """Get the default directory for telescope documents.

    Returns:
        Path to ~/.telescope-control (created on first save).
    """
    return Path.home() / ".telescope-control"


@dataclass
class ControlConfig:
    """Configuration for the telescope control core.

    Attributes:
        config_dir: Directory holding telescopes.json, connections.json and
            device_models.json.
        log_dir: Directory for per-slot server logs. None means
            config_dir / "logs".
        use_server_logs: Open a per-slot log when a slot is started.
        server_start_timeout: Seconds to wait for a spawned server to accept.
        connect_timeout: Seconds before an in-progress TCP connect is
            abandoned and retried.
        reconnect_interval: Seconds between reconnection attempts.
        stop_grace_period: Seconds a server process gets to exit after
            SIGTERM before it is killed.
        servers_dir: Extra directory searched for server executables.
        device_models_path: Override for the device catalog document.
        indi_drivers_path: INDI drivers.xml location (optional catalog).
    """

    config_dir: Path = field(default_factory=_default_config_dir)
    log_dir: Path | None = None
    use_server_logs: bool = False

    server_start_timeout: float = DEFAULT_SERVER_START_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL
    stop_grace_period: float = DEFAULT_STOP_GRACE_PERIOD

    servers_dir: Path | None = None
    device_models_path: Path | None = None
    indi_drivers_path: Path | None = DEFAULT_INDI_DRIVERS_PATH

    @property
    def resolved_log_dir(self) -> Path:
        """Directory per-slot logs are written to."""
        return self.log_dir if self.log_dir is not None else self.config_dir / "logs"

    @property
    def resolved_device_models_path(self) -> Path:
        """Location of the user's device catalog document."""
        if self.device_models_path is not None:
            return self.device_models_path
        return self.config_dir / DEVICE_MODELS_FILE

    def with_overrides(self, **changes: object) -> ControlConfig:
        """Return a copy with the given fields replaced.

        Example:
            >>> fast = config.with_overrides(stop_grace_period=0.5)
        """
        return replace(self, **changes)  # type: ignore[arg-type]


__all__ = [
    "MAX_SLOTS",
    "DEFAULT_DELAY_US",
    "TELESCOPES_FILE",
    "CONNECTIONS_FILE",
    "DEVICE_MODELS_FILE",
    "ControlConfig",
]
