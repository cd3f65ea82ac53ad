"""Device catalog: supported mount models and their bridge servers.

The catalog is loaded once at startup and never mutated. It maps a model
name (shown to the operator) to the server executable that bridges that
model's vendor protocol, plus the model's default connection parameters.

When the user's device_models.json is missing or unreadable, the copy
shipped with the package is restored in its place, so an operator who
breaks the file gets a working list back on the next start.

An optional second catalog lists telescope drivers of an installed INDI
framework, read from INDI's drivers.xml.

Example:
    catalog = DeviceCatalog.load(Path("~/.telescope-control/device_models.json"))
    model = catalog.get("Meade LX200 (compatible)")
    print(model.server, model.default_delay)
"""

from __future__ import annotations

import json
import shutil
import xml.etree.ElementTree as ET
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Any

from telescope_control.config import DEFAULT_DELAY_US, DEVICE_MODELS_FILE
from telescope_control.description import Equinox, is_valid_delay
from telescope_control.observability import get_logger

logger = get_logger(__name__)

INDI_TELESCOPE_GROUP = "Telescopes"


@dataclass(frozen=True)
class DeviceModel:
    """Catalog entry for one supported mount model.

    Attributes:
        name: Model name, the catalog key.
        server: Server command bridging this model (executable name or
            a shell-style command line).
        description: Human-readable description.
        default_delay: Suggested position report interval in microseconds.
        default_equinox: Frame the model's controller works in.
    """

    name: str
    server: str
    description: str = ""
    default_delay: int = DEFAULT_DELAY_US
    default_equinox: Equinox = Equinox.J2000

    @property
    def defaults(self) -> Mapping[str, Any]:
        """Default connection parameters for a new description."""
        return MappingProxyType(
            {"delay": self.default_delay, "equinox": self.default_equinox}
        )

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> DeviceModel:
        """Build a model from its device_models.json entry.

        Raises:
            ValueError: If the entry is malformed.
        """
        server = data.get("server")
        if not isinstance(server, str) or not server:
            raise ValueError(f"Device model {name!r} has no server")
        delay = data.get("default_delay", DEFAULT_DELAY_US)
        if not is_valid_delay(delay):
            raise ValueError(f"Device model {name!r} has invalid delay {delay!r}")
        return cls(
            name=name,
            server=server,
            description=str(data.get("description", "")),
            default_delay=delay,
            default_equinox=Equinox(data.get("default_equinox", Equinox.J2000.value)),
        )


def _parse_models(document: Any) -> dict[str, DeviceModel]:
    if not isinstance(document, dict):
        raise ValueError("Device model document must be a JSON object")
    models: dict[str, DeviceModel] = {}
    for name, entry in document.items():
        if not isinstance(entry, dict):
            logger.warning("Skipping malformed device model", model=name)
            continue
        try:
            models[name] = DeviceModel.from_dict(name, entry)
        except ValueError as e:
            logger.warning("Skipping invalid device model", model=name, error=str(e))
    return models


def _read_default_document() -> str:
    return (
        resources.files("telescope_control")
        .joinpath("data", DEVICE_MODELS_FILE)
        .read_text(encoding="utf-8")
    )


def restore_default_device_models(destination: Path) -> bool:
    """Copy the packaged device_models.json to destination.

    An existing file is renamed to '<name>.backup' first.

    Returns:
        True if the default list was written.
    """
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        if destination.exists():
            shutil.move(destination, destination.with_name(destination.name + ".backup"))
        destination.write_text(_read_default_document(), encoding="utf-8")
    except OSError as e:
        logger.error("Could not restore device model list", path=str(destination), error=str(e))
        return False
    logger.info("Restored default device model list", path=str(destination))
    return True


def load_indi_drivers(path: Path | None) -> dict[str, str]:
    """Read telescope drivers from an INDI drivers.xml file.

    Args:
        path: Location of drivers.xml, or None.

    Returns:
        Mapping of device label to driver executable. Empty when the
        file is absent or cannot be parsed.

    Example:
        >>> load_indi_drivers(Path("/usr/share/indi/drivers.xml"))
        {'LX200 Basic': 'indi_lx200basic', ...}
    """
    if path is None or not path.is_file():
        return {}
    try:
        root = ET.parse(path).getroot()
    except (ET.ParseError, OSError) as e:
        logger.warning("Could not parse INDI driver list", path=str(path), error=str(e))
        return {}

    drivers: dict[str, str] = {}
    for group in root.iter("devGroup"):
        if group.get("group") != INDI_TELESCOPE_GROUP:
            continue
        for device in group.iter("device"):
            label = device.get("label")
            driver = device.find("driver")
            if label and driver is not None and driver.text:
                drivers[label] = driver.text.strip()
    return drivers


class DeviceCatalog:
    """Read-only catalog of supported device models.

    Example:
        catalog = DeviceCatalog.load(path)
        if "Meade LX200 (compatible)" in catalog:
            server = catalog.get("Meade LX200 (compatible)").server
    """

    def __init__(
        self,
        models: Mapping[str, DeviceModel] | None = None,
        indi_drivers: Mapping[str, str] | None = None,
    ) -> None:
        """Create a catalog from already-parsed entries.

        Args:
            models: Model name to DeviceModel.
            indi_drivers: INDI device label to driver executable.
        """
        self._models = MappingProxyType(dict(models or {}))
        self._indi_drivers = MappingProxyType(dict(indi_drivers or {}))

    @classmethod
    def load(
        cls,
        path: Path | None = None,
        *,
        indi_drivers_path: Path | None = None,
        restore_default: bool = True,
    ) -> DeviceCatalog:
        """Load the catalog from a device_models.json document.

        Args:
            path: User catalog document. None loads the packaged default.
            indi_drivers_path: Optional INDI drivers.xml.
            restore_default: When the user document is missing or invalid,
                rewrite it from the packaged default and use that.

        Returns:
            The loaded catalog. Empty if nothing could be read.
        """
        indi = load_indi_drivers(indi_drivers_path)

        if path is None:
            return cls(_parse_models(json.loads(_read_default_document())), indi)

        try:
            document = json.loads(path.read_text(encoding="utf-8"))
            models = _parse_models(document)
        except (OSError, ValueError) as e:
            logger.warning("Device model list unreadable", path=str(path), error=str(e))
            if not restore_default or not restore_default_device_models(path):
                return cls({}, indi)
            models = _parse_models(json.loads(_read_default_document()))

        logger.info("Loaded device models", count=len(models), indi_drivers=len(indi))
        return cls(models, indi)

    def get(self, name: str) -> DeviceModel | None:
        """Look up a model by name."""
        return self._models.get(name)

    @property
    def models(self) -> Mapping[str, DeviceModel]:
        """Read-only view of all models."""
        return self._models

    @property
    def names(self) -> list[str]:
        """Sorted model names."""
        return sorted(self._models)

    @property
    def indi_drivers(self) -> Mapping[str, str]:
        """Read-only view of INDI telescope drivers (label to executable)."""
        return self._indi_drivers

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def __iter__(self) -> Iterator[DeviceModel]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)

    def __repr__(self) -> str:
        return f"<DeviceCatalog(models={len(self._models)}, indi={len(self._indi_drivers)})>"


__all__ = [
    "DeviceModel",
    "DeviceCatalog",
    "load_indi_drivers",
    "restore_default_device_models",
]
