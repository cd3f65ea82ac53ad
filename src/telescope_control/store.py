"""Persistence of slot descriptions and connection parameters.

Two JSON documents live in the configuration directory:

    telescopes.json   {"<slot>": <TelescopeDescription.to_dict()>, ...}
    connections.json  {"<slot>": {"host": ..., "port": ..., "delay": ...}, ...}

Loading is forgiving: a missing or corrupt document yields an empty result
and bad entries are skipped, so a broken file never prevents startup.
Saving is strict: the document is replaced atomically and any failure
raises PersistenceError, so the caller knows the configuration was not
written.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from telescope_control.config import CONNECTIONS_FILE, TELESCOPES_FILE
from telescope_control.description import TelescopeDescription, is_valid_delay, is_valid_slot
from telescope_control.exceptions import InvalidDescriptionError, PersistenceError
from telescope_control.observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConnectionParameters:
    """Network parameters of one slot kept apart from its description.

    Attributes:
        host: Host name or address.
        port: TCP port, or None.
        delay: Position delay in microseconds.
    """

    host: str
    port: int | None
    delay: int

    def to_dict(self) -> dict[str, Any]:
        return {"host": self.host, "port": self.port, "delay": self.delay}

    @classmethod
    def from_dict(cls, data: Any) -> ConnectionParameters:
        """Parse a connections.json entry.

        Raises:
            ValueError: If the entry is malformed.
        """
        if not isinstance(data, dict):
            raise ValueError("connection entry must be an object")
        host = data.get("host")
        port = data.get("port")
        delay = data.get("delay")
        if not isinstance(host, str):
            raise ValueError("'host' must be a string")
        if port is not None and (not isinstance(port, int) or isinstance(port, bool)):
            raise ValueError("'port' must be an integer")
        if not is_valid_delay(delay):
            raise ValueError(f"'delay' {delay!r} is out of range")
        return cls(host=host, port=port, delay=delay)

    @classmethod
    def of(cls, description: TelescopeDescription) -> ConnectionParameters:
        """Parameters currently held by a description."""
        return cls(host=description.host, port=description.port, delay=description.delay)

    def apply(self, description: TelescopeDescription) -> TelescopeDescription:
        """Copy of description with these parameters."""
        return replace(description, host=self.host, port=self.port, delay=self.delay)


class ConfigStore:
    """Reads and writes the slot documents of one configuration directory.

    Example:
        store = ConfigStore(Path("~/.telescope-control").expanduser())
        store.save(registry.descriptions)
        descriptions = store.load()
    """

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def telescopes_path(self) -> Path:
        return self._directory / TELESCOPES_FILE

    @property
    def connections_path(self) -> Path:
        return self._directory / CONNECTIONS_FILE

    # -------------------------------------------------------------------------
    # telescopes.json
    # -------------------------------------------------------------------------

    def save(self, descriptions: dict[int, TelescopeDescription]) -> None:
        """Write every description to telescopes.json.

        Args:
            descriptions: Descriptions keyed by slot.

        Raises:
            PersistenceError: If the document cannot be written.
        """
        document = {
            str(slot): description.to_dict()
            for slot, description in sorted(descriptions.items())
        }
        self._write_document(self.telescopes_path, document)
        logger.info("Telescopes saved", path=str(self.telescopes_path), count=len(document))

    def load(self) -> dict[int, TelescopeDescription]:
        """Read descriptions from telescopes.json.

        Connection parameters in connections.json, when present, override
        the host, port and delay of the matching slot.

        Returns:
            Descriptions keyed by slot. Empty if the document is missing or
            unreadable.
        """
        document = self._read_document(self.telescopes_path)
        connections = self.load_connections()

        descriptions: dict[int, TelescopeDescription] = {}
        for key, entry in document.items():
            slot = _parse_slot(key)
            if slot is None:
                logger.warning("Skipping entry with invalid slot", key=key)
                continue
            try:
                description = TelescopeDescription.from_dict(entry)
            except InvalidDescriptionError as e:
                logger.warning("Skipping invalid telescope entry", slot=slot, error=str(e))
                continue
            if slot in connections:
                description = connections[slot].apply(description)
            descriptions[slot] = description

        logger.info("Telescopes loaded", path=str(self.telescopes_path), count=len(descriptions))
        return descriptions

    # -------------------------------------------------------------------------
    # connections.json
    # -------------------------------------------------------------------------

    def save_connections(self, parameters: dict[int, ConnectionParameters]) -> None:
        """Write connection parameters to connections.json.

        Raises:
            PersistenceError: If the document cannot be written.
        """
        document = {str(slot): params.to_dict() for slot, params in sorted(parameters.items())}
        self._write_document(self.connections_path, document)

    def load_connections(self) -> dict[int, ConnectionParameters]:
        """Read connections.json; missing or unreadable yields {}."""
        document = self._read_document(self.connections_path)
        parameters: dict[int, ConnectionParameters] = {}
        for key, entry in document.items():
            slot = _parse_slot(key)
            if slot is None:
                logger.warning("Skipping connection with invalid slot", key=key)
                continue
            try:
                parameters[slot] = ConnectionParameters.from_dict(entry)
            except ValueError as e:
                logger.warning("Skipping invalid connection entry", slot=slot, error=str(e))
        return parameters

    # -------------------------------------------------------------------------
    # Document I/O
    # -------------------------------------------------------------------------

    def _read_document(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            logger.debug("Document not found", path=str(path))
            return {}
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Document unreadable", path=str(path), error=str(e))
            return {}
        if not isinstance(document, dict):
            logger.warning("Document is not a JSON object", path=str(path))
            return {}
        return document

    def _write_document(self, path: Path, document: dict[str, Any]) -> None:
        temp_name: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f".{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                temp_name = handle.name
                json.dump(document, handle, indent=2)
                handle.write("\n")
            os.replace(temp_name, path)
        except (OSError, TypeError, ValueError) as e:
            if temp_name is not None and os.path.exists(temp_name):
                os.unlink(temp_name)
            raise PersistenceError(f"Cannot write {path}: {e}") from e

    def __repr__(self) -> str:
        return f"<ConfigStore({self._directory})>"


def _parse_slot(key: str) -> int | None:
    try:
        slot = int(key)
    except (TypeError, ValueError):
        return None
    return slot if is_valid_slot(slot) else None


__all__ = ["ConfigStore", "ConnectionParameters"]
