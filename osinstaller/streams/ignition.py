"""Building Ignition configs that embed files, units, CAs and child configs."""

from __future__ import annotations

import base64
import gzip
import json
from typing import Any

_SPEC_VERSION = "3.3.0"


def _make_resource(data: bytes) -> dict[str, Any]:
    compressed = gzip.compress(bytes(data), compresslevel=9, mtime=0)
    return {
        "compression": "gzip",
        "source": "data:;base64," + base64.b64encode(compressed).decode("ascii"),
    }


def _to_json(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


class Ignition:
    """An Ignition config assembled piece by piece."""

    def __init__(self) -> None:
        self._config: dict[str, Any] = {"ignition": {"version": _SPEC_VERSION}}

    def merge_config(self, config: Any) -> None:
        """Embed a child config to be merged into this one at boot."""
        try:
            buf = _to_json(config)
        except (TypeError, ValueError) as err:
            raise ValueError(f"serializing child Ignition config: {err}") from err
        (
            self._config["ignition"]
            .setdefault("config", {})
            .setdefault("merge", [])
            .append(_make_resource(buf))
        )

    def add_file(self, path: str, data: bytes, mode: int) -> None:
        """Add a file with the given contents and permission bits."""
        # Same alias check that Ignition config validation does.
        if self._have_path(path):
            raise ValueError(f"config already specifies path {path}")
        self._config.setdefault("storage", {}).setdefault("files", []).append(
            {"path": path, "contents": _make_resource(data), "mode": mode}
        )

    def add_unit(self, name: str, contents: str, enabled: bool) -> None:
        """Add a systemd unit."""
        units = self._config.setdefault("systemd", {}).setdefault("units", [])
        if any(unit["name"] == name for unit in units):
            raise ValueError(f"config already specifies unit {name}")
        units.append({"contents": contents, "enabled": enabled, "name": name})

    def add_ca(self, data: bytes) -> None:
        """Add a trusted certificate authority."""
        (
            self._config["ignition"]
            .setdefault("security", {})
            .setdefault("tls", {})
            .setdefault("certificateAuthorities", [])
            .append(_make_resource(data))
        )

    def to_bytes(self) -> bytes:
        """Serialize the config as compact JSON followed by a newline."""
        return _to_json(self._config) + b"\n"

    def _have_path(self, path: str) -> bool:
        storage = self._config.get("storage", {})
        return any(
            node["path"] == path
            for kind in ("files", "directories", "links")
            for node in storage.get(kind, [])
        )