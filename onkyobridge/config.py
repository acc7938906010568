"""
Settings for the receiver bridge.

The persisted record has two fields:
  hostname  – receiver host name or IP; empty means auto-detect
  source    – the receiver input used for music playback (e.g. strm-box or bd)

Records are validated with a voluptuous schema and rendered into the
settings layout the host shows to the user.  JsonConfigStore persists
records in a single JSON file keyed by section name.

Usage:
    store = JsonConfigStore("config.json")
    settings = load_settings(store)
    layout = make_layout({"hostname": "192.168.1.20", "source": "bd"})
"""

import json
import logging
import os
from typing import Any, Optional

import voluptuous as vol

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"

CONF_HOSTNAME = "hostname"
CONF_SOURCE = "source"

HOSTNAME_MAX_LENGTH = 256
SOURCE_MAX_LENGTH = 10

# Sources offered as examples on the settings form
SUGGESTED_SOURCES = ("strm-box", "bd")

DEFAULT_SETTINGS = {
    CONF_HOSTNAME: "",
    CONF_SOURCE: "strm-box",
}

SETTINGS_SCHEMA = vol.Schema(
    {
        vol.Optional(CONF_HOSTNAME, default=DEFAULT_SETTINGS[CONF_HOSTNAME]): vol.All(
            str, vol.Strip, vol.Length(max=HOSTNAME_MAX_LENGTH)
        ),
        vol.Optional(CONF_SOURCE, default=DEFAULT_SETTINGS[CONF_SOURCE]): vol.All(
            str, vol.Strip, vol.Lower, vol.Length(min=1, max=SOURCE_MAX_LENGTH)
        ),
    },
    extra=vol.REMOVE_EXTRA,
)


def make_layout(values: Optional[dict]) -> dict:
    """Validate values and build the settings form shown to the host."""
    layout = {
        "values": dict(values or {}),
        "layout": [
            {
                "type": "string",
                "title": "Host name or IP Address",
                "subtitle": "The IP address or hostname of the Onkyo/Pioneer receiver. "
                            "Will be auto detected if left blank.",
                "maxlength": HOSTNAME_MAX_LENGTH,
                "setting": CONF_HOSTNAME,
            },
            {
                "type": "string",
                "title": "Source",
                "subtitle": "The source of the AVR for your music playback. (e.g. {})".format(
                    " or ".join(SUGGESTED_SOURCES)
                ),
                "maxlength": SOURCE_MAX_LENGTH,
                "setting": CONF_SOURCE,
            },
        ],
        "has_error": False,
    }
    try:
        layout["values"] = SETTINGS_SCHEMA(layout["values"])
    except vol.MultipleInvalid as err:
        layout["has_error"] = True
        for error in err.errors:
            setting = error.path[0] if error.path else None
            for field in layout["layout"]:
                if field["setting"] == setting:
                    field["error"] = error.msg
    return layout


class JsonConfigStore:
    """Config sections persisted in one JSON file."""

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> dict:
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.error("Config %s is not a JSON object, ignoring it", self.path)
            return {}
        return data

    def load_config(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def save_config(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)
        logger.debug("Saved %s to %s", key, self.path)


def load_settings(store) -> dict:
    """Read the settings record, falling back to defaults for anything missing or invalid."""
    stored = store.load_config(SETTINGS_KEY)
    if not isinstance(stored, dict):
        logger.info("No stored settings, using defaults")
        return dict(DEFAULT_SETTINGS)
    layout = make_layout(stored)
    if layout["has_error"]:
        logger.warning("Stored settings %s are invalid, using defaults", stored)
        return dict(DEFAULT_SETTINGS)
    return layout["values"]
