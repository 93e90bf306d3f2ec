from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from labgantt.gitlab.client import DEFAULT_PERIOD, PERIODS

from .filters import FilterState

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".labgantt_config.json"

AUTO_REFRESH_INTERVALS = {
    "Off": 0,
    "Every 10 seconds": 10_000,
    "Every 30 seconds": 30_000,
    "Every minute": 60_000,
    "Every 5 minutes": 300_000,
}
DEFAULT_AUTO_REFRESH_MS = 60_000

# Fixed key names; each value is stored as its own JSON document.
KEY_GITLAB_URL = "gitlab_url"
KEY_PROJECT_IDS = "project_ids"
KEY_TOKEN = "token"
KEY_PERIOD = "period"
KEY_CONNECTED = "connected"
KEY_INCLUDE_LABELS = "include_labels"
KEY_EXCLUDE_LABELS = "exclude_labels"
KEY_STATUS_LABELS = "status_labels"
KEY_ASSIGNEE_IDS = "assignee_ids"
KEY_MILESTONE_IDS = "milestone_ids"
KEY_SHOW_CLOSED = "show_closed"
KEY_AUTO_REFRESH = "auto_refresh_ms"
KEY_WINDOW_GEOMETRY = "window_geometry"


def default_config_path() -> Path:
    override = os.getenv("LABGANTT_CONFIG")
    return Path(override).expanduser() if override else DEFAULT_CONFIG_PATH


@dataclass(frozen=True)
class ConnectionSettings:
    gitlab_url: str = "gitlab.com"
    project_ids: str = ""
    token: str = ""
    period: str = DEFAULT_PERIOD
    connected: bool = False

    def is_complete(self) -> bool:
        return bool(self.gitlab_url.strip() and self.project_ids.strip() and self.token.strip())


def _is_str(value: Any) -> bool:
    return isinstance(value, str)


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


def _is_int_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, int) and not isinstance(v, bool) for v in value)


class Preferences:
    """Local preferences persisted as one JSON file.

    Every key holds an independently JSON-encoded string so that one corrupt
    entry never takes the others down with it.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else default_config_path()

    def _read_all(self) -> dict:
        """Return the raw key → encoded-value mapping, or {} on error/missing."""
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write_all(self, payload: dict) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not write preferences to %s: %s", self.path, exc)

    def get(self, key: str, default: Any = None, *, valid: Optional[Callable[[Any], bool]] = None) -> Any:
        encoded = self._read_all().get(key)
        if not isinstance(encoded, str):
            return default
        try:
            value = json.loads(encoded)
        except json.JSONDecodeError:
            return default
        if valid is not None and not valid(value):
            return default
        return value

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def update(self, values: dict[str, Any]) -> None:
        payload = self._read_all()
        for key, value in values.items():
            payload[key] = json.dumps(value)
        self._write_all(payload)

    # --- filters ------------------------------------------------------------

    def load_filter_state(self) -> FilterState:
        return FilterState(
            include_labels=tuple(self.get(KEY_INCLUDE_LABELS, [], valid=_is_str_list)),
            exclude_labels=tuple(self.get(KEY_EXCLUDE_LABELS, [], valid=_is_str_list)),
            status_labels=tuple(self.get(KEY_STATUS_LABELS, [], valid=_is_str_list)),
            assignee_ids=tuple(self.get(KEY_ASSIGNEE_IDS, [], valid=_is_int_list)),
            milestone_ids=tuple(self.get(KEY_MILESTONE_IDS, [], valid=_is_int_list)),
            show_closed=self.get(KEY_SHOW_CLOSED, False, valid=lambda v: isinstance(v, bool)),
        )

    def save_filter_state(self, state: FilterState) -> None:
        self.update(
            {
                KEY_INCLUDE_LABELS: list(state.include_labels),
                KEY_EXCLUDE_LABELS: list(state.exclude_labels),
                KEY_STATUS_LABELS: list(state.status_labels),
                KEY_ASSIGNEE_IDS: list(state.assignee_ids),
                KEY_MILESTONE_IDS: list(state.milestone_ids),
                KEY_SHOW_CLOSED: state.show_closed,
            }
        )

    # --- auto refresh -------------------------------------------------------

    def load_auto_refresh_interval(self) -> int:
        value = self.get(KEY_AUTO_REFRESH, DEFAULT_AUTO_REFRESH_MS, valid=lambda v: isinstance(v, int))
        return value if value in AUTO_REFRESH_INTERVALS.values() else DEFAULT_AUTO_REFRESH_MS

    def save_auto_refresh_interval(self, interval_ms: int) -> None:
        self.set(KEY_AUTO_REFRESH, int(interval_ms))

    # --- connection ---------------------------------------------------------

    def load_connection(self) -> ConnectionSettings:
        defaults = ConnectionSettings()
        period = self.get(KEY_PERIOD, defaults.period, valid=_is_str)
        return ConnectionSettings(
            gitlab_url=self.get(KEY_GITLAB_URL, defaults.gitlab_url, valid=_is_str),
            project_ids=self.get(KEY_PROJECT_IDS, defaults.project_ids, valid=_is_str),
            token=self.get(KEY_TOKEN, defaults.token, valid=_is_str),
            period=period if period in PERIODS else DEFAULT_PERIOD,
            connected=self.get(KEY_CONNECTED, False, valid=lambda v: isinstance(v, bool)),
        )

    def save_connection(self, settings: ConnectionSettings) -> None:
        self.update(
            {
                KEY_GITLAB_URL: settings.gitlab_url,
                KEY_PROJECT_IDS: settings.project_ids,
                KEY_TOKEN: settings.token,
                KEY_PERIOD: settings.period,
                KEY_CONNECTED: settings.connected,
            }
        )

    # --- window -------------------------------------------------------------

    def load_window_geometry(self) -> Optional[str]:
        return self.get(KEY_WINDOW_GEOMETRY, None, valid=lambda v: isinstance(v, str))

    def save_window_geometry(self, geometry: str) -> None:
        self.set(KEY_WINDOW_GEOMETRY, geometry)
