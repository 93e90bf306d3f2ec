from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from PySide6.QtCore import QtMsgType, qInstallMessageHandler
from PySide6.QtWidgets import QApplication

from labgantt.app.config import Preferences
from labgantt.app.ui.main_window import MainWindow
from labgantt.gitlab.client import PERIODS

logger = logging.getLogger("labgantt")


def _debug_enabled(var_name: str) -> bool:
    """Check if a debug flag is enabled."""
    return os.getenv(var_name, "0") not in ("0", "false", "False", "", None)


def _qt_message_handler(mode: QtMsgType, context, message: str) -> None:
    """Route Qt's own diagnostics through logging, minus known noise."""
    if "QWindowsFontEngineDirectWrite::recalcAdvances" in message:
        return
    if "Accessible invalid" in message or "Could not find accessible on path" in message:
        return
    qt_logger = logging.getLogger("labgantt.qt")
    if mode == QtMsgType.QtDebugMsg:
        qt_logger.debug(message)
    elif mode in (QtMsgType.QtInfoMsg, QtMsgType.QtWarningMsg):
        qt_logger.warning(message)
    elif mode == QtMsgType.QtCriticalMsg:
        qt_logger.error(message)
    elif mode == QtMsgType.QtFatalMsg:
        qt_logger.critical(message)
        sys.exit(1)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Gantt timeline for GitLab issues.")
    parser.add_argument("--gitlab-url", help="GitLab host or base URL (e.g. gitlab.com).")
    parser.add_argument("--projects", help="Comma separated project IDs to load.")
    parser.add_argument("--period", choices=PERIODS, help="How far back to load issues.")
    parser.add_argument("--config", type=Path, help="Preferences file (default ~/.labgantt_config.json).")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    _configure_logging(args.debug or _debug_enabled("LABGANTT_DEBUG"))
    qInstallMessageHandler(_qt_message_handler)

    qt_app = QApplication(sys.argv)
    qt_app.setApplicationName("LabGantt")
    preferences = Preferences(args.config) if args.config else Preferences()
    logger.debug("Using preferences at %s", preferences.path)
    window = MainWindow(preferences)
    window.show()
    window.startup(
        {
            "gitlab_url": args.gitlab_url,
            "project_ids": args.projects,
            "period": args.period,
        }
    )
    sys.exit(qt_app.exec())


if __name__ == "__main__":  # pragma: no cover - manual entry point
    main()
