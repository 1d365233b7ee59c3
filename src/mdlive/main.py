import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .app import PreviewApplication
from .core.config_manager import DEFAULT_SETTINGS_PATH, ConfigManager, ServerSettings

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mdlive",
        description="Live markdown preview in the browser, following edits and asset changes."
    )
    parser.add_argument("path", nargs="?", default=".", type=Path,
                        help="markdown file to preview, or a workspace folder")
    parser.add_argument("--host", default=None, help="interface to serve the preview on")
    parser.add_argument("--port", type=int, default=None, help="port to serve the preview on")
    parser.add_argument("--follow", dest="follow_active", action="store_true", default=None,
                        help="preview whichever markdown document was saved last")
    parser.add_argument("--open-on-create", dest="open_preview_on_open", action="store_true",
                        default=None, help="open a preview for newly created documents")
    parser.add_argument("--no-browser", dest="open_browser", action="store_false", default=None,
                        help="do not open a browser window")
    parser.add_argument("--settings", default=str(DEFAULT_SETTINGS_PATH),
                        help="settings file (JSON)")
    parser.add_argument("--save-settings", action="store_true",
                        help="write the effective settings back to the settings file")
    parser.add_argument("--log-level", choices=LOG_LEVELS, default=None)
    return parser


def load_settings(args: argparse.Namespace) -> ServerSettings:
    """Settings file values with command line overrides applied"""
    config_manager = ConfigManager(args.settings)
    config_manager.override(
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        open_browser=args.open_browser,
        follow_active=args.follow_active,
        open_preview_on_open=args.open_preview_on_open
    )
    if args.save_settings:
        config_manager.save_config()
    return config_manager.config


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.path.exists():
        parser.error(f"{args.path} does not exist")

    settings = load_settings(args)
    logging.basicConfig(
        level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    app = PreviewApplication(settings, args.path)
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
