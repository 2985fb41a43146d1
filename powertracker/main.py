# powertracker/main.py

from datetime import datetime
from pathlib import Path
import logging
import sys

from .cli import build_parser
from .config import AppConfig, Config, apply_cli_overrides
from .errors import ConfigurationError, PowerTrackerError
from .logging import ConsoleLog

from .services.ha_session import HASession
from .services.output_formatter import render
from .services.setup_wizard import bootstrap_config
from .services.statistics_collector import StatisticsCollector


def load_app_config(args, log) -> AppConfig:
    config_path = Path(args.config).expanduser()
    if not config_path.exists():
        bootstrap_config(config_path, log)
    return apply_cli_overrides(Config.load(config_path), args)


def run(
    app_cfg: AppConfig,
    log,
    connector=None,
    stream=None,
    now: datetime | None = None,
) -> int:
    ha_cfg = app_cfg.homeassistant
    report_cfg = app_cfg.report

    # Both are needed before any network traffic happens.
    if not ha_cfg.url:
        log.error("connecting to websocket: url is required")
        return 1
    if not ha_cfg.sensor_id:
        log.error("getting results: sensor_id is required")
        return 1

    try:
        session = HASession.connect(ha_cfg, log, connector=connector)
    except PowerTrackerError as exc:
        log.error("connecting to websocket: %s", exc)
        return 1

    with session:
        try:
            report = StatisticsCollector(session, log).collect_report(
                report_cfg.days,
                ha_cfg.sensor_id,
                now=now,
            )
        except PowerTrackerError as exc:
            log.error("getting results: %s", exc)
            return 1

    try:
        render(report, report_cfg.output, report_cfg.csv_file, stream=stream)
    except PowerTrackerError as exc:
        log.error("writing CSV file: %s", exc)
        return 1
    return 0


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log = ConsoleLog(level="DEBUG" if args.debug else "INFO", quiet=args.quiet).setup()
    try:
        app_cfg = load_app_config(args, log)
    except (ConfigurationError, FileNotFoundError) as exc:
        log.error("reading config file: %s", exc)
        return 1

    log = ConsoleLog(
        level="DEBUG" if args.debug else app_cfg.logging.console_level,
        quiet=args.quiet or app_cfg.logging.console_quiet,
        debug_modules=app_cfg.logging.debug_modules,
    ).setup()
    if args.debug and "websockets" not in app_cfg.logging.debug_modules:
        # websockets logs every frame at DEBUG.
        logging.getLogger("websockets").setLevel(logging.INFO)

    return run(app_cfg, log)


if __name__ == "__main__":
    sys.exit(main())
