# powertracker/config.py
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping
import configparser
import os

from powertracker.errors import ConfigurationError


DEFAULT_CONFIG_PATH = Path("~/.config/powertracker/powertracker.conf")

ENV_OVERRIDES = {
    "url": "POWERTRACKER_URL",
    "api_key": "POWERTRACKER_API_KEY",
    "sensor_id": "POWERTRACKER_SENSOR_ID",
}

OUTPUT_MODES = ("text", "table", "csv")


@dataclass
class HomeAssistantConfig:
    url: str = ""
    api_key: str = ""
    sensor_id: str = ""
    insecure: bool = False
    handshake_timeout: float = 10.0
    timeout: float = 30.0


@dataclass
class ReportConfig:
    days: int = 30
    output: str = ""
    csv_file: str = "results.csv"


@dataclass
class LoggingConfig:
    console_level: str = "INFO"
    console_quiet: bool = False
    debug_modules: list[str] = field(default_factory=list)


@dataclass
class AppConfig:
    homeassistant: HomeAssistantConfig
    report: ReportConfig
    logging: LoggingConfig


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "yes", "1", "on")


def _as_positive_int(name: str, raw: str) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ConfigurationError(f"{name} must be at least 1, got {value}")
    return value


def _as_float(name: str, raw: str) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


class Config:
    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        self.parser = configparser.ConfigParser(inline_comment_prefixes=("#",), interpolation=None)
        try:
            read = self.parser.read(self.path, encoding="utf-8")
        except (configparser.Error, UnicodeDecodeError) as exc:
            raise ConfigurationError(f"parsing {self.path}: {exc}") from exc
        if not read:
            raise FileNotFoundError(f"Config file not found: {self.path}")

    @classmethod
    def load(cls, path: str | Path, env: Mapping[str, str] | None = None) -> AppConfig:
        cfg = cls(path)
        return cfg.to_app_config(os.environ if env is None else env)

    def to_app_config(self, env: Mapping[str, str]) -> AppConfig:
        p = self.parser

        # --- Home Assistant ---
        ha_kwargs = {}
        if "homeassistant" in p:
            ha_sec = p["homeassistant"]
            for key in ("url", "api_key", "sensor_id"):
                if key in ha_sec:
                    ha_kwargs[key] = ha_sec[key].strip()
            if "insecure" in ha_sec:
                ha_kwargs["insecure"] = _as_bool(ha_sec["insecure"])
            if "timeout" in ha_sec:
                ha_kwargs["timeout"] = _as_float("timeout", ha_sec["timeout"])
        for key, env_name in ENV_OVERRIDES.items():
            if env.get(env_name):
                ha_kwargs[key] = env[env_name].strip()
        homeassistant = HomeAssistantConfig(**ha_kwargs)

        # --- Report ---
        report_kwargs = {}
        if "report" in p:
            report_sec = p["report"]
            if "days" in report_sec:
                report_kwargs["days"] = _as_positive_int("days", report_sec["days"])
            if "output" in report_sec:
                report_kwargs["output"] = report_sec["output"].strip().lower()
            if "csv_file" in report_sec:
                report_kwargs["csv_file"] = report_sec["csv_file"].strip()
        report = ReportConfig(**report_kwargs)

        logging_kwargs = {}
        if "logging" in p:
            logging_sec = p["logging"]
            if "console_level" in logging_sec:
                logging_kwargs["console_level"] = logging_sec["console_level"]
            if "console_quiet" in logging_sec:
                logging_kwargs["console_quiet"] = _as_bool(logging_sec["console_quiet"])
            if "debug_modules" in logging_sec:
                raw = logging_sec["debug_modules"]
                logging_kwargs["debug_modules"] = [x.strip() for x in raw.split(",") if x.strip()]
        logging_cfg = LoggingConfig(**logging_kwargs)

        return AppConfig(
            homeassistant=homeassistant,
            report=report,
            logging=logging_cfg,
        )


def apply_cli_overrides(app_cfg: AppConfig, args) -> AppConfig:
    """Fold command-line flags over the file values; unset flags are None."""
    if getattr(args, "days", None) is not None:
        if args.days < 1:
            raise ConfigurationError(f"days must be at least 1, got {args.days}")
        app_cfg.report.days = args.days
    if getattr(args, "output", None) is not None:
        app_cfg.report.output = args.output
    if getattr(args, "csv_file", None) is not None:
        app_cfg.report.csv_file = args.csv_file
    if getattr(args, "insecure", False):
        app_cfg.homeassistant.insecure = True
    return app_cfg


def write_config(path: str | Path, ha_cfg: HomeAssistantConfig) -> Path:
    """Write a fresh config file holding the connection settings."""
    target = Path(path).expanduser()
    parser = configparser.ConfigParser(interpolation=None)
    parser["homeassistant"] = {
        "url": ha_cfg.url,
        "api_key": ha_cfg.api_key,
        "sensor_id": ha_cfg.sensor_id,
    }
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as fh:
        parser.write(fh)
    return target
