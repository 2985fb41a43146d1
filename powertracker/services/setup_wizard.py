# powertracker/services/setup_wizard.py

from __future__ import annotations

import getpass
from pathlib import Path
from typing import Callable

from powertracker.config import HomeAssistantConfig, write_config
from powertracker.errors import ConfigurationError
from powertracker.services.ha_session import build_websocket_url

Prompt = Callable[[str], str]


def normalize_base_url(raw: str) -> str:
    url = raw.strip()
    if url and "://" not in url:
        url = f"http://{url}"
    try:
        build_websocket_url(url)
    except ConfigurationError as exc:
        raise ConfigurationError(f"parsing URL: {exc}") from exc
    return url


def prompt_user_config(
    prompt: Prompt | None = None,
    secret_prompt: Prompt | None = None,
) -> HomeAssistantConfig:
    prompt = prompt or input
    secret_prompt = secret_prompt or getpass.getpass
    try:
        url = prompt("Home Assistant URL - e.g. http://localhost:8123: ")
        token = secret_prompt("Home Assistant Long-Lived Access Token: ")
        sensor_id = prompt("Energy sensor entity ID - e.g. sensor.energy_import: ")
    except EOFError:
        raise ConfigurationError("prompting user for config: no input available") from None
    except KeyboardInterrupt:
        raise ConfigurationError("prompting user for config: interrupted") from None

    return HomeAssistantConfig(
        url=normalize_base_url(url),
        api_key=token.strip(),
        sensor_id=sensor_id.strip(),
    )


def bootstrap_config(
    path: str | Path,
    log,
    prompt: Prompt | None = None,
    secret_prompt: Prompt | None = None,
) -> Path:
    """Interactively create the config file when it does not exist yet."""
    print("No config file found. Let's set one up.")
    ha_cfg = prompt_user_config(prompt, secret_prompt)
    try:
        target = write_config(path, ha_cfg)
    except OSError as exc:
        raise ConfigurationError(f"writing config file: {exc}") from exc
    log.info("Config written to %s", target)
    return target
