from __future__ import annotations

import getpass
from pathlib import Path
from typing import Any, Callable, Optional

from plexdigest.config import (
    DEFAULT_HOSTNAME,
    DEFAULT_PORT,
    ConfigError,
    ServerConfig,
    build_server_config,
    load_config,
    validate_port,
    validate_refresh,
    write_config,
)
from plexdigest.providers.plex import fetch_auth_token

# The interactive tool is stricter than the engine, which takes any positive interval
MIN_REFRESH_MINUTES = 5

Prompt = Callable[[str], str]


def _ask(prompt: Prompt, message: str, default: Any = None, validate: Optional[Callable[[str], Any]] = None) -> Any:
    suffix = f" [{default}]" if default not in (None, "") else ""
    while True:
        answer = prompt(f"{message}{suffix} ").strip()
        if not answer and default is not None:
            answer = str(default)
        if validate is None:
            if answer:
                return answer
            print("A value is required.")
            continue
        try:
            return validate(answer)
        except ConfigError as e:
            print(e)


def _refresh_minutes(answer: str) -> int:
    try:
        minutes = int(answer)
    except ValueError:
        raise ConfigError("Please provide a valid number.") from None
    return int(validate_refresh(minutes, minimum=MIN_REFRESH_MINUTES))


def _choose(prompt: Prompt, message: str, choices: list[str], default: str) -> str:
    options = "/".join(choices)

    def check(answer: str) -> str:
        for c in choices:
            if answer.lower() == c.lower():
                return c
        raise ConfigError(f"Please choose one of: {options}")

    return _ask(prompt, f"{message} ({options})", default, check)


def run_setup(
    config_path: Path | None = None,
    prompt: Prompt = input,
    secret_prompt: Prompt = getpass.getpass,
    token_fetcher: Callable[[str, str], str] = fetch_auth_token,
) -> ServerConfig:
    """
    Asks for the server connection and refresh settings, using the current
    config file as defaults, and writes the result back.
    """
    print("Setting up your Plex server connection...")
    current = load_config(config_path)
    server = current.get("server", {})

    hostname = _ask(prompt, "Please enter the Plex server host name:", server.get("hostname", DEFAULT_HOSTNAME))
    port = _ask(prompt, "Please enter the Plex server port number:", server.get("port", DEFAULT_PORT), validate_port)
    protocol = _choose(
        prompt,
        "Please select the protocol to use to connect to this server:",
        ["http", "https"],
        "https" if server.get("https") else "http",
    )
    method = _choose(
        prompt,
        "Please select your preferred authentication method:",
        ["token", "login"],
        "token" if server.get("token") else "login",
    )

    if method == "token":
        token = _ask(prompt, "Please enter your Plex authentication token:", server.get("token"))
    else:
        username = _ask(prompt, "Please enter your Plex.tv username:")
        password = ""
        while not password:
            password = secret_prompt("Please enter your Plex.tv password: ")
        print("Getting authentication token from Plex.TV...")
        token = token_fetcher(username, password)

    refresh = _ask(
        prompt,
        "Please enter the desired refresh duration in minutes:",
        server.get("refresh_duration", MIN_REFRESH_MINUTES),
        _refresh_minutes,
    )

    config = build_server_config(
        current,
        hostname=hostname,
        port=port,
        https=protocol == "https",
        token=token,
        refresh_duration=refresh,
    )
    path = write_config(config_path, config)
    print(f"Successfully saved configuration to {path}")
    return config
