"""Environment variable files.

Two formats are accepted. Plain files hold one ``SERVICE.VAR=VALUE`` per
line, with blank lines and ``#`` comments skipped. Files ending in ``.yaml``
or ``.yml`` hold a mapping of service to a mapping of variable to value.
Either way the result is ``{service: {VAR: value}}``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from netdep.core.errors import EnvFileError
from netdep.discovery.registry import EnvMap

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")


def parse_env_text(text: str, path: str = "<string>") -> EnvMap:
    """Parse ``SERVICE.VAR=VALUE`` lines.

    Raises:
        EnvFileError: If a line is not of that shape
    """
    env: EnvMap = {}
    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        service, dot, variable = key.strip().partition(".")
        if not sep or not dot or not service or not variable:
            raise EnvFileError(path, f"line {number}: expected SERVICE.VAR=VALUE, got {raw!r}")
        env.setdefault(service, {})[variable] = value.strip()
    return env


def _from_yaml(text: str, path: str) -> EnvMap:
    try:
        data: Any = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise EnvFileError(path, str(e)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise EnvFileError(path, "top level must map services to variables")

    env: EnvMap = {}
    for service, variables in data.items():
        if not isinstance(variables, dict):
            raise EnvFileError(path, f"variables of {service!r} must be a mapping")
        env[str(service)] = {
            str(name): "" if value is None else str(value) for name, value in variables.items()
        }
    return env


def load_env_file(path: str | Path) -> EnvMap:
    """Read an environment variable file in either supported format.

    Raises:
        EnvFileError: If the file cannot be read or parsed
    """
    env_path = Path(path)
    try:
        text = env_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise EnvFileError(str(path), str(e)) from e

    if env_path.suffix.lower() in YAML_SUFFIXES:
        env = _from_yaml(text, str(path))
    else:
        env = parse_env_text(text, str(path))
    logger.info(
        "loaded_env_file path=%s services=%d variables=%d",
        path,
        len(env),
        sum(len(v) for v in env.values()),
    )
    return env
