"""Configuration loading for daemon service clients.

Reads the daemon's INI-style configuration file (default
``$XDG_CONFIG_HOME/gnunet.conf``) and resolves filename options such as
``UNIXPATH`` with the daemon's ``$VAR`` / ``${VAR:-default}`` expansion
rules. Variables are looked up in the ``[PATHS]`` section first, then in
the environment (optionally overlaid with a ``.env`` file).
"""

import configparser
import logging
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values

from gnunetclient.errors import ConfigurationError

logger = logging.getLogger(__name__)


def default_config_path() -> Path:
    """Location of the user configuration file."""
    override = os.environ.get("GNUNET_CONFIG_FILE")
    if override:
        return Path(override).expanduser()
    config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(config_home) / "gnunet.conf"


# Applied beneath whatever the configuration file sets.
DEFAULTS: Dict[str, Dict[str, str]] = {
    "paths": {
        "gnunet_runtime_dir": "${TMPDIR:-${TMP:-/tmp}}/gnunet-system-runtime/",
        "gnunet_user_runtime_dir": "${XDG_RUNTIME_DIR:-${TMPDIR:-${TMP:-/tmp}}}/gnunet/",
    },
    "identity": {
        "unixpath": "$GNUNET_USER_RUNTIME_DIR/gnunet-service-identity.sock",
    },
    "cadet": {
        "unixpath": "$GNUNET_RUNTIME_DIR/gnunet-service-cadet.sock",
    },
}

# Guards against self-referencing variables.
_MAX_EXPANSION_DEPTH = 32


def load_raw_config(path: Optional[Path] = None) -> Dict[str, Dict[str, str]]:
    """
    Load configuration values from ``path``.

    Section and option names are returned lowercased. A missing file
    yields an empty dict.

    Raises:
        ConfigurationError: If the file exists but cannot be parsed
    """
    path = path or default_config_path()
    cfg = configparser.ConfigParser(interpolation=None, strict=False)
    data: Dict[str, Dict[str, str]] = {}

    if not path.exists():
        return data

    try:
        cfg.read(path)
    except configparser.Error as e:
        raise ConfigurationError(f"Unable to parse {path}: {e}") from e

    for section in cfg.sections():
        values = data.setdefault(section.lower(), {})
        values.update({k.lower(): v for k, v in cfg[section].items()})

    return data


class Configuration:
    """
    Resolved view of the daemon configuration.

    Args:
        values: ``{section: {option: value}}`` as produced by
            :func:`load_raw_config`; merged over :data:`DEFAULTS`
        environ: Variables consulted after ``[PATHS]`` during expansion
            (default: ``os.environ``)
    """

    def __init__(
        self,
        values: Optional[Mapping[str, Mapping[str, str]]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self._values: Dict[str, Dict[str, str]] = {
            section: dict(options) for section, options in DEFAULTS.items()
        }
        for section, options in (values or {}).items():
            self._values.setdefault(section.lower(), {}).update(
                {k.lower(): v for k, v in options.items()}
            )
        self._environ = dict(os.environ if environ is None else environ)

    @classmethod
    def load(cls, path: Optional[Path] = None, env_path: Optional[Path] = None) -> "Configuration":
        """
        Read the configuration file and, optionally, a ``.env`` overlay.

        Values from ``env_path`` take precedence over the process
        environment when expanding variables.
        """
        environ = dict(os.environ)
        if env_path is not None and env_path.exists():
            environ.update({k: v for k, v in dotenv_values(env_path).items() if v is not None})
        return cls(load_raw_config(path), environ)

    def get_value(self, section: str, option: str) -> Optional[str]:
        """Return the raw (unexpanded) value, or None if it is not set."""
        return self._values.get(section.lower(), {}).get(option.lower())

    def get_value_filename(self, section: str, option: str) -> Path:
        """
        Return a filename option with variables and ``~`` expanded.

        Raises:
            ConfigurationError: If the option is not set
        """
        value = self.get_value(section, option)
        if value is None or not value.strip():
            raise ConfigurationError(f"Option {option.upper()} missing in section [{section}]")
        return Path(os.path.expanduser(self.expand(value.strip())))

    def _lookup(self, name: str) -> Optional[str]:
        value = self.get_value("paths", name)
        if value is not None:
            return value
        return self._environ.get(name)

    def expand(self, value: str, _depth: int = 0) -> str:
        """
        Expand ``$NAME``, ``${NAME}`` and ``${NAME:-default}`` in ``value``.

        Variables that cannot be resolved are left in place.
        """
        if _depth > _MAX_EXPANSION_DEPTH:
            raise ConfigurationError(f"Variable expansion too deep in {value!r}")

        result = []
        i = 0
        while i < len(value):
            char = value[i]
            if char != "$":
                result.append(char)
                i += 1
                continue

            if value.startswith("${", i):
                end = _find_closing_brace(value, i + 2)
                if end < 0:
                    raise ConfigurationError(f"Unbalanced braces in {value!r}")
                inner = value[i + 2:end]
                name, sep, default = inner.partition(":-")
                original = value[i:end + 1]
                i = end + 1
            else:
                j = i + 1
                while j < len(value) and (value[j].isalnum() or value[j] == "_"):
                    j += 1
                name, sep, default = value[i + 1:j], "", ""
                original = value[i:j]
                i = j

            replacement = self._lookup(name) if name else None
            if replacement is not None:
                result.append(self.expand(replacement, _depth + 1))
            elif sep:
                result.append(self.expand(default, _depth + 1))
            else:
                logger.warning(f"Unable to expand {original} in configuration value {value!r}")
                result.append(original)

        return "".join(result)


def _find_closing_brace(value: str, start: int) -> int:
    depth = 1
    for index in range(start, len(value)):
        if value[index] == "{":
            depth += 1
        elif value[index] == "}":
            depth -= 1
            if depth == 0:
                return index
    return -1
