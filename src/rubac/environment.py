"""Process environment of a rubac invocation."""

import logging
import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import dotenv_values

from rubac.config import split_items
from rubac.exceptions import ConfigError
from rubac.rsync import BACKUP_FIXED_OPTIONS, BACKUP_OPTIONS, DEFAULT_RSYNC

SYSTEM_DATADIR = Path("/etc/rubac")
USER_DATADIR = Path("~/.rubac")
DEFAULT_PROFILE = "rubac"


def default_datadir() -> Path:
    """Return /etc/rubac when it can be created and written, else ~/.rubac."""
    try:
        SYSTEM_DATADIR.mkdir(exist_ok=True)
    except OSError:
        return USER_DATADIR.expanduser()
    if os.access(SYSTEM_DATADIR, os.W_OK):
        return SYSTEM_DATADIR
    return USER_DATADIR.expanduser()


def profile_name(value: str) -> str:
    """Return a profile name with any directory and .yaml suffix removed."""
    name = Path(value).name
    return name[: -len(".yaml")] if name.endswith(".yaml") else name


@dataclass
class RubacEnvironment:
    """Settings taken from RUBAC_* variables.

    Attributes:
        datadir: Directory holding profile files, None for the default
        profile: Profile name
        clients: Clients named by RUBAC_CLIENT
        rsync: rsync executable
        base_options: rsync options applied to every client
        tmp_dir: Directory for temporary files

    """

    datadir: Path | None = None
    profile: str = DEFAULT_PROFILE
    clients: list[str] = field(default_factory=list)
    rsync: str = DEFAULT_RSYNC
    base_options: str = BACKUP_OPTIONS
    tmp_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))

    @classmethod
    def from_mapping(cls, env: Mapping[str, str | None]) -> "RubacEnvironment":
        """Build the environment from a mapping of variables."""
        datadir = env.get("RUBAC_DATADIR")
        profile = env.get("RUBAC_PROFILE")
        ssh_opts = env.get("RUBAC_SSHOPTS")
        tmp = env.get("TMP")
        return cls(
            datadir=Path(datadir).expanduser() if datadir else None,
            profile=profile_name(profile) if profile else DEFAULT_PROFILE,
            clients=split_items(env.get("RUBAC_CLIENT"), ","),
            rsync=env.get("RUBAC_RSYNC") or DEFAULT_RSYNC,
            base_options=f"{ssh_opts} {BACKUP_FIXED_OPTIONS}" if ssh_opts else BACKUP_OPTIONS,
            tmp_dir=Path(tmp) if tmp else Path(tempfile.gettempdir()),
        )

    @classmethod
    def from_env(
        cls,
        env_file: Path | None = None,
        logger: logging.Logger | None = None,
    ) -> "RubacEnvironment":
        """Build the environment from os.environ, overlaid by an optional dotenv file.

        Raises:
            ConfigError: If the dotenv file cannot be read

        """
        env: dict[str, str | None] = dict(os.environ)
        if env_file is not None:
            if not env_file.is_file():
                error_msg = f"Environment file not found: {env_file}"
                raise ConfigError(error_msg)
            try:
                env.update(dotenv_values(env_file))
            except OSError as e:
                error_msg = f"Failed to load environment file {env_file}: {e}"
                raise ConfigError(error_msg, original_error=e) from e
            if logger is not None:
                logger.debug(f"Successfully loaded environment from {env_file}")
        return cls.from_mapping(env)
