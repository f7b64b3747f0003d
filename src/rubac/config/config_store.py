"""Persisted profile configuration: one global scope plus one scope per client."""

import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from rubac.config.list_values import (
    LIST_DELIMITERS,
    join_items,
    merge_items,
    remove_items,
    split_items,
)
from rubac.exceptions import ConfigError, InvalidOperationError

CONFIG_KEY_VERSION = "version"
CONFIG_KEY_GLOBALS = "globals"
CONFIG_KEY_CLIENTS = "clients"
CONFIG_KEY_INCREMENTALS = "incrementals"

LOCAL_ADDRESSES = ("localhost", "127.0.0.1")
LIST_KEYS = tuple(LIST_DELIMITERS)


class UpdateOperation(Enum):
    """Operation tags accepted by update_global and update_client."""

    ADD = "add"
    DELETE = "delete"

    @classmethod
    def parse(cls, operation: "str | UpdateOperation") -> "UpdateOperation":
        """Return the operation for a tag, failing on unknown tags."""
        if isinstance(operation, cls):
            return operation
        try:
            return cls(operation)
        except ValueError as e:
            error_msg = f"Unknown update operation: {operation!r}"
            raise InvalidOperationError(error_msg, original_error=e) from e


@dataclass
class ConfigVersion:
    """Profile schema version."""

    major: str = "0"
    minor: str = "9"
    revision: str = "1"

    def __str__(self) -> str:
        """Return the version as shown by the version command."""
        return f"{self.major}.{self.minor} (rev {self.revision})"


@dataclass
class GlobalConfig:
    """Settings shared by every client of a profile."""

    dest: str = ""
    ninc: int = 5
    logdir: str = ""
    logname: str = ""
    email: str = ""
    smtp: str = "localhost"
    compress: bool = False
    includes: list[str] = field(default_factory=list)
    excludes: list[str] = field(default_factory=list)
    opts: list[str] = field(default_factory=list)
    version: ConfigVersion = field(default_factory=ConfigVersion)


@dataclass
class ClientConfig:
    """Per-client overlay; None scalars inherit the global value."""

    address: str = ""
    ninc: int | None = None
    compress: bool | None = None
    includes: list[str] = field(default_factory=list)
    excludes: list[str] = field(default_factory=list)
    opts: list[str] = field(default_factory=list)
    incrementals: dict[int, str] = field(default_factory=lambda: {0: ""})


@dataclass(frozen=True)
class ClientSettings:
    """Effective settings of one client, global and client scopes merged."""

    client: str
    address: str
    includes: list[str]
    excludes: list[str]
    opts: list[str]
    ninc: int
    compress: bool

    @property
    def remote(self) -> bool:
        """Whether sources are pulled from another host."""
        return self.address not in LOCAL_ADDRESSES


GLOBAL_SCALARS = ("dest", "ninc", "logdir", "logname", "email", "smtp", "compress")
CLIENT_SCALARS = ("address", "ninc", "compress")


def _to_int(key: str, value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        error_msg = f"Invalid integer for '{key}': {value!r}"
        raise ConfigError(error_msg, original_error=e) from e
    if number < 0:
        error_msg = f"'{key}' must be greater than or equal to 0, got {number}"
        raise ConfigError(error_msg)
    return number


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "1", "on"):
        return True
    if text in ("false", "no", "0", "off", ""):
        return False
    error_msg = f"Invalid boolean for '{key}': {value!r}"
    raise ConfigError(error_msg)


def _convert_scalar(key: str, value: Any) -> Any:
    if key == "ninc":
        return _to_int(key, value)
    if key == "compress":
        return _to_bool(key, value)
    return "" if value is None else str(value).strip()


class ConfigStore:
    """Loads, mutates and saves a profile's configuration.

    Lists are merged additively: a client's includes, excludes and opts are
    layered on top of the global ones. Scalars set on a client override the
    global value.
    """

    def __init__(self, datadir: Path, logger: logging.Logger) -> None:
        """Initialize an empty store for profiles kept in datadir."""
        self.datadir = datadir
        self.logger = logger
        self.globals = GlobalConfig()
        self._clients: dict[str, ClientConfig] = {}

    def profile_path(self, profile: str) -> Path:
        """Return the file holding the given profile."""
        return self.datadir / f"{profile}.yaml"

    @property
    def version(self) -> ConfigVersion:
        """Schema version of the loaded profile."""
        return self.globals.version

    def align_version(self) -> None:
        """Stamp the running schema version onto the loaded profile."""
        current = ConfigVersion()
        if self.globals.version != current:
            self.logger.debug(
                f"Aligning profile version {self.globals.version} to {current}",
            )
        self.globals.version = current

    def load(self, profile: str) -> bool:
        """Load a profile file.

        Returns:
            False if the profile file does not exist, True otherwise

        Raises:
            ConfigError: If the profile file cannot be read or is malformed

        """
        path = self.profile_path(profile)
        if not path.exists():
            self.logger.warning(f"Configuration file {path} not found")
            return False

        try:
            with path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            error_msg = f"Invalid configuration file format {path}: {e}"
            raise ConfigError(error_msg, original_error=e) from e
        except OSError as e:
            error_msg = f"Error loading configuration {path}: {e}"
            raise ConfigError(error_msg, original_error=e) from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            error_msg = f"Configuration {path} is not a mapping"
            raise ConfigError(error_msg)

        self.globals = self._parse_globals(data.get(CONFIG_KEY_GLOBALS) or {})
        clients = data.get(CONFIG_KEY_CLIENTS) or {}
        if not isinstance(clients, dict):
            error_msg = f"'{CONFIG_KEY_CLIENTS}' in {path} is not a mapping"
            raise ConfigError(error_msg)
        self._clients = {
            str(name): self._parse_client(str(name), scope or {})
            for name, scope in clients.items()
        }
        self.align_version()
        self.logger.debug(f"Loaded {path} with {len(self._clients)} client(s)")
        return True

    def save(self, profile: str) -> None:
        """Write the profile file, replacing the previous one atomically."""
        path = self.profile_path(profile)
        self.logger.info(f"Saving {path}")
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            self.datadir.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as out:
                yaml.safe_dump(self.to_dict(), out, default_flow_style=False)
            tmp_path.replace(path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            error_msg = f"Failed to save configuration {path}: {e}"
            raise ConfigError(error_msg, original_error=e) from e

    def to_dict(self) -> dict[str, Any]:
        """Return the serializable form of the whole profile."""
        return {
            CONFIG_KEY_GLOBALS: self._globals_to_dict(self.globals),
            CONFIG_KEY_CLIENTS: {
                name: self._client_to_dict(scope)
                for name, scope in self._clients.items()
            },
        }

    def dump(self) -> str:
        """Return the profile as YAML text."""
        return yaml.safe_dump(self.to_dict(), default_flow_style=False)

    # Global scope

    def get_global(self, key: str, default: Any = None) -> Any:
        """Return a global value, or default when the value is empty."""
        value = getattr(self.globals, self._check_key(key, GLOBAL_SCALARS))
        if default is not None and value in ("", None, []):
            return default
        return value

    def set_global(self, key: str, value: Any) -> None:
        """Overwrite a global value; None leaves it unchanged."""
        if value is None:
            return
        key = self._check_key(key, GLOBAL_SCALARS)
        setattr(self.globals, key, self._convert(key, value))

    def update_global(
        self,
        operation: "str | UpdateOperation",
        key: str,
        value: Any,
        delimiter: str | None = None,
    ) -> None:
        """Add to or delete from a global setting.

        Raises:
            InvalidOperationError: If the operation tag or key is unknown

        """
        operation = UpdateOperation.parse(operation)
        key = self._check_key(key, GLOBAL_SCALARS)
        if value is None:
            return
        defaults = GlobalConfig()
        self._apply_update(self.globals, defaults, operation, key, value, delimiter)
        self.logger.info(f"{self._verb(operation)} global {key}={value}")

    # Client scope

    def clients(self) -> list[str]:
        """Return the configured client names in insertion order."""
        return list(self._clients)

    def has_client(self, client: str) -> bool:
        """Whether a scope exists for the client."""
        return client in self._clients

    def client(self, client: str) -> ClientConfig:
        """Return a client's scope, creating it with defaults on first use."""
        if client not in self._clients:
            self.logger.debug(f"Adding client {client}")
            self._clients[client] = ClientConfig()
        return self._clients[client]

    def delete_client(self, client: str) -> bool:
        """Remove a client's scope; generations on disk are left alone."""
        if client not in self._clients:
            self.logger.warning(f"Client {client} not found in configuration")
            return False
        del self._clients[client]
        self.logger.info(f"Deleted client {client}")
        return True

    def get_client(self, client: str, key: str, default: Any = None) -> Any:
        """Return a client value, or default when the value is unset or empty."""
        value = getattr(self.client(client), self._check_key(key, CLIENT_SCALARS))
        if default is not None and value in ("", None, []):
            return default
        return value

    def set_client(self, client: str, key: str, value: Any) -> None:
        """Overwrite a client value; None leaves it unchanged."""
        if value is None:
            return
        key = self._check_key(key, CLIENT_SCALARS)
        setattr(self.client(client), key, self._convert(key, value))

    def update_client(
        self,
        client: str,
        operation: "str | UpdateOperation",
        key: str,
        value: Any,
        delimiter: str | None = None,
    ) -> None:
        """Add to or delete from a client setting.

        Raises:
            InvalidOperationError: If the operation tag or key is unknown

        """
        operation = UpdateOperation.parse(operation)
        key = self._check_key(key, CLIENT_SCALARS)
        if value is None:
            return
        defaults = ClientConfig()
        scope = self.client(client)
        self._apply_update(scope, defaults, operation, key, value, delimiter)
        self.logger.info(f"{self._verb(operation)} {client} {key}={value}")

    def get_client_key_list(self, client: str, key: str) -> list[str]:
        """Return the global list followed by the client's additions."""
        if key not in LIST_KEYS:
            error_msg = f"'{key}' is not a list setting"
            raise InvalidOperationError(error_msg)
        return merge_items(getattr(self.globals, key), getattr(self.client(client), key))

    def get_client_address(self, client: str) -> str:
        """Return the address to reach a client, the client name by default."""
        address = self.client(client).address or client
        return "localhost" if address == "127.0.0.1" else address

    def get_client_ninc(self, client: str) -> int:
        """Return the client's retention depth, inherited from globals if unset."""
        ninc = self.client(client).ninc
        return self.globals.ninc if ninc is None else ninc

    def get_client_compress(self, client: str) -> bool:
        """Return whether transfers for the client are compressed."""
        compress = self.client(client).compress
        return self.globals.compress if compress is None else compress

    def client_settings(self, client: str) -> ClientSettings:
        """Return the effective settings for a client."""
        return ClientSettings(
            client=client,
            address=self.get_client_address(client),
            includes=self.get_client_key_list(client, "includes"),
            excludes=self.get_client_key_list(client, "excludes"),
            opts=self.get_client_key_list(client, "opts"),
            ninc=self.get_client_ninc(client),
            compress=self.get_client_compress(client),
        )

    # Generation table

    def get_incremental(self, client: str, slot: int) -> str:
        """Return the generation name in a slot, "" if the slot is unused."""
        return self.client(client).incrementals.setdefault(int(slot), "")

    def set_incremental(self, client: str, slot: int, name: str) -> None:
        """Point a slot at a generation name ("" frees the slot)."""
        self.client(client).incrementals[int(slot)] = name
        self.logger.debug(f"set {client} incrementals[{slot}]={name}")

    def incrementals(self, client: str) -> dict[int, str]:
        """Return a copy of a client's slot table."""
        return dict(self.client(client).incrementals)

    def replace_incrementals(self, client: str, table: dict[int, str]) -> None:
        """Replace a client's slot table, e.g. to undo a rotation."""
        self.client(client).incrementals = dict(table)

    # Internals

    @staticmethod
    def _verb(operation: UpdateOperation) -> str:
        return "Adding" if operation is UpdateOperation.ADD else "Deleting"

    @staticmethod
    def _check_key(key: str, scalars: tuple[str, ...]) -> str:
        if key in scalars or key in LIST_KEYS:
            return key
        error_msg = f"Unknown configuration key: {key!r}"
        raise InvalidOperationError(error_msg)

    @staticmethod
    def _convert(key: str, value: Any) -> Any:
        if key in LIST_KEYS:
            return split_items(value, LIST_DELIMITERS[key])
        return _convert_scalar(key, value)

    def _apply_update(
        self,
        scope: GlobalConfig | ClientConfig,
        defaults: GlobalConfig | ClientConfig,
        operation: UpdateOperation,
        key: str,
        value: Any,
        delimiter: str | None,
    ) -> None:
        if key in LIST_KEYS:
            current = getattr(scope, key)
            if operation is UpdateOperation.ADD:
                items = split_items(value, delimiter or LIST_DELIMITERS[key])
                setattr(scope, key, merge_items(current, items))
            elif delimiter is None:
                setattr(scope, key, [])
            else:
                setattr(scope, key, remove_items(current, split_items(value, delimiter)))
            return

        if operation is UpdateOperation.ADD:
            setattr(scope, key, _convert_scalar(key, value))
        else:
            setattr(scope, key, getattr(defaults, key))

    def _parse_globals(self, data: Any) -> GlobalConfig:
        if not isinstance(data, dict):
            error_msg = f"'{CONFIG_KEY_GLOBALS}' is not a mapping"
            raise ConfigError(error_msg)
        config = GlobalConfig()
        version = data.get(CONFIG_KEY_VERSION)
        if isinstance(version, dict):
            config.version = ConfigVersion(
                major=str(version.get("major", config.version.major)),
                minor=str(version.get("minor", config.version.minor)),
                revision=str(version.get("revision", config.version.revision)),
            )
        for key in GLOBAL_SCALARS:
            if data.get(key) is not None:
                setattr(config, key, _convert_scalar(key, data[key]))
        for key in LIST_KEYS:
            config_items = split_items(data.get(key), LIST_DELIMITERS[key])
            setattr(config, key, config_items)
        self._warn_unknown("globals", data, (*GLOBAL_SCALARS, *LIST_KEYS, CONFIG_KEY_VERSION))
        return config

    def _parse_client(self, name: str, data: Any) -> ClientConfig:
        if not isinstance(data, dict):
            error_msg = f"Client '{name}' is not a mapping"
            raise ConfigError(error_msg)
        config = ClientConfig()
        for key in CLIENT_SCALARS:
            if data.get(key) is not None and data.get(key) != "":
                setattr(config, key, _convert_scalar(key, data[key]))
        for key in LIST_KEYS:
            setattr(config, key, split_items(data.get(key), LIST_DELIMITERS[key]))

        table = data.get(CONFIG_KEY_INCREMENTALS) or {0: ""}
        if not isinstance(table, dict):
            error_msg = f"Incrementals of client '{name}' are not a mapping"
            raise ConfigError(error_msg)
        try:
            config.incrementals = {
                int(slot): "" if gen is None else str(gen) for slot, gen in table.items()
            }
        except ValueError as e:
            error_msg = f"Invalid incremental slot for client '{name}': {e}"
            raise ConfigError(error_msg, original_error=e) from e
        self._warn_unknown(
            f"client {name}",
            data,
            (*CLIENT_SCALARS, *LIST_KEYS, CONFIG_KEY_INCREMENTALS),
        )
        return config

    def _warn_unknown(self, scope: str, data: dict, known: tuple[str, ...]) -> None:
        for key in data:
            if key not in known:
                self.logger.warning(f"Ignoring unknown key '{key}' in {scope}")

    @staticmethod
    def _globals_to_dict(config: GlobalConfig) -> dict[str, Any]:
        data: dict[str, Any] = {
            CONFIG_KEY_VERSION: {
                "major": config.version.major,
                "minor": config.version.minor,
                "revision": config.version.revision,
            },
        }
        for item in fields(config):
            if item.name == CONFIG_KEY_VERSION:
                continue
            value = getattr(config, item.name)
            if item.name in LIST_KEYS:
                value = join_items(value, LIST_DELIMITERS[item.name])
            elif item.name == "ninc":
                value = str(value)
            data[item.name] = value
        return data

    @staticmethod
    def _client_to_dict(config: ClientConfig) -> dict[str, Any]:
        return {
            "address": config.address,
            "ninc": "" if config.ninc is None else str(config.ninc),
            "compress": config.compress,
            "includes": join_items(config.includes, LIST_DELIMITERS["includes"]),
            "excludes": join_items(config.excludes, LIST_DELIMITERS["excludes"]),
            "opts": join_items(config.opts, LIST_DELIMITERS["opts"]),
            CONFIG_KEY_INCREMENTALS: {
                str(slot): name for slot, name in sorted(config.incrementals.items())
            },
        }
