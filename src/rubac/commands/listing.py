"""Listing of global and client settings."""

import logging

from rubac.config import ConfigStore

LIST_COMPACT = "compact"


class SettingsLister:
    """Reports the effective settings of a profile."""

    def __init__(
        self,
        config_store: ConfigStore,
        logger: logging.Logger,
        profile: str,
        base_options: str,
        compact: bool = False,
    ) -> None:
        self.config_store = config_store
        self.logger = logger
        self.profile = profile
        self.base_options = base_options
        self.compact = compact
        self._globals_listed = False

    def _pp(self, key: str, value: str) -> None:
        self.logger.info(f"{key:>12}={value}")

    def list_globals(self) -> None:
        """Report the global settings, once per lister."""
        if self._globals_listed:
            return
        self._globals_listed = True

        self.logger.info("##### Global settings #####")
        self._pp("profile", self.profile)
        dest = self.config_store.get_global("dest")
        if dest:
            self._pp("dest", dest)
        else:
            self.logger.warning("Backup destination not set")
        self._pp("rsync opts", self.base_options)
        email = self.config_store.get_global("email")
        if email:
            self._pp("email", email)
            self._pp("smtp server", self.config_store.get_global("smtp"))

    def _list_key(self, key: str, items: list[str], delimiter: str) -> None:
        if not items:
            return
        if self.compact:
            self.logger.info(f"{key:>10}='{delimiter.join(items)}'")
            return
        if len(items) == 1:
            self.logger.info(f"{key:>10}={items[0]}")
            return
        self.logger.info(f"{key:>10}=")
        for item in items:
            self.logger.info(f"\t{item}")

    def list_client(self, client: str) -> None:
        """Report the merged settings of one client."""
        settings = self.config_store.client_settings(client)
        if settings.address != client:
            self.logger.info(f"##### {client}:{settings.address} #####")
        else:
            self.logger.info(f"##### {client} #####")
        self._list_key("includes", settings.includes, ",")
        self._list_key("excludes", settings.excludes, ",")
        self._list_key("opts", settings.opts, " ")
        self._list_key("ninc", [str(settings.ninc)], " ")
        if settings.compress:
            self._list_key("compress", ["true"], " ")
