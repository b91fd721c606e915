"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Configuration Management Module
"""

import os
import json
import logging
from typing import Optional

from radioflasher.constants import (
    COMMAND_TIMEOUT,
    DEFAULT_CACHE_TTL,
    WAIT_FOR_DEVICE_TIMEOUT,
)

HOME_PATH = os.path.join(os.path.expanduser("~"), ".radioflasher")
CONFIG_FILE_DEFAULT = "config.json"
CATALOG_FILE_DEFAULT = "radio_firmware.json"

logger = logging.getLogger("Config")


class ConfigManager:
    """
    Manages application configuration settings for Radioflasher.
    It handles loading configuration from a JSON file in the home directory,
    saving changes, and providing typed access to the values the transport,
    catalog and flasher need. One instance is created per process and passed
    to the services that need it.
    """

    def __init__(
        self,
        config_filename: Optional[str] = None,
        home_path: Optional[str] = None,
    ):
        self.home_path = home_path or HOME_PATH
        self.config_file_path = os.path.join(
            self.home_path, config_filename or CONFIG_FILE_DEFAULT
        )
        self._config = {}
        self._load_config()
        logger.debug(f"ConfigManager initialized for {self.config_file_path}.")

    def _load_config(self):
        """
        Loads the configuration from the configuration file.
        If the file doesn't exist, an empty configuration is used.
        """
        if os.path.exists(self.config_file_path):
            try:
                with open(self.config_file_path, "r") as file:
                    self._config = json.load(file)
            except json.JSONDecodeError:
                logger.error(
                    f"Error: Configuration file {self.config_file_path} "
                    "is not a valid JSON. Resetting configuration."
                )
                self._config = {}
        else:
            self._config = {}

    def _ensure_home(self) -> bool:
        if not os.path.exists(self.home_path):
            try:
                os.makedirs(self.home_path)
            except OSError as e:
                logger.error(
                    f"Error: Unable to create configuration directory {self.home_path}: {e}"
                )
                return False
        return True

    def _save_config(self):
        """
        Saves the current configuration to the configuration file.
        Ensures the configuration directory exists.
        """
        if not self._ensure_home():
            return
        try:
            with open(self.config_file_path, "w") as f:
                json.dump(self._config, f, indent=4)
        except IOError as e:
            logger.error(
                f"Error: Unable to save configuration to {self.config_file_path}: {e}"
            )

    def get_value(self, key, default=None):
        """
        Retrieves a value from the configuration.
        Args:
            key (str): The configuration key to retrieve.
            default: The default value to return if the key is not found.
        Returns:
            The value associated with the key or the default value.
        """
        return self._config.get(key, default)

    def set_value(self, key, value):
        """
        Sets a value in the configuration and saves the configuration file.
        A value of None removes the key.
        """
        if value is None:
            self.remove_key(key)
            return
        self._config[key] = value
        self._save_config()

    def remove_key(self, key):
        if key in self._config:
            del self._config[key]
            self._save_config()

    def list_all(self):
        """
        Returns all configuration keys and values as a dictionary.
        """
        return self._config.copy()

    def _get_number(self, key, default, cast=float):
        value = self._config.get(key, default)
        try:
            return cast(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid value for '{key}': {value!r}, using {default}")
            return default

    @property
    def cache_ttl(self) -> float:
        return self._get_number("cache-ttl", DEFAULT_CACHE_TTL)

    @property
    def command_timeout(self) -> float:
        return self._get_number("command-timeout", COMMAND_TIMEOUT)

    @property
    def wait_timeout(self) -> float:
        return self._get_number("wait-timeout", WAIT_FOR_DEVICE_TIMEOUT)

    @property
    def download_dir(self) -> str:
        return self._config.get("download-dir") or os.path.join(
            self.home_path, "downloads"
        )

    @property
    def backup_dir(self) -> str:
        return self._config.get("backup-dir") or os.path.join(self.home_path, "backups")

    @property
    def local_catalog_path(self) -> str:
        return os.path.join(self.home_path, CATALOG_FILE_DEFAULT)

    def get_local_catalog(self):
        """
        Loads the local user firmware catalog override file.
        Returns:
            dict or None: The parsed JSON data if the file exists and is valid, otherwise None.
        """
        path = self.local_catalog_path
        if os.path.exists(path):
            try:
                with open(path, "rt") as file:
                    return json.load(file)
            except json.JSONDecodeError:
                logger.error(f"Warning: Catalog file {path} is not a valid JSON.")
        return None
