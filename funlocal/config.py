"""Configuration of the local execution engine.

The LocalConfig class collects every tunable of the engine: the runtime image
version and mirror registry, the registry reachability probe, the image pull
policy, the exec polling interval and the Docker Desktop file-sharing settings
used to validate mount sources on macOS.
"""

import os
from typing import List, Optional

from funlocal.utils import LoggingHandlers


class LocalConfig:
    """Central configuration of funlocal.

    Attributes:
        image_version: tag version of the runtime images.
        registry_mirror: registry host used when the public registry is unreachable.
        probe_host, probe_port, probe_timeout: endpoint and timeout of the reachability probe.
        force_pull: pull images even when they already exist locally.
        disable_rich_output: log pull progress instead of drawing progress bars.
        exec_poll_interval: seconds between two inspections of a running exec.
        docker_settings_path: Docker Desktop for Mac settings file.
        default_file_sharing_paths: file-sharing allowlist used when the settings don't define one.
        verbose: print debug messages and command output.
        log_file: file receiving the log of every component, in addition to the console.
    """

    DEFAULT_IMAGE_VERSION = "1.6.0"
    DEFAULT_REGISTRY_MIRROR = "registry.cn-beijing.aliyuncs.com"
    DEFAULT_PROBE_HOST = "google.com"
    DEFAULT_PROBE_PORT = 443
    DEFAULT_PROBE_TIMEOUT = 1.0
    DEFAULT_EXEC_POLL_INTERVAL = 0.1
    DEFAULT_FILE_SHARING_PATHS = ["/Users", "/Volumes", "/private", "/tmp"]

    def __init__(self):
        self.image_version = LocalConfig.DEFAULT_IMAGE_VERSION
        self.registry_mirror = LocalConfig.DEFAULT_REGISTRY_MIRROR
        self.probe_host = LocalConfig.DEFAULT_PROBE_HOST
        self.probe_port = LocalConfig.DEFAULT_PROBE_PORT
        self.probe_timeout = LocalConfig.DEFAULT_PROBE_TIMEOUT
        self.force_pull = False
        self.disable_rich_output = False
        self.exec_poll_interval = LocalConfig.DEFAULT_EXEC_POLL_INTERVAL
        self.docker_settings_path = os.path.join(
            os.path.expanduser("~"), "Library/Group Containers/group.com.docker/settings.json"
        )
        self.default_file_sharing_paths: List[str] = list(
            LocalConfig.DEFAULT_FILE_SHARING_PATHS
        )
        self.verbose = False
        self.log_file: Optional[str] = None
        self._logging_handlers: Optional[LoggingHandlers] = None

    @staticmethod
    def typename() -> str:
        return "Local.Config"

    @staticmethod
    def from_env() -> "LocalConfig":
        """Create a configuration with defaults overridden by environment variables.

        FUN_VERBOSE enables verbose output when it holds an integer larger than zero,
        FUN_FORCE_PULL enables the force-pull policy when set to "true" or "1".
        FUN_LOG_FILE names a file the log is written to.

        Returns:
            LocalConfig: the configuration.
        """
        cfg = LocalConfig()
        try:
            cfg.verbose = int(os.environ.get("FUN_VERBOSE", "0")) > 0
        except ValueError:
            cfg.verbose = False
        cfg.force_pull = os.environ.get("FUN_FORCE_PULL", "false").lower() in ("true", "1")
        cfg.log_file = os.environ.get("FUN_LOG_FILE") or None
        return cfg

    def serialize(self) -> dict:
        return {
            "image_version": self.image_version,
            "registry_mirror": self.registry_mirror,
            "probe": {
                "host": self.probe_host,
                "port": self.probe_port,
                "timeout": self.probe_timeout,
            },
            "force_pull": self.force_pull,
            "disable_rich_output": self.disable_rich_output,
            "exec_poll_interval": self.exec_poll_interval,
            "docker_settings_path": self.docker_settings_path,
            "default_file_sharing_paths": self.default_file_sharing_paths,
            "verbose": self.verbose,
            "log_file": self.log_file,
        }

    @staticmethod
    def deserialize(config: dict) -> "LocalConfig":
        """Create a configuration from a dictionary, missing keys keep their defaults.

        Args:
            config: dictionary in the format produced by `serialize`.

        Returns:
            LocalConfig: the configuration.
        """
        cfg = LocalConfig()
        probe = config.get("probe", {})
        cfg.probe_host = probe.get("host", cfg.probe_host)
        cfg.probe_port = int(probe.get("port", cfg.probe_port))
        cfg.probe_timeout = float(probe.get("timeout", cfg.probe_timeout))
        for key in [
            "image_version",
            "registry_mirror",
            "force_pull",
            "disable_rich_output",
            "exec_poll_interval",
            "docker_settings_path",
            "default_file_sharing_paths",
            "verbose",
            "log_file",
        ]:
            if key in config:
                setattr(cfg, key, config[key])
        return cfg

    def logging_handlers(self) -> LoggingHandlers:
        """
        Handlers shared by every component created with this configuration.

        Created on first use, so the log file is opened (and truncated) once.
        """
        if self._logging_handlers is None:
            self._logging_handlers = LoggingHandlers(verbose=self.verbose, filename=self.log_file)
        return self._logging_handlers
