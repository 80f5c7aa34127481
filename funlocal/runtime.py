"""Mapping of function runtimes to the runtime container images.

Runtime images are published both on Docker Hub and on a mirror registry.
The mirror is used when a reachability probe shows that the public internet
cannot be reached quickly; the probe runs at most once per process.
"""

import logging
import socket
import threading
from types import MappingProxyType
from typing import List, Mapping, Optional

from funlocal.config import LocalConfig
from funlocal.exceptions import UnsupportedRuntimeError

IMAGE_REPOSITORY = "aliyunfc/runtime-{family}"

RUNTIME_IMAGE_MAP: Mapping[str, str] = MappingProxyType(
    {
        "nodejs6": "nodejs6",
        "nodejs8": "nodejs8",
        "nodejs10": "nodejs10",
        "python2.7": "python2.7",
        "python3": "python3.6",
        "java8": "java8",
        "php7.2": "php7.2",
        "custom": "custom",
    }
)


def supported_runtimes() -> List[str]:
    return list(RUNTIME_IMAGE_MAP.keys())


class RegistryProbe:
    """
    Memoized check whether the host sits inside a restricted network.

    The first call opens a TCP connection to a well-known external endpoint.
    A connection within the timeout means the public registry is usable;
    any connection error, timeout included, selects the mirror registry.
    Concurrent first callers wait for the single in-flight probe.
    """

    def __init__(self, config: Optional[LocalConfig] = None):
        self._config = config or LocalConfig()
        self._lock = threading.Lock()
        self._restricted: Optional[bool] = None
        self.probes = 0

    def _connect(self) -> bool:
        self.probes += 1
        try:
            with socket.create_connection(
                (self._config.probe_host, self._config.probe_port),
                timeout=self._config.probe_timeout,
            ):
                return False
        except OSError as e:
            logging.debug(f"Registry probe to {self._config.probe_host} failed: {e}")
            return True

    def is_restricted(self) -> bool:
        if self._restricted is None:
            with self._lock:
                if self._restricted is None:
                    self._restricted = self._connect()
        return self._restricted


_default_probe: Optional[RegistryProbe] = None
_default_probe_lock = threading.Lock()


def default_probe() -> RegistryProbe:
    """Process-wide probe shared by every resolver that doesn't inject its own."""
    global _default_probe
    with _default_probe_lock:
        if _default_probe is None:
            _default_probe = RegistryProbe()
        return _default_probe


def resolve_docker_registry(
    probe: Optional[RegistryProbe] = None, config: Optional[LocalConfig] = None
) -> str:
    """
    Select the registry for runtime images.

    :return: mirror registry host, or an empty string for the default registry.
    """
    config = config or LocalConfig()
    probe = probe or default_probe()
    if probe.is_restricted():
        return config.registry_mirror
    return ""


def resolve_runtime_to_image(
    runtime: str,
    is_build: bool = False,
    probe: Optional[RegistryProbe] = None,
    config: Optional[LocalConfig] = None,
) -> str:
    """
    Map a logical runtime name to a concrete image reference.

    :param runtime: runtime identifier, e.g. "python3" or "nodejs8".
    :param is_build: return the build variant of the image, which carries
                     the compilers and package managers used by installations.
    :param probe: reachability probe; defaults to the process-wide one.
    :param config: engine configuration.
    :return: image reference, prefixed with the mirror registry if needed.
    :raises UnsupportedRuntimeError: if the runtime has no image.
    """
    if runtime not in RUNTIME_IMAGE_MAP:
        raise UnsupportedRuntimeError(runtime)

    config = config or LocalConfig()
    repository = IMAGE_REPOSITORY.format(family=RUNTIME_IMAGE_MAP[runtime])
    if is_build:
        image_name = f"{repository}:build-{config.image_version}"
    else:
        image_name = f"{repository}:{config.image_version}"

    registry = resolve_docker_registry(probe, config)
    if registry:
        image_name = f"{registry}/{image_name}"

    logging.debug(f"Resolved runtime {runtime} to image {image_name}")
    return image_name
