"""Error taxonomy of the local execution engine.

Engine errors are classified once, right where they are raised, into the
tagged variants below; callers never inspect engine messages themselves.
"""

from typing import Callable, List, Optional

import docker

FAQ_URL = "https://github.com/alibaba/funcraft/blob/master/docs/usage/faq-zh.md"
INSTALLATION_URL = "https://github.com/alibaba/funcraft/blob/master/docs/usage/installation.md"
SHARED_DRIVES_URL = "https://docs.docker.com/docker-for-windows/#shared-drives"

# Trigger substrings of engine create errors, matched verbatim.
INVALID_MOUNT_CONFIG = "invalid mount config for type"
DRIVE_NOT_SHARED = "drive is not shared"


class FunLocalError(Exception):
    """Base class of all errors raised by funlocal."""


class UnsupportedRuntimeError(FunLocalError):
    def __init__(self, runtime: str):
        super().__init__(f"invalid runtime name {runtime}")
        self.runtime = runtime


class PathNotSharedError(FunLocalError):
    def __init__(self, paths: List[str]):
        super().__init__(
            f"Please add directory '{','.join(paths)}' to Docker File sharing list, "
            f"more information please refer to {FAQ_URL}"
        )
        self.paths = paths


class LegacyBackendUnsupportedError(FunLocalError):
    def __init__(self):
        super().__init__(
            "We detected that you are using docker toolbox. "
            "For a better experience, please upgrade 'docker for windows'.\n"
            f"You can refer to {INSTALLATION_URL}."
        )


class MountConfigError(FunLocalError):
    def __init__(self, message: str):
        super().__init__(
            "The default host machine path for docker toolbox is under 'C:\\Users', "
            "Please make sure your project is in this directory. If you want to mount "
            f"other disk paths, please refer to {FAQ_URL} ."
        )
        self.engine_message = message


class DriveNotSharedError(FunLocalError):
    def __init__(self, message: str):
        super().__init__(f"{message}More information please refer to {SHARED_DRIVES_URL}")
        self.engine_message = message


class CommandExecutionError(FunLocalError):
    """A command executed inside a running container returned a non-zero code."""

    def __init__(self, command, exit_code: int):
        if isinstance(command, (list, tuple)):
            command = " ".join(command)
        super().__init__(f"{command} exited with code {exit_code}")
        self.command = command
        self.exit_code = exit_code


class StreamBuildError(FunLocalError):
    """The engine reported an error record while building an image."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ImagePullError(FunLocalError):
    """The engine reported an error record while pulling an image."""

    def __init__(self, image: str, message: str):
        super().__init__(f"Failed to pull image {image}: {message}")
        self.image = image
        self.message = message


def classify_create_error(
    error: docker.errors.APIError, is_toolbox: Callable[[], bool], is_windows: bool
) -> Optional[FunLocalError]:
    """
    Map a container-creation failure to a tagged error.

    :param error: the error returned by the engine.
    :param is_toolbox: capability query, called only when the message matches.
    :param is_windows: whether the host runs Windows.
    :return: the tagged error, or None when the failure is not a known one.
    """
    message = str(error.explanation or error)
    if INVALID_MOUNT_CONFIG in message and is_toolbox():
        return MountConfigError(message)
    if DRIVE_NOT_SHARED in message and is_windows:
        return DriveNotSharedError(message)
    return None
