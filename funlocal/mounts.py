"""Bind mounts of function containers.

Mounts are plain `docker.types.Mount` objects. The code mount targets `/code`
for a code directory and `/code/<name>` for a single file (e.g. a jar); NAS,
temporary directory and install-target mounts are composed by the callers.
"""

import json
import logging
import os
import posixpath
from dataclasses import dataclass
from typing import List, Optional

from docker.types import Mount

from funlocal.config import LocalConfig
from funlocal.env import NAS_AUTO_MOUNT_DIR
from funlocal.function import NasConfig

CODE_ROOT = "/code"
NAS_LOCAL_ROOT = os.path.join(".fun", "nas")


@dataclass
class InstallTarget:
    """A host directory receiving installed dependencies, mounted at `container_path`."""

    host_path: str
    container_path: str


def bind_mount(source: str, target: str, read_only: bool = False) -> Mount:
    return Mount(target=target, source=source, type="bind", read_only=read_only)


def resolve_code_uri_to_mount(abs_code_uri: str, read_only: bool = True) -> Mount:
    """
    Mount the function code.

    :param abs_code_uri: code directory or single code file.
    :param read_only: whether the container may modify the code.
    :return: the code mount.
    :raises FileNotFoundError: if the code location doesn't exist.
    """
    abs_code_uri = os.path.abspath(abs_code_uri)
    if os.path.isdir(abs_code_uri):
        target = CODE_ROOT
    elif os.path.exists(abs_code_uri):
        # os.path.join would produce a Windows path on Windows hosts
        target = posixpath.join(CODE_ROOT, os.path.basename(abs_code_uri))
    else:
        raise FileNotFoundError(f"Code location {abs_code_uri} doesn't exist")
    return bind_mount(abs_code_uri, target, read_only)


def nas_local_dir(base_dir: str, server_host: str, server_path: str) -> str:
    return os.path.join(
        os.path.abspath(base_dir), NAS_LOCAL_ROOT, server_host, server_path.strip("/")
    )


def resolve_nas_config_to_mounts(
    base_dir: str, service_name: str, nas_config: Optional[NasConfig]
) -> List[Mount]:
    """
    Mount a local directory in place of every NAS mount point of a service.

    The local directories live under `<base_dir>/.fun/nas` and are created if
    they don't exist yet.

    :param base_dir: directory of the function template.
    :param service_name: name of the service owning the NAS configuration.
    :param nas_config: NAS configuration, or None.
    :return: one read-write mount per mount point.
    """
    if nas_config is None:
        return []

    if nas_config.auto:
        mappings = [(nas_local_dir(base_dir, "auto-default", service_name), NAS_AUTO_MOUNT_DIR)]
    else:
        mappings = [
            (nas_local_dir(base_dir, m.server_host, m.server_path), m.mount_dir)
            for m in nas_config.mount_points
        ]

    mounts = []
    for local_dir, remote_dir in mappings:
        os.makedirs(local_dir, exist_ok=True)
        logging.info(f"Mounting local nas mock dir {local_dir} into container {remote_dir}")
        mounts.append(bind_mount(local_dir, remote_dir))
    return mounts


def resolve_tmp_dir_to_mount(abs_tmp_dir: Optional[str]) -> Optional[Mount]:
    if not abs_tmp_dir:
        return None
    return bind_mount(os.path.abspath(abs_tmp_dir), "/tmp")


def convert_install_targets_to_mounts(targets: Optional[List[InstallTarget]]) -> List[Mount]:
    mounts = []
    for target in targets or []:
        os.makedirs(target.host_path, exist_ok=True)
        mounts.append(bind_mount(os.path.abspath(target.host_path), target.container_path))
    return mounts


def shared_paths_of_docker_for_mac(config: LocalConfig) -> List[str]:
    """
    File-sharing allowlist of Docker Desktop for Mac.

    :return: paths from the Docker Desktop settings, or the documented defaults
             when the settings don't define them or can't be read.
    """
    try:
        with open(config.docker_settings_path, "r") as f:
            settings = json.load(f)
    except (OSError, ValueError):
        return config.default_file_sharing_paths
    return settings.get("defaultFileSharingPaths", config.default_file_sharing_paths)


def find_paths_out_of_shared_paths(mounts: List[Mount], config: LocalConfig) -> List[str]:
    """
    :return: mount sources outside of every shared path prefix.
    """
    shared_paths = shared_paths_of_docker_for_mac(config)
    return [
        mount["Source"]
        for mount in mounts
        if not any(mount["Source"].startswith(shared) for shared in shared_paths)
    ]


def transform_path_for_virtualbox(source: str) -> str:
    """
    Rewrite a Windows path for the VirtualBox VM of Docker Toolbox.

    C:\\Users\\image_crawler\\code -> /c/Users/image_crawler/code
    """
    source_path = source.replace(":", "").replace("\\", "/")
    if source_path:
        source_path = source_path[0].lower() + source_path[1:]
    return "/" + source_path


def transform_mounts_for_toolbox(mounts: List[Mount]) -> List[Mount]:
    result = []
    for mount in mounts:
        replaced = Mount(
            target=mount["Target"],
            source=transform_path_for_virtualbox(mount["Source"]),
            type=mount["Type"],
            read_only=mount["ReadOnly"],
        )
        result.append(replaced)
    return result
