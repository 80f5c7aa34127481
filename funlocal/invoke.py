"""Drivers running a function of a template in a local container.

`LocalInvoke` runs the function once for an event and returns when the
container exits. `LocalStart` starts the runtime mock server, which keeps
serving invocations until the returned handle is stopped.
"""

import json
import os
import uuid
from typing import Dict, List, Optional

import click
from docker.types import Mount

from funlocal.container import ContainerHandle, ContainerManager, RunResult
from funlocal.debug import IDE_PYCHARM, generate_vscode_debug_config, pycharm_debug_tips
from funlocal.env import generate_docker_envs
from funlocal.function import FunctionProps, NasConfig
from funlocal.mounts import (
    resolve_code_uri_to_mount,
    resolve_nas_config_to_mounts,
    resolve_tmp_dir_to_mount,
    transform_mounts_for_toolbox,
)
from funlocal.opts import (
    ContainerSpec,
    generate_docker_cmd,
    generate_local_invoke_opts,
    generate_local_start_opts,
    resolve_docker_user,
)
from funlocal.runtime import resolve_runtime_to_image
from funlocal.utils import LoggingBase


class Invoke(LoggingBase):
    """
    Resolution shared by the drivers: image, mounts, environment and user.

    Attributes:
        image: runtime image of the function.
        mounts: code, NAS and temporary directory mounts.
        envs: container environment.
        docker_user: "uid:gid" the function runs as.
        spec: container descriptor, available after `init`.
    """

    def __init__(
        self,
        manager: ContainerManager,
        service_name: str,
        service_props: dict,
        function_name: str,
        function_props: FunctionProps,
        debug_port: Optional[int] = None,
        debug_ide: Optional[str] = None,
        base_dir: str = ".",
        tmp_dir: Optional[str] = None,
        credentials: Optional[Dict[str, str]] = None,
    ):
        super().__init__()
        self._manager = manager
        self.service_name = service_name
        self.service_props = service_props or {}
        self.function_name = function_name
        self.function_props = function_props
        self.runtime = function_props.runtime
        self.debug_port = debug_port
        self.debug_ide = debug_ide
        self.base_dir = base_dir
        self.tmp_dir = tmp_dir
        self.credentials = credentials
        self.nas_config: Optional[NasConfig] = NasConfig.deserialize(
            self.service_props.get("NasConfig")
        )
        self.code_uri = os.path.join(os.path.abspath(base_dir), function_props.code_uri)
        self.container_name = f"fun-local-{uuid.uuid4().hex[0:12]}"

        self.image: Optional[str] = None
        self.mounts: List[Mount] = []
        self.envs: Dict[str, str] = {}
        self.docker_user: Optional[str] = None
        self.cmd: List[str] = []
        self.spec: Optional[ContainerSpec] = None
        self._initialized = False

    def init(self):
        self.image = resolve_runtime_to_image(self.runtime, config=self._manager.config)
        self._manager.image_manager.pull_image_if_need(self.image)

        self.mounts = [resolve_code_uri_to_mount(self.code_uri)]
        self.mounts += resolve_nas_config_to_mounts(
            self.base_dir, self.service_name, self.nas_config
        )
        tmp_mount = resolve_tmp_dir_to_mount(self.tmp_dir)
        if tmp_mount is not None:
            self.mounts.append(tmp_mount)
        if self._manager.is_docker_toolbox():
            self.logging.warning(
                "Docker Toolbox detected, mount sources are rewritten to VirtualBox paths. "
                "For a better experience, please upgrade to Docker Desktop."
            )
            self.mounts = transform_mounts_for_toolbox(self.mounts)

        self.docker_user = resolve_docker_user(self.nas_config)
        self._initialized = True

    def _ensure_initialized(self):
        if not self._initialized:
            self.init()


class LocalInvoke(Invoke):
    @staticmethod
    def typename() -> str:
        return "Local.Invoke"

    def init(self):
        super().init()
        self.envs = generate_docker_envs(
            self.base_dir,
            self.function_props,
            self.debug_port,
            None,
            self.nas_config,
            debug_ide=self.debug_ide,
            credentials=self.credentials,
        )
        self.cmd = generate_docker_cmd(self.function_props)
        self.spec = generate_local_invoke_opts(
            self.runtime,
            self.container_name,
            self.mounts,
            self.cmd,
            self.debug_port,
            self.envs,
            self.docker_user,
            self.debug_ide,
            image=self.image,
        )

    def show_debug_ide_tips(self):
        """Print how to attach the IDE selected with `debug_ide` to the function."""
        if self.debug_ide == IDE_PYCHARM:
            tips = pycharm_debug_tips(self.code_uri, self.debug_port)
            click.echo(click.style(tips, fg="yellow"), err=True)
            return

        config = generate_vscode_debug_config(
            self.service_name, self.function_name, self.runtime, self.code_uri, self.debug_port
        )
        click.echo(
            click.style(
                "you can paste this config to .vscode/launch.json, "
                "and then attach to your running function",
                fg="blue",
            ),
            err=True,
        )
        click.echo("///////////////// config begin /////////////////", err=True)
        click.echo(json.dumps(config, indent=4), err=True)
        click.echo("///////////////// config end /////////////////", err=True)

    def invoke(self, event=None, output=None, error=None) -> RunResult:
        """
        Invoke the function once.

        :param event: event payload, written to the container stdin.
        :param output: sink of the function output.
        :param error: sink of the function log.
        :return: exit status of the container.
        """
        self._ensure_initialized()
        if self.debug_port:
            self.show_debug_ide_tips()
            self.logging.info(
                f"Waiting for the debugger on port {self.debug_port}, "
                f"function {self.service_name}/{self.function_name}"
            )
        return self._manager.run(self.spec, event, output, error)


class LocalStart(Invoke):
    """
    Long-lived container of a function, running the runtime mock server.

    Invocations are passed to the running container with `ContainerHandle.exec`.
    """

    @staticmethod
    def typename() -> str:
        return "Local.Start"

    def init(self):
        super().init()
        self.envs = generate_docker_envs(
            self.base_dir,
            self.function_props,
            self.debug_port,
            None,
            self.nas_config,
            is_http_trigger=True,
            debug_ide=self.debug_ide,
            credentials=self.credentials,
        )
        self.cmd = generate_docker_cmd(self.function_props, http_mode=True)
        self.spec = generate_local_start_opts(
            self.runtime,
            self.container_name,
            self.mounts,
            self.cmd,
            self.debug_port,
            self.envs,
            self.docker_user,
            self.debug_ide,
            image=self.image,
        )

    def start(self, output=None, error=None) -> ContainerHandle:
        self._ensure_initialized()
        handle = self._manager.start_container(self.spec, output, error)
        self.logging.info(
            f"Function {self.service_name}/{self.function_name} is running "
            f"in container {handle.container_id}"
        )
        return handle
