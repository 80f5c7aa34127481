"""Container creation descriptors for the four execution modes.

* install - long-lived shell container in which installation commands are executed,
* local invoke - one-shot function invocation, the event is passed on stdin or as a flag,
* local start - long-lived mock server of a runtime serving HTTP invocations,
* sandbox - interactive or one-shot shell session for manual dependency work.

The builders are pure: they never talk to the engine, and the descriptor they
return is not modified afterwards.
"""

import base64
import logging
import shlex
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from docker.types import Mount

from funlocal.config import LocalConfig
from funlocal.debug import generate_docker_debug_opts
from funlocal.env import resolve_docker_env
from funlocal.function import FunctionProps, NasConfig
from funlocal.runtime import RegistryProbe, resolve_runtime_to_image

DEFAULT_SHELL = ("/bin/bash",)
DEFAULT_USER_ID = 10003
DEFAULT_GROUP_ID = 10003


@dataclass(frozen=True)
class ContainerSpec:
    """
    Everything needed to create a container.

    Attributes:
        image: image reference.
        command: argument vector.
        env: "KEY=VALUE" pairs, in order.
        mounts: bind mounts.
        user: "uid:gid", or empty for the image default.
        tty: allocate a pseudo-terminal.
        attach_stdin: attach stdin; together with open_stdin the engine
            closes stdin after the first client detaches (StdinOnce).
        open_stdin: keep stdin open even when nothing is attached.
        auto_remove: remove the container when it exits.
        entrypoint: entrypoint override.
        name: container name.
        hostname: container hostname.
        ports: exposed container ports.
        port_bindings: container port to host port.
    """

    image: str
    command: Tuple[str, ...] = DEFAULT_SHELL
    env: Tuple[str, ...] = ()
    mounts: Tuple[Mount, ...] = ()
    user: Optional[str] = None
    tty: bool = False
    attach_stdin: bool = False
    open_stdin: bool = False
    auto_remove: bool = True
    entrypoint: Optional[Tuple[str, ...]] = None
    name: Optional[str] = None
    hostname: Optional[str] = None
    ports: Tuple[int, ...] = ()
    port_bindings: Dict[int, int] = field(default_factory=dict)

    def create_kwargs(self, api) -> dict:
        """
        Keyword arguments of `docker.APIClient.create_container`.

        :param api: low-level engine client, used to build the host configuration.
        """
        host_config = api.create_host_config(
            auto_remove=self.auto_remove,
            mounts=list(self.mounts),
            port_bindings=dict(self.port_bindings) or None,
        )
        kwargs = {
            "image": self.image,
            "command": list(self.command),
            "environment": list(self.env),
            "tty": self.tty,
            # attached stdin implies OpenStdin and StdinOnce on the engine side
            "detach": not self.attach_stdin,
            "stdin_open": self.open_stdin,
            "host_config": host_config,
        }
        if self.user:
            kwargs["user"] = self.user
        if self.entrypoint:
            kwargs["entrypoint"] = list(self.entrypoint)
        if self.name:
            kwargs["name"] = self.name
        if self.hostname:
            kwargs["hostname"] = self.hostname
        if self.ports:
            kwargs["ports"] = list(self.ports)
        return kwargs


def generate_docker_cmd(
    function_props: FunctionProps,
    http_mode: bool = False,
    invoke_initializer: bool = True,
    event: Optional[bytes] = None,
) -> List[str]:
    """
    Arguments of the runtime bootstrap for one invocation.

    The event is passed base64-encoded as a flag when given, otherwise the
    bootstrap reads it from stdin.

    :param function_props: function properties.
    :param http_mode: invoke the function as an HTTP function.
    :param invoke_initializer: run the initializer before the handler.
    :param event: inline event payload.
    :return: argument vector.
    """
    cmd = ["-h", function_props.handler]

    if event is not None:
        if isinstance(event, str):
            event = event.encode("utf-8")
        cmd += ["--event", base64.b64encode(event).decode("ascii"), "--event-decode"]
    else:
        cmd.append("--stdin")

    if http_mode:
        cmd.append("--http")

    if function_props.initializer and invoke_initializer:
        cmd += ["-i", function_props.initializer]

    if function_props.initialization_timeout:
        cmd += ["--initializationTimeout", str(function_props.initialization_timeout)]

    logging.debug(f"docker cmd: {cmd}")
    return cmd


def resolve_docker_user(nas_config: Optional[NasConfig]) -> str:
    uid = DEFAULT_USER_ID
    gid = DEFAULT_GROUP_ID
    if nas_config is not None and not nas_config.auto:
        if nas_config.user_id != -1:
            uid = nas_config.user_id
        if nas_config.group_id != -1:
            gid = nas_config.group_id
    return f"{uid}:{gid}"


def resolve_mock_script(runtime: str) -> str:
    return f"/var/fc/runtime/{runtime}/mock.sh"


def generate_install_opts(
    image: str, mounts: Sequence[Mount], envs: Optional[Dict[str, str]]
) -> ContainerSpec:
    return ContainerSpec(
        image=image,
        command=DEFAULT_SHELL,
        env=tuple(resolve_docker_env(envs)),
        mounts=tuple(mounts),
        tty=True,
        auto_remove=True,
    )


def generate_sbox_opts(
    image: str,
    hostname: str,
    mounts: Sequence[Mount],
    envs: Optional[Dict[str, str]],
    cmd: Optional[str] = None,
    is_tty: bool = False,
    is_interactive: bool = False,
) -> ContainerSpec:
    """
    Descriptor of a sandbox container.

    :param cmd: shell command line, parsed with shell quoting rules; empty starts bash.
    :param is_tty: allocate a pseudo-terminal.
    :param is_interactive: attach stdin and keep it open.
    """
    argv = tuple(shlex.split(cmd or ""))
    return ContainerSpec(
        image=image,
        hostname=hostname,
        command=argv or DEFAULT_SHELL,
        env=tuple(resolve_docker_env(envs)),
        mounts=tuple(mounts),
        tty=is_tty,
        attach_stdin=is_interactive,
        open_stdin=is_interactive,
        auto_remove=True,
    )


def _resolve_image(
    runtime: str,
    image: Optional[str],
    probe: Optional[RegistryProbe],
    config: Optional[LocalConfig],
) -> str:
    if image:
        return image
    return resolve_runtime_to_image(runtime, probe=probe, config=config)


def generate_local_invoke_opts(
    runtime: str,
    container_name: str,
    mounts: Sequence[Mount],
    cmd: Sequence[str],
    debug_port: Optional[int],
    envs: Optional[Dict[str, str]],
    docker_user: str,
    debug_ide: Optional[str] = None,
    image: Optional[str] = None,
    probe: Optional[RegistryProbe] = None,
    config: Optional[LocalConfig] = None,
) -> ContainerSpec:
    """
    Descriptor of a one-shot invocation container.

    Stdin is attached so the event can be written to it; the debugger port is
    published only when `debug_port` is set.
    """
    debug_opts = generate_docker_debug_opts(runtime, debug_port, debug_ide) if debug_port else {}
    return ContainerSpec(
        image=_resolve_image(runtime, image, probe, config),
        name=container_name,
        command=tuple(cmd),
        env=tuple(resolve_docker_env(envs)),
        mounts=tuple(mounts),
        user=docker_user,
        tty=False,
        attach_stdin=True,
        open_stdin=True,
        auto_remove=True,
        ports=tuple(debug_opts.get("ports", ())),
        port_bindings=dict(debug_opts.get("port_bindings", {})),
    )


def generate_local_start_opts(
    runtime: str,
    name: str,
    mounts: Sequence[Mount],
    cmd: Sequence[str],
    debug_port: Optional[int],
    envs: Optional[Dict[str, str]],
    docker_user: str,
    debug_ide: Optional[str] = None,
    image: Optional[str] = None,
    probe: Optional[RegistryProbe] = None,
    config: Optional[LocalConfig] = None,
) -> ContainerSpec:
    """
    Descriptor of a long-lived function container.

    The runtime entrypoint is replaced by the mock server script of the runtime,
    which keeps serving invocations until the container is stopped.
    """
    debug_opts = generate_docker_debug_opts(runtime, debug_port, debug_ide) if debug_port else {}
    return ContainerSpec(
        image=_resolve_image(runtime, image, probe, config),
        name=name,
        command=tuple(cmd),
        env=tuple(resolve_docker_env(envs)),
        mounts=tuple(mounts),
        user=docker_user,
        entrypoint=(resolve_mock_script(runtime),),
        auto_remove=True,
        ports=tuple(debug_opts.get("ports", ())),
        port_bindings=dict(debug_opts.get("port_bindings", {})),
    )
