"""Lifecycle of function containers.

The manager creates containers from `ContainerSpec` descriptors and drives
them in one of three ways: a one-shot run with the event written to stdin,
a long-lived container executing commands on request, and an interactive
sandbox session bound to the host terminal. Every created container is
registered with the shutdown coordinator until it terminates.
"""

import contextlib
import os
import sys
import tarfile
import tempfile
import time
from collections import namedtuple
from typing import Dict, List, Optional, Sequence

import docker

from funlocal import streams
from funlocal.config import LocalConfig
from funlocal.env import add_install_target_env, resolve_docker_env
from funlocal.exceptions import (
    CommandExecutionError,
    LegacyBackendUnsupportedError,
    PathNotSharedError,
    classify_create_error,
)
from funlocal.images import ImageManager
from funlocal.mounts import (
    InstallTarget,
    convert_install_targets_to_mounts,
    find_paths_out_of_shared_paths,
    resolve_code_uri_to_mount,
)
from funlocal.opts import ContainerSpec, generate_install_opts, generate_sbox_opts
from funlocal.runtime import resolve_runtime_to_image
from funlocal.shutdown import ShutdownCoordinator
from funlocal.utils import LoggingBase, is_macos, is_windows

# exit status of a one-shot container, as reported by the engine wait
RunResult = namedtuple("RunResult", ["error", "status_code"])

# the engine needs a moment before stdin of a Docker Toolbox container is readable
TOOLBOX_STDIN_DELAY = 1.0


class ContainerHandle(LoggingBase):
    """
    A started, long-lived container.

    Commands are executed in it with `exec`; `stop` terminates it and removes
    it from the shutdown registry.
    """

    def __init__(
        self,
        docker_client: docker.DockerClient,
        coordinator: ShutdownCoordinator,
        config: LocalConfig,
        container_id: str,
    ):
        super().__init__()
        self._docker_client = docker_client
        self._coordinator = coordinator
        self._config = config
        self.container_id = container_id

    @staticmethod
    def typename() -> str:
        return "Local.Container"

    def stop(self):
        self._docker_client.api.stop(self.container_id)
        self._coordinator.deregister(self.container_id)

    def exec(
        self,
        cmd: Sequence[str],
        cwd: str = "",
        env: Optional[Dict[str, str]] = None,
        output=None,
        error=None,
        verbose: bool = False,
    ) -> int:
        """
        Run a command inside the container and wait for it to finish.

        The stdout of the command is discarded unless `verbose` is set; stderr
        is always forwarded. Termination is detected by inspecting the exec
        instance periodically, there is no upper bound on the waiting time.

        :param cmd: argument vector.
        :param cwd: working directory, the image default when empty.
        :param env: additional environment variables.
        :param output: stdout sink, `sys.stdout` by default.
        :param error: stderr sink, `sys.stderr` by default.
        :param verbose: forward stdout as well.
        :return: the exit code, always 0.
        :raises CommandExecutionError: if the command exits with a non-zero code.
        """
        api = self._docker_client.api
        self.logging.debug(f"docker exec cmd: {cmd}, cwd: {cwd}")
        exec_id = api.exec_create(
            self.container_id,
            list(cmd),
            stdout=True,
            stderr=True,
            stdin=False,
            tty=False,
            environment=resolve_docker_env(env),
            workdir=cwd or None,
        )["Id"]
        frames = api.exec_start(exec_id, stream=True, demux=True)

        output = output or sys.stdout
        error = error or sys.stderr
        thread = streams.pump(frames, output if verbose else streams.DevNull(), error, "exec")

        while True:
            data = api.exec_inspect(exec_id)
            if not data["Running"]:
                break
            time.sleep(self._config.exec_poll_interval)
        # the exec stream ends with the process
        thread.join()

        exit_code = data["ExitCode"]
        if exit_code != 0:
            raise CommandExecutionError(cmd, exit_code)
        return exit_code


class ContainerManager(LoggingBase):
    def __init__(
        self,
        docker_client: docker.DockerClient,
        coordinator: ShutdownCoordinator,
        config: Optional[LocalConfig] = None,
        image_manager: Optional[ImageManager] = None,
    ):
        super().__init__()
        self._docker_client = docker_client
        self._coordinator = coordinator
        self._config = config or LocalConfig()
        self._image_manager = image_manager or ImageManager(
            docker_client, coordinator, self._config
        )
        self.logging_handlers = self._config.logging_handlers()

    @staticmethod
    def typename() -> str:
        return "Local.Containers"

    @property
    def image_manager(self) -> ImageManager:
        return self._image_manager

    @property
    def coordinator(self) -> ShutdownCoordinator:
        return self._coordinator

    @property
    def config(self) -> LocalConfig:
        return self._config

    def is_docker_toolbox(self) -> bool:
        """
        Docker Toolbox runs the engine in a VirtualBox VM on Windows hosts.
        """
        if not is_windows():
            return False
        labels = self._docker_client.api.info().get("Labels") or []
        pairs = dict(label.split("=", 1) for label in labels if "=" in label)
        return pairs.get("provider") == "virtualbox"

    def create_container(self, spec: ContainerSpec) -> str:
        """
        Create a container and register it for teardown.

        :param spec: container descriptor.
        :return: id of the created container.
        :raises PathNotSharedError: on macOS, if a mount source isn't shared with the engine.
        :raises MountConfigError: on Docker Toolbox, if a mount source is outside its shared drive.
        :raises DriveNotSharedError: on Windows, if a drive isn't shared with the engine.
        """
        if is_macos() and spec.mounts:
            not_shared = find_paths_out_of_shared_paths(list(spec.mounts), self._config)
            if not_shared:
                raise PathNotSharedError(not_shared)

        api = self._docker_client.api
        try:
            container = api.create_container(**spec.create_kwargs(api))
        except docker.errors.APIError as e:
            classified = classify_create_error(e, self.is_docker_toolbox, is_windows())
            if classified is not None:
                raise classified from e
            raise

        container_id = container["Id"]
        self._coordinator.register(container_id)
        self.logging.debug(f"Created container {container_id} from image {spec.image}")
        return container_id

    def run(self, spec: ContainerSpec, event=None, output=None, error=None) -> RunResult:
        """
        Run a one-shot container to completion.

        Output forwarding is set up before the container starts, so nothing it
        prints is lost. The event is written to the container stdin, which is
        then closed.

        :param spec: container descriptor, with stdin attached.
        :param event: payload written to stdin.
        :param output: stdout sink, `sys.stdout` by default.
        :param error: stderr sink, `sys.stderr` by default.
        :return: the exit status reported by the engine.
        """
        api = self._docker_client.api
        output = output or sys.stdout
        error = error or sys.stderr

        container_id = self.create_container(spec)
        sock = None
        threads = []
        try:
            sock = api.attach_socket(
                container_id, params={"stdin": 1, "stdout": 1, "stderr": 1, "stream": 1}
            )

            if not is_windows():
                threads.append(
                    streams.pump(streams.socket_frames(sock, spec.tty), output, error, "run")
                )

            api.start(container_id)

            # the attach stream of a Windows engine doesn't carry the output
            if is_windows():
                frames = api.attach(container_id, stream=True, logs=True, demux=True)
                threads.append(streams.pump(frames, output, error, "run-logs"))

            if self.is_docker_toolbox():
                time.sleep(TOOLBOX_STDIN_DELAY)

            streams.write_event_and_close(sock, event)

            result = api.wait(container_id)
            self._coordinator.deregister(container_id)

            for thread in threads:
                thread.join()
        finally:
            if sock is not None:
                streams.close_stream(sock)

        return RunResult(result.get("Error"), result.get("StatusCode"))

    def start_container(self, spec: ContainerSpec, output=None, error=None) -> ContainerHandle:
        """
        Start a long-lived container.

        When a sink is passed, the container output is forwarded to it for as
        long as the container runs; the other side is discarded.

        :return: handle of the running container.
        """
        api = self._docker_client.api
        container_id = self.create_container(spec)

        try:
            api.start(container_id)
        except docker.errors.APIError as e:
            self.logging.error(f"Failed to start container {container_id}: {e}")

        if output is not None or error is not None:
            frames = api.attach(container_id, stream=True, logs=True, demux=True)
            streams.pump(
                frames, output or streams.DevNull(), error or streams.DevNull(), "container-logs"
            )

        return ContainerHandle(self._docker_client, self._coordinator, self._config, container_id)

    def _resolve_build_image(self, runtime: str, image_name: Optional[str]) -> str:
        if image_name:
            return image_name
        return resolve_runtime_to_image(runtime, is_build=True, config=self._config)

    def start_installation_container(
        self,
        runtime: str,
        code_uri: str,
        targets: Optional[List[InstallTarget]] = None,
        image_name: Optional[str] = None,
    ) -> ContainerHandle:
        """
        Start a build image container in which dependencies are installed.

        The code directory and the install targets are mounted writable.

        :raises LegacyBackendUnsupportedError: on Docker Toolbox.
        """
        self.logging.debug(f"runtime: {runtime}, codeUri: {code_uri}")
        if self.is_docker_toolbox():
            raise LegacyBackendUnsupportedError()

        image_name = self._resolve_build_image(runtime, image_name)
        mounts = [resolve_code_uri_to_mount(code_uri, read_only=False)]
        mounts += convert_install_targets_to_mounts(targets)

        self._image_manager.pull_image_if_need(image_name)

        envs = add_install_target_env({}, targets)
        return self.start_container(generate_install_opts(image_name, mounts, envs))

    def start_sbox_container(
        self,
        runtime: str,
        code_uri: Optional[str] = None,
        cmd: Optional[str] = None,
        envs: Optional[Dict[str, str]] = None,
        is_tty: bool = False,
        is_interactive: bool = False,
        image_name: Optional[str] = None,
        stdin=None,
        output=None,
        error=None,
    ):
        """
        Run a sandbox session and wait until the container exits.

        In interactive mode the host stdin is forwarded to the container, and
        typing Ctrl-P Ctrl-Q stops it. With a TTY the host terminal is switched
        to raw mode and its size follows the host window; the terminal is
        restored on every exit path.

        :param runtime: runtime whose build image is used.
        :param code_uri: code directory, mounted writable.
        :param cmd: command line; an interactive shell when empty.
        :param envs: environment variables.
        :param is_tty: allocate a pseudo-terminal.
        :param is_interactive: forward the host stdin.
        :param image_name: image overriding the runtime build image.
        """
        stdin = stdin or sys.stdin
        output = output or sys.stdout
        error = error or sys.stderr
        self.logging.debug(
            f"runtime: {runtime}, codeUri: {code_uri}, "
            f"isTty: {is_tty}, isInteractive: {is_interactive}"
        )

        image_name = self._resolve_build_image(runtime, image_name)
        mounts = []
        if code_uri:
            mounts.append(resolve_code_uri_to_mount(os.path.abspath(code_uri), read_only=False))

        spec = generate_sbox_opts(
            image_name,
            f"fc-{runtime}",
            mounts,
            envs,
            cmd=cmd,
            is_tty=is_tty,
            is_interactive=is_interactive,
        )
        api = self._docker_client.api
        container_id = self.create_container(spec)
        api.start(container_id)

        sock = api.attach_socket(
            container_id,
            params={
                "stdin": 1 if is_interactive else 0,
                "stdout": 1,
                "stderr": 1,
                "stream": 1,
                "logs": 1,
            },
        )

        if is_tty:
            frames = streams.socket_frames(sock, True)
        elif is_interactive or is_windows():
            # the attach stream doesn't carry the output in these modes
            frames = api.attach(container_id, stream=True, logs=True, demux=True)
        else:
            frames = streams.socket_frames(sock, False)
        output_thread = streams.pump(frames, output, error, "sbox")

        forwarder = None
        if is_interactive:

            def detach():
                self.logging.debug(f"Detaching from container {container_id}")
                api.stop(container_id)

            forwarder = streams.StdinForwarder(
                sock, detach, coordinator=self._coordinator, stdin=stdin
            )

        terminal = streams.RawTerminal(stdin.fileno()) if is_tty else contextlib.nullcontext()
        resizer = None
        try:
            with terminal:
                if is_tty:
                    resizer = streams.ResizeForwarder(
                        lambda rows, cols: api.resize(container_id, height=rows, width=cols),
                        output,
                    )
                    resizer.start()
                    # the shell prompt shows up only after some input
                    streams.raw_socket(sock).sendall(b" \b")
                if forwarder is not None:
                    forwarder.start()

                api.wait(container_id)
                output_thread.join()
        finally:
            if resizer is not None:
                resizer.stop()
            if forwarder is not None:
                forwarder.stop()
            streams.close_stream(sock)
            self._coordinator.deregister(container_id)

    def copy_from_image(self, image: str, src: str, dest: str):
        """
        Copy a path out of an image into a host directory.

        :param image: image reference.
        :param src: absolute path inside the image.
        :param dest: host directory, created if it doesn't exist.
        """
        api = self._docker_client.api
        container_id = api.create_container(image)["Id"]
        try:
            data, _ = api.get_archive(container_id, src)
            os.makedirs(dest, exist_ok=True)
            with tempfile.TemporaryFile() as archive:
                for chunk in data:
                    archive.write(chunk)
                archive.seek(0)
                with tarfile.open(fileobj=archive, mode="r") as tar:
                    if hasattr(tarfile, "data_filter"):
                        tar.extractall(dest, filter="data")
                    else:
                        tar.extractall(dest)
        finally:
            api.remove_container(container_id)
        self.logging.info(f"Copied {src} from image {image} to {dest}")
