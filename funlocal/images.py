"""Pulling and building runtime images.

Both operations consume the engine's progress protocol: a stream of JSON
records, one per line. Pull records update a per-layer status display; build
records carry log text, the id of the built image, or an error that aborts
the build.
"""

import json
import os
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Optional

import click
import docker
from docker.utils import parse_repository_tag
from docker.utils.build import tar
from rich.progress import Progress

from funlocal.config import LocalConfig
from funlocal.exceptions import ImagePullError, StreamBuildError
from funlocal.runtime import RegistryProbe, default_probe
from funlocal.shutdown import ShutdownCoordinator
from funlocal.utils import LoggingBase


class BuildEventKind(Enum):
    LOG = "log"
    STREAM = "stream"
    IMAGE_ID = "image_id"
    ERROR = "error"


@dataclass
class BuildEvent:
    kind: BuildEventKind
    text: str


def parse_build_record(line: str) -> BuildEvent:
    """
    Classify one record of the build output.

    Lines which are not JSON objects, and objects without a known field, are
    plain log lines passed through verbatim.
    """
    try:
        data = json.loads(line)
    except ValueError:
        return BuildEvent(BuildEventKind.LOG, line + "\n")
    if not isinstance(data, dict):
        return BuildEvent(BuildEventKind.LOG, line + "\n")

    if "error" in data:
        return BuildEvent(BuildEventKind.ERROR, str(data["error"]))
    if "stream" in data:
        return BuildEvent(BuildEventKind.STREAM, data["stream"])
    aux = data.get("aux")
    if isinstance(aux, dict) and "ID" in aux:
        return BuildEvent(BuildEventKind.IMAGE_ID, aux["ID"] + "\n")
    return BuildEvent(BuildEventKind.LOG, line + "\n")


def _lines(chunks: Iterable[bytes]) -> Iterator[str]:
    pending = b""
    for chunk in chunks:
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        pending += chunk
        *lines, pending = pending.split(b"\n")
        for line in lines:
            yield line.decode("utf-8", errors="replace")
    if pending:
        yield pending.decode("utf-8", errors="replace")


def build_output(chunks: Iterable[bytes]) -> Iterator[str]:
    """
    Turn the raw build stream into log text.

    :param chunks: raw output of the engine, split at arbitrary positions.
    :return: generator of text fragments.
    :raises StreamBuildError: on the first error record; nothing is produced after it.
    """
    for line in _lines(chunks):
        line = line.strip()
        if not line:
            continue
        event = parse_build_record(line)
        if event.kind == BuildEventKind.ERROR:
            raise StreamBuildError(event.text)
        yield event.text


def read_dockerignore(context_dir: str) -> List[str]:
    path = os.path.join(context_dir, ".dockerignore")
    if not os.path.exists(path):
        return []
    with open(path, "r") as f:
        return [
            line.strip() for line in f if line.strip() and not line.strip().startswith("#")
        ]


class BuildStream:
    """
    Raw log stream of an image build in progress.

    Unlike the generator returned by `APIClient.build`, `close()` may be called
    from another thread while the stream is being iterated: the HTTP response
    is closed and the iteration ends at the next chunk.
    """

    def __init__(self, api: docker.APIClient, response):
        self._response = response
        self._chunks = api._stream_helper(response, decode=False)
        self._closed = threading.Event()

    @staticmethod
    def start(api: docker.APIClient, context, dockerfile: str, tag: str) -> "BuildStream":
        """Send a build request with a prepared tar context."""
        headers = {"Content-Type": "application/tar"}
        api._set_auth_headers(headers)
        params = {"t": tag, "rm": True, "dockerfile": dockerfile}
        response = api._post(
            api._url("/build"), data=context, params=params, headers=headers, stream=True
        )
        return BuildStream(api, response)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self._chunks:
                if self.closed:
                    break
                yield chunk
        except Exception:
            # reading from a response closed by another thread
            if not self.closed:
                raise

    def close(self):
        self._closed.set()
        self._response.close()


class ImageManager(LoggingBase):
    """
    Pulls runtime images and builds function images.

    Attributes:
        disable_rich_output: log pull progress instead of drawing progress bars.
    """

    def __init__(
        self,
        docker_client: docker.DockerClient,
        coordinator: ShutdownCoordinator,
        config: Optional[LocalConfig] = None,
        probe: Optional[RegistryProbe] = None,
    ):
        super().__init__()
        self._docker_client = docker_client
        self._coordinator = coordinator
        self._config = config or LocalConfig()
        self._probe = probe
        self.disable_rich_output = self._config.disable_rich_output
        self.logging_handlers = self._config.logging_handlers()

    @staticmethod
    def typename() -> str:
        return "Local.Images"

    def image_exist(self, image: str) -> bool:
        images = self._docker_client.api.images(filters={"reference": image})
        return len(images) > 0

    def show_progress(self, line: dict, progress: Progress, layer_tasks: dict):
        """
        Update the per-layer display with one pull progress record.

        :param line: decoded progress record.
        :param progress: `rich.progress.Progress` display.
        :param layer_tasks: progress task id of each layer seen so far.
        """
        status = line.get("status", "")
        progress_detail = line.get("progressDetail") or {}
        id_ = line.get("id", "")

        if not id_:
            progress.console.print(status)
            return

        if id_ not in layer_tasks:
            layer_tasks[id_] = progress.add_task(f"{id_[:12]}: {status}", total=None)

        task = layer_tasks[id_]
        if progress_detail.get("total"):
            progress.update(
                task,
                description=f"{id_[:12]}: {status}",
                completed=progress_detail.get("current", 0),
                total=progress_detail["total"],
            )
        elif any(x in status for x in ["Pull complete", "Already exists", "Download complete"]):
            total = progress.tasks[task].total or 1
            progress.update(task, description=f"{id_[:12]}: {status}", total=total, completed=total)
        else:
            progress.update(task, description=f"{id_[:12]}: {status}")

    def pull_image(self, image: str) -> str:
        """
        Pull an image from its registry.

        :param image: image reference.
        :return: the image reference.
        :raises ImagePullError: if the engine reports an error during the pull.
        :raises docker.errors.APIError: if the engine rejects the pull.
        """
        probe = self._probe or default_probe()
        registry = "mirror registry" if probe.is_restricted() else "docker hub registry"
        self.logging.info(
            f"Begin pulling image {image} from {registry}, you can also use "
            f"'docker pull {image}' to pull image by yourself."
        )

        repository, tag = parse_repository_tag(image)
        stream = self._docker_client.api.pull(repository, tag=tag, stream=True, decode=True)

        if not self.disable_rich_output:
            layer_tasks: dict = {}
            with Progress() as progress:
                for line in stream:
                    if "error" in line:
                        raise ImagePullError(image, line["error"])
                    self.show_progress(line, progress, layer_tasks)
        else:
            for line in stream:
                if "error" in line:
                    raise ImagePullError(image, line["error"])
                if "id" in line:
                    self.logging.debug(f"{line['id']}: {line.get('status', '')}")

        self.logging.info(f"Pulled image {image}")
        return image

    def pull_image_if_need(self, image: str) -> str:
        if self._config.force_pull or not self.image_exist(image):
            return self.pull_image(image)
        self.logging.debug(f"Skip pulling image {image}, it exists locally")
        return image

    def build_image(
        self, context_dir: str, dockerfile_path: str, tag: str, output=None
    ) -> str:
        """
        Build an image and stream its log.

        The build stream is registered for teardown while it is running.

        :param context_dir: build context directory.
        :param dockerfile_path: path of the Dockerfile, inside the context.
        :param tag: tag of the built image.
        :param output: sink of the build log, stdout by default.
        :return: the tag.
        :raises StreamBuildError: if the build fails or is cancelled by a shutdown.
        """
        context_dir = os.path.abspath(context_dir)
        dockerfile = os.path.relpath(os.path.abspath(dockerfile_path), context_dir)
        context = tar(
            context_dir, exclude=read_dockerignore(context_dir), dockerfile=(dockerfile, None)
        )

        self.logging.info(f"Building image {tag} from {context_dir}")
        try:
            stream = BuildStream.start(self._docker_client.api, context, dockerfile, tag)
        except Exception:
            context.close()
            raise
        self._coordinator.register(stream)
        try:
            for text in build_output(stream):
                click.echo(text, nl=False, file=output)
            if stream.closed:
                raise StreamBuildError(f"Build of image {tag} was cancelled")
        finally:
            self._coordinator.deregister(stream)
            context.close()

        return tag
