"""Coordinated teardown of containers on interrupt.

The coordinator is the registry of everything that must not outlive the
process: ids of containers that were created and haven't terminated yet, and
engine streams of image builds in progress. On the first interrupt every
entry is torn down; later interrupts are ignored while that happens.
"""

import concurrent.futures
import signal
import threading
from typing import Any, List, Set, Union

import docker

from funlocal.utils import LoggingBase

# container id, or an engine stream with a close() method
Entry = Union[str, Any]


class ShutdownCoordinator(LoggingBase):
    """
    Registry of in-flight containers and build streams.

    Attributes:
        stopping: set once teardown started; input forwarders stop reading when it is set.
    """

    def __init__(self, docker_client: docker.DockerClient):
        super().__init__()
        self._docker_client = docker_client
        self._entries: Set[Entry] = set()
        # reentrant: the SIGINT handler may run while the main thread holds it
        self._lock = threading.RLock()
        self._stopping = threading.Event()
        self._previous_handler = None

    @staticmethod
    def typename() -> str:
        return "Local.Shutdown"

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def register(self, entry: Entry):
        """
        Track a container id or a closable engine stream.

        Called right after the container (or stream) was successfully created.
        """
        with self._lock:
            self._entries.add(entry)

    def deregister(self, entry: Entry):
        with self._lock:
            self._entries.discard(entry)

    def entries(self) -> List[Entry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, entry: Entry) -> bool:
        with self._lock:
            return entry in self._entries

    def install(self):
        """Replace the SIGINT handler; only possible from the main thread."""
        self._previous_handler = signal.signal(signal.SIGINT, self.handle_interrupt)

    def uninstall(self):
        if self._previous_handler is not None:
            signal.signal(signal.SIGINT, self._previous_handler)
            self._previous_handler = None

    def handle_interrupt(self, signum=None, frame=None):
        """
        SIGINT handler: tear everything down, then let the process unwind.

        A signal received while the teardown is running returns immediately.
        """
        if not self.shutdown():
            return
        raise KeyboardInterrupt()

    def _stop_entry(self, entry: Entry):
        if isinstance(entry, str):
            container = self._docker_client.containers.get(entry)
            self.logging.info(f"Stopping container {entry}")
            container.stop()
        else:
            entry.close()

    def shutdown(self) -> bool:
        """
        Stop every registered container and close every registered stream.

        Stops are issued concurrently; a failure is logged and doesn't prevent
        stopping the other entries.

        :return: False if a teardown was already started before.
        """
        with self._lock:
            if self._stopping.is_set():
                return False
            self._stopping.set()
            entries = list(self._entries)

        if not entries:
            return True

        self.logging.info("Received cancel request, stopping running containers...")
        with concurrent.futures.ThreadPoolExecutor(max_workers=len(entries)) as pool:
            futures = {pool.submit(self._stop_entry, entry): entry for entry in entries}
            for future in concurrent.futures.as_completed(futures):
                entry = futures[future]
                try:
                    future.result()
                except docker.errors.NotFound:
                    self.logging.debug(f"Container {entry} is already gone")
                except Exception as e:
                    self.logging.error(f"Failed to stop {entry}: {e}")
                self.deregister(entry)

        self.logging.info("All containers stopped")
        return True

