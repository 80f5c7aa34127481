"""I/O bridge between container streams and the host terminal.

Without a TTY the engine multiplexes stdout and stderr of a container on a
single stream; the helpers below split such streams into two sinks. For
interactive sandbox sessions they also forward the host stdin, switch the
host terminal to raw mode, forward terminal resizes and detect the detach
key sequence (Ctrl-P followed by Ctrl-Q).
"""

import io
import logging
import os
import select
import signal
import socket
import sys
import threading
from typing import Callable, Iterable, Iterator, Optional, Tuple

import docker
from docker.utils.socket import STDERR, frames_iter

Frames = Iterable[Tuple[Optional[bytes], Optional[bytes]]]

CTRL_P = 0x10
CTRL_Q = 0x11


class DevNull:
    """Writable sink discarding everything."""

    def write(self, data) -> int:
        return len(data)

    def flush(self):
        pass


def write_to(sink, data: bytes):
    """
    Write container output to a binary or text sink.

    Text sinks backed by a binary buffer (like `sys.stdout`) receive the raw bytes;
    other text sinks receive the UTF-8 decoded text.
    """
    if isinstance(sink, io.TextIOBase):
        buffer = getattr(sink, "buffer", None)
        if buffer is not None:
            sink.flush()
            buffer.write(data)
            buffer.flush()
            return
        sink.write(data.decode("utf-8", errors="replace"))
    else:
        sink.write(data)
    flush = getattr(sink, "flush", None)
    if flush is not None:
        flush()


def demux_stream(frames: Frames, output, error):
    """
    Copy demultiplexed frames to the two sinks until the stream ends.

    :param frames: (stdout, stderr) tuples, one side set per frame, as returned
                   by the engine client with `demux=True`.
    :param output: stdout sink.
    :param error: stderr sink.
    """
    for out, err in frames:
        if out:
            write_to(output, out)
        if err:
            write_to(error, err)


def socket_frames(sock, tty: bool) -> Iterator[Tuple[Optional[bytes], Optional[bytes]]]:
    """
    Read a hijacked attach socket as (stdout, stderr) tuples.

    With a TTY the stream is not multiplexed and everything is stdout.
    """
    for stream, data in frames_iter(sock, tty):
        if stream == STDERR:
            yield None, data
        else:
            yield data, None


def pump(frames: Frames, output, error, name: str = "demux") -> threading.Thread:
    """
    Demultiplex a stream on a background thread.

    The stream ends with the container; it is also closed from under the thread
    by teardown, which ends the thread as well.

    :return: the started thread.
    """

    def drain():
        try:
            demux_stream(frames, output, error)
        except (OSError, ValueError) as e:
            logging.debug(f"Stream {name} closed: {e}")

    thread = threading.Thread(target=drain, name=name, daemon=True)
    thread.start()
    return thread


def raw_socket(sock):
    """The socket object of an attach stream, which the engine client wraps in SocketIO."""
    return getattr(sock, "_sock", sock)


def write_event_and_close(sock, event: Optional[bytes]):
    """
    Write the event to the container stdin and half-close it.

    Closing only the write side signals end of input while keeping the output
    side readable.
    """
    target = raw_socket(sock)
    if event:
        if isinstance(event, str):
            event = event.encode("utf-8")
        target.sendall(event)
    target.shutdown(socket.SHUT_WR)


def close_stream(sock):
    try:
        sock.close()
    except OSError as e:
        logging.debug(f"Closing stream failed: {e}")


class DetachKeyDetector:
    """
    Detects the detach key sequence in terminal input.

    The previous key is remembered across reads for the whole session, so the
    sequence is also recognized when the two keys arrive in separate reads.
    """

    def __init__(self, prefix: int = CTRL_P, disengage: int = CTRL_Q):
        self.prefix = prefix
        self.disengage = disengage
        self._previous: Optional[int] = None

    def feed(self, data: bytes) -> bool:
        """
        :param data: bytes read from the terminal.
        :return: True if the sequence was completed inside `data`.
        """
        detached = False
        for key in data:
            if self._previous == self.prefix and key == self.disengage:
                detached = True
            self._previous = key
        return detached


class RawTerminal:
    """Context manager switching a terminal to raw mode and restoring it on exit."""

    def __init__(self, fd: int):
        self.fd = fd
        self._saved = None

    def __enter__(self):
        if os.isatty(self.fd):
            import termios
            import tty

            self._saved = termios.tcgetattr(self.fd)
            tty.setraw(self.fd)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.restore()

    def restore(self):
        if self._saved is not None:
            import termios

            termios.tcsetattr(self.fd, termios.TCSADRAIN, self._saved)
            self._saved = None


class ResizeForwarder:
    """
    Forwards the size of the host terminal to the container TTY.

    The size is sent once on start and then on every SIGWINCH. Zero sizes,
    reported by some terminals while they are being set up, are ignored.
    """

    def __init__(self, resize: Callable[[int, int], None], stream=None):
        """
        :param resize: callable receiving (rows, columns).
        :param stream: terminal whose size is read, stdout by default.
        """
        self._resize = resize
        self._stream = stream or sys.stdout
        self._previous_handler = None

    def forward(self, signum=None, frame=None):
        try:
            size = os.get_terminal_size(self._stream.fileno())
        except (OSError, ValueError):
            return
        if size.lines == 0 or size.columns == 0:
            return
        try:
            self._resize(size.lines, size.columns)
        except docker.errors.APIError as e:
            logging.debug(f"Resizing container TTY failed: {e}")

    def start(self):
        self.forward()
        if hasattr(signal, "SIGWINCH") and threading.current_thread() is threading.main_thread():
            self._previous_handler = signal.signal(signal.SIGWINCH, self.forward)

    def stop(self):
        if self._previous_handler is not None:
            signal.signal(signal.SIGWINCH, self._previous_handler)
            self._previous_handler = None


class StdinForwarder(threading.Thread):
    """
    Copies the host stdin to the stdin of a container.

    The thread waits for stdin to become readable with a timeout, so it notices
    `stop()` and a process teardown without further input. End of input is
    forwarded by half-closing the container stream.
    """

    READ_TIMEOUT = 0.2

    def __init__(
        self,
        sock,
        on_detach: Callable[[], None],
        detector: Optional[DetachKeyDetector] = None,
        coordinator=None,
        stdin=None,
    ):
        """
        :param sock: attach socket of the container.
        :param on_detach: called when the detach sequence is typed.
        :param detector: detach key detector of the session.
        :param coordinator: shutdown coordinator; forwarding ends when it stops.
        :param stdin: host input, `sys.stdin` by default.
        """
        super().__init__(name="stdin", daemon=True)
        self._sock = raw_socket(sock)
        self._on_detach = on_detach
        self._detector = detector or DetachKeyDetector()
        self._coordinator = coordinator
        self._fd = (stdin or sys.stdin).fileno()
        self._stop_event = threading.Event()

    def stop(self):
        self._stop_event.set()

    def _running(self) -> bool:
        if self._stop_event.is_set():
            return False
        return not (self._coordinator is not None and self._coordinator.stopping)

    def run(self):
        try:
            while self._running():
                readable, _, _ = select.select([self._fd], [], [], self.READ_TIMEOUT)
                if not readable:
                    continue
                data = os.read(self._fd, 1024)
                if not data:
                    self._sock.shutdown(socket.SHUT_WR)
                    break
                self._sock.sendall(data)
                if self._detector.feed(data):
                    self._on_detach()
                    break
        except OSError as e:
            logging.debug(f"Forwarding stdin stopped: {e}")
