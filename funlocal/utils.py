import datetime
import logging
import platform
import uuid
from typing import Optional

import click


def configure_logging():
    """
    Silence verbose logging from the libraries used to talk to the engine.

    The Docker SDK and urllib3 log every HTTP round-trip at DEBUG level,
    which drowns out the container output we forward to the terminal.
    """
    noisy_loggers = ["urllib3", "docker"]
    for logger_name_prefix in noisy_loggers:
        for name in list(logging.root.manager.loggerDict):
            if name.startswith(logger_name_prefix):
                logging.getLogger(name).setLevel(logging.ERROR)


def global_logging(verbose: bool = False):
    """
    Set up basic global logging configuration for funlocal.

    :param verbose: if True, the root logger is set to DEBUG instead of INFO.
    """
    logging_format = "%(asctime)s,%(msecs)d %(levelname)s %(name)s: %(message)s"
    logging_date_format = "%H:%M:%S"
    logging.basicConfig(
        format=logging_format,
        datefmt=logging_date_format,
        level=logging.DEBUG if verbose else logging.INFO,
    )
    configure_logging()


class ColoredWrapper:
    """
    A wrapper around a standard Python logger to provide colored console output using Click.

    Messages go to the console through `click.echo`; they are also passed to the
    underlying logger when `propagate` is set, which is how a file handler sees them.
    """

    SUCCESS = "\033[92m"
    STATUS = "\033[94m"
    WARNING = "\033[93m"
    ERROR = "\033[91m"
    BOLD = "\033[1m"
    END = "\033[0m"

    def __init__(
        self, prefix: str, logger: logging.Logger, verbose: bool = True, propagate: bool = False
    ):
        """
        :param prefix: a prefix string prepended to log messages (e.g., class name).
        :param logger: the underlying `logging.Logger` instance.
        :param verbose: if True, DEBUG messages are printed to console.
        :param propagate: if True, messages are also passed to the underlying logger.
        """
        self.verbose = verbose
        self.propagate = propagate
        self.prefix = prefix
        self._logging = logger

    def debug(self, message: str):
        if self.verbose:
            self._print(message, ColoredWrapper.STATUS)
        if self.propagate:
            self._logging.debug(message)

    def info(self, message: str):
        self._print(message, ColoredWrapper.SUCCESS)
        if self.propagate:
            self._logging.info(message)

    def warning(self, message: str):
        self._print(message, ColoredWrapper.WARNING)
        if self.propagate:
            self._logging.warning(message)

    def error(self, message: str):
        self._print(message, ColoredWrapper.ERROR)
        if self.propagate:
            self._logging.error(message)

    def critical(self, message: str):
        self._print(message, ColoredWrapper.ERROR)
        if self.propagate:
            self._logging.critical(message)

    def _print(self, message: str, color: str):
        timestamp = datetime.datetime.now().strftime("%H:%M:%S.%f")[:-3]
        # stdout belongs to the container output
        click.echo(
            f"{color}{ColoredWrapper.BOLD}[{timestamp}]{ColoredWrapper.END} "
            f"{ColoredWrapper.BOLD}{self.prefix}{ColoredWrapper.END} {message}",
            err=True,
        )


class LoggingHandlers:
    """
    Manages logging handlers, specifically a file handler if a filename is provided.

    Attributes:
        verbosity: Boolean indicating if verbose logging is enabled for console.
        handler: Optional `logging.FileHandler` instance if file logging is active.
    """

    def __init__(self, verbose: bool = False, filename: Optional[str] = None):
        logging_format = "%(asctime)s,%(msecs)d %(levelname)s %(name)s: %(message)s"
        logging_date_format = "%H:%M:%S"
        formatter = logging.Formatter(logging_format, logging_date_format)
        self.handler: Optional[logging.FileHandler] = None
        self.verbosity = verbose

        if filename:
            file_out_handler = logging.FileHandler(filename=filename, mode="w")
            file_out_handler.setFormatter(formatter)
            file_out_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
            self.handler = file_out_handler


class LoggingBase:
    """
    Base class providing standardized logging capabilities for funlocal components.

    Initializes a logger with a unique name (type name + UUID4 prefix) and
    a `ColoredWrapper` for console output. Attaching `LoggingHandlers`
    enables file logging and controls console verbosity.
    """

    def __init__(self):
        uuid_prefix = str(uuid.uuid4())[0:4]
        class_name = getattr(self, "typename", lambda: self.__class__.__name__)()
        self.log_name = f"{class_name}-{uuid_prefix}"

        self._logging = logging.getLogger(self.log_name)
        self._logging.setLevel(logging.DEBUG)

        self.wrapper = ColoredWrapper(self.log_name, self._logging, verbose=False)
        self._logging_handlers: Optional[LoggingHandlers] = None

    @property
    def logging(self) -> ColoredWrapper:
        return self.wrapper

    @property
    def logging_handlers(self) -> Optional[LoggingHandlers]:
        return self._logging_handlers

    @logging_handlers.setter
    def logging_handlers(self, handlers: Optional[LoggingHandlers]):
        """
        Set the `LoggingHandlers` for this logger.

        This configures the underlying logger to use the file handler from `handlers`
        (if any) and updates the `ColoredWrapper` verbosity and propagation settings.

        :param handlers: the LoggingHandlers instance, or None to clear handlers.
        """
        if self._logging_handlers and self._logging_handlers.handler:
            if not handlers or self._logging_handlers.handler != handlers.handler:
                self._logging.removeHandler(self._logging_handlers.handler)

        self._logging_handlers = handlers

        if handlers:
            self.wrapper = ColoredWrapper(
                self.log_name,
                self._logging,
                verbose=handlers.verbosity,
                propagate=handlers.handler is not None,
            )
            if handlers.handler:
                self._logging.addHandler(handlers.handler)
            self._logging.propagate = False
        else:
            self.wrapper = ColoredWrapper(self.log_name, self._logging, verbose=False)
            self._logging.propagate = True


def is_windows() -> bool:
    return platform.system() == "Windows"


def is_macos() -> bool:
    return platform.system() == "Darwin"
