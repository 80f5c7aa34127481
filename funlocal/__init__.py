"""
funlocal: local execution engine for Function Compute functions.

This package runs functions of a template inside runtime containers on the
local container engine: one-shot invocations, long-lived function containers,
dependency installation and interactive sandbox sessions, together with the
image pulls and builds they need and the teardown of everything still running
when the process is interrupted.
"""

from .version import __version__  # noqa

from .config import LocalConfig  # noqa
from .container import ContainerHandle, ContainerManager, RunResult  # noqa
from .images import ImageManager  # noqa
from .invoke import LocalInvoke, LocalStart  # noqa
from .shutdown import ShutdownCoordinator  # noqa
from .utils import configure_logging, global_logging  # noqa
