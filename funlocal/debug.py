"""Debugger wiring for function containers.

Each runtime starts its debugger from an environment variable read by the
runtime bootstrap. VSCode-style debuggers listen inside the container and need
the debug port published on the host; PyCharm listens on the host instead and
the function connects to it.
"""

import os
import socket
from typing import Dict, Optional

from funlocal.exceptions import UnsupportedRuntimeError

IDE_VSCODE = "vscode"
IDE_PYCHARM = "pycharm"


def host_address() -> str:
    """Address of the host on its default route, reachable from containers."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        try:
            # no packet is sent for UDP connect
            s.connect(("10.255.255.255", 1))
            return s.getsockname()[0]
        except OSError:
            return "127.0.0.1"


def generate_debug_env(
    runtime: str, debug_port: int, debug_ide: Optional[str] = None
) -> Dict[str, str]:
    """
    Environment variables enabling the debugger of a runtime.

    :param runtime: runtime identifier.
    :param debug_port: port the debugger listens on (or connects to, for PHP).
    :param debug_ide: IDE flavor; PyCharm needs no variables for Python.
    :return: environment variables.
    :raises UnsupportedRuntimeError: if the runtime can't be debugged.
    """
    if runtime in ("nodejs8", "nodejs10"):
        return {"DEBUG_OPTIONS": f"--inspect-brk=0.0.0.0:{debug_port}"}
    if runtime == "nodejs6":
        return {"DEBUG_OPTIONS": f"--debug-brk={debug_port}"}
    if runtime in ("python2.7", "python3"):
        if debug_ide == IDE_PYCHARM:
            return {}
        return {"DEBUG_OPTIONS": f"-m ptvsd --host 0.0.0.0 --port {debug_port} --wait"}
    if runtime == "java8":
        return {
            "DEBUG_OPTIONS": "-agentlib:jdwp=transport=dt_socket,server=y,suspend=y,"
            f"quiet=y,address={debug_port}"
        }
    if runtime == "php7.2":
        return {
            "XDEBUG_CONFIG": f"remote_enable=1 remote_autostart=1 remote_port={debug_port} "
            f"remote_host={host_address()}"
        }
    raise UnsupportedRuntimeError(runtime)


def generate_docker_debug_opts(
    runtime: str, debug_port: int, debug_ide: Optional[str] = None
) -> dict:
    """
    Port publication needed by the debugger of a runtime.

    :return: {"ports": ..., "port_bindings": ...}, empty when the
             debugger connects out of the container.
    """
    if debug_ide == IDE_PYCHARM or runtime == "php7.2":
        return {}
    return {"ports": (debug_port,), "port_bindings": {debug_port: debug_port}}


def generate_vscode_debug_config(
    service_name: str, function_name: str, runtime: str, code_source: str, debug_port: int
) -> dict:
    """
    A `.vscode/launch.json` configuration attaching to the function container.

    :raises UnsupportedRuntimeError: if VSCode can't attach to the runtime.
    """
    name = f"fc/{service_name}/{function_name}"
    if runtime in ("nodejs6", "nodejs8", "nodejs10"):
        return {
            "version": "0.2.0",
            "configurations": [
                {
                    "name": name,
                    "type": "node",
                    "request": "attach",
                    "address": "localhost",
                    "port": debug_port,
                    "localRoot": code_source,
                    "remoteRoot": "/code",
                    "protocol": "legacy" if runtime == "nodejs6" else "inspector",
                    "stopOnEntry": False,
                }
            ],
        }
    if runtime in ("python2.7", "python3"):
        return {
            "version": "0.2.0",
            "configurations": [
                {
                    "name": name,
                    "type": "python",
                    "request": "attach",
                    "host": "localhost",
                    "port": debug_port,
                    "pathMappings": [{"localRoot": code_source, "remoteRoot": "/code"}],
                }
            ],
        }
    if runtime == "java8":
        return {
            "version": "0.2.0",
            "configurations": [
                {
                    "name": name,
                    "type": "java",
                    "request": "attach",
                    "hostName": "localhost",
                    "port": debug_port,
                }
            ],
        }
    if runtime == "php7.2":
        return {
            "version": "0.2.0",
            "configurations": [
                {
                    "name": name,
                    "type": "php",
                    "request": "launch",
                    "port": debug_port,
                    "stopOnEntry": False,
                    "pathMappings": {"/code": code_source},
                    "ignore": ["/var/fc/runtime/**"],
                }
            ],
        }
    raise UnsupportedRuntimeError(runtime)


def pycharm_debug_tips(code_source: str, debug_port: int) -> str:
    """Instructions for attaching a PyCharm remote debug server to the function."""
    if not os.path.isdir(code_source):
        code_source = os.path.dirname(code_source)
    address = host_address()
    return (
        "\n========= Tips for PyCharm remote debug =========\n"
        f"Local host name: {address}\n"
        f"Port           : {debug_port}\n"
        f"Path mappings  : {code_source}=/code\n\n"
        "Debug Code needed to copy to your function code:\n\n"
        "import pydevd\n"
        f"pydevd.settrace('{address}', port={debug_port}, "
        "stdoutToServer=True, stderrToServer=True)\n\n"
        "=========================================================================\n"
    )
