"""Environment assembly for function containers.

Search-path variables (PATH, LD_LIBRARY_PATH, PYTHONPATH, NODE_PATH) are only
ever extended: new entries are prepended and whatever value the variable held
before is kept after them.
"""

import glob
import os
from typing import Dict, Iterable, List, Optional

from funlocal.debug import generate_debug_env
from funlocal.function import FunctionProps, NasConfig

FUN_ROOT = "/code/.fun/root"
FUN_PYTHON = "/code/.fun/python"
NAS_AUTO_MOUNT_DIR = "/mnt/auto"

SYS_LIB_PATHS = [
    "/usr/local/lib",
    "/usr/lib",
    "/usr/lib/x86_64-linux-gnu",
    "/usr/lib64",
    "/lib",
    "/lib/x86_64-linux-gnu",
    "/python/lib/python2.7/site-packages",
    "/python/lib/python3.6/site-packages",
]
FC_LIB_PATHS = ["/code", "/code/lib", "/usr/local/lib"]
SYS_BIN_PATHS = ["/usr/local/bin", "/usr/local/sbin", "/usr/bin", "/usr/sbin", "/sbin", "/bin"]
FC_BIN_PATHS = ["/code", "/code/node_modules/.bin"]
DEFAULT_PATH = ":".join(SYS_BIN_PATHS)


def prepend_paths(envs: Dict[str, str], key: str, additions: Iterable[str]) -> Dict[str, str]:
    """
    Prepend entries to a colon-separated search path.

    Entries already present in the variable are not repeated, so applying the
    same additions twice leaves the value unchanged.

    :param envs: environment, modified in place.
    :param key: name of the variable.
    :param additions: entries to add, in priority order.
    :return: the environment.
    """
    existing = [p for p in envs.get(key, "").split(":") if p]
    new_entries: List[str] = []
    for path in additions:
        if path not in existing and path not in new_entries:
            new_entries.append(path)
    if new_entries or existing:
        envs[key] = ":".join(new_entries + existing)
    return envs


def nas_mount_dirs(nas_config: Optional[NasConfig]) -> List[str]:
    if nas_config is None:
        return []
    if nas_config.auto:
        return [NAS_AUTO_MOUNT_DIR]
    return [m.mount_dir for m in nas_config.mount_points]


def add_env(
    envs: Optional[Dict[str, str]], nas_config: Optional[NasConfig] = None
) -> Dict[str, str]:
    """
    Add the search paths of dependencies installed by `fun install`.

    :param envs: environment variables; not modified.
    :param nas_config: NAS configuration whose mount directories hold dependencies.
    :return: a new environment.
    """
    result = dict(envs or {})

    prepend_paths(
        result,
        "LD_LIBRARY_PATH",
        [FUN_ROOT + p for p in SYS_LIB_PATHS] + FC_LIB_PATHS,
    )

    if "PATH" not in result:
        result["PATH"] = DEFAULT_PATH
    prepend_paths(
        result,
        "PATH",
        [FUN_ROOT + p for p in SYS_BIN_PATHS] + [FUN_PYTHON + "/bin"] + FC_BIN_PATHS,
    )

    result.setdefault("PYTHONUSERBASE", FUN_PYTHON)

    for mount_dir in nas_mount_dirs(nas_config):
        prepend_paths(result, "LD_LIBRARY_PATH", [f"{mount_dir}/root/usr/lib"])
        prepend_paths(result, "PYTHONPATH", [f"{mount_dir}/python"])
        prepend_paths(result, "NODE_PATH", [f"{mount_dir}/node_modules"])

    return result


def add_install_target_env(envs: Optional[Dict[str, str]], targets) -> Dict[str, str]:
    """
    Point the search paths at the directories an installation writes to.

    :param envs: environment variables; not modified.
    :param targets: install targets, each with a `container_path`.
    :return: a new environment.
    """
    result = dict(envs or {})
    for target in targets or []:
        prefix = target.container_path
        prepend_paths(result, "PATH", [f"{prefix}/python/bin", f"{prefix}/root/usr/bin"])
        prepend_paths(result, "LD_LIBRARY_PATH", [f"{prefix}/root/usr/lib"])
        result.setdefault("PYTHONUSERBASE", f"{prefix}/python")
    return result


def resolve_lib_paths_from_ld_conf(base_dir: str, code_uri: str) -> Dict[str, str]:
    """
    Collect library directories declared by apt packages installed into the code directory.

    Packages installed with `fun install` keep their ld.so configuration under
    `.fun/root/etc/ld.so.conf.d`; the directories listed there are relative to
    the fun root inside the container.

    :param base_dir: directory of the function template.
    :param code_uri: code location relative to `base_dir`.
    :return: {"LD_LIBRARY_PATH": ...} or an empty dict.
    """
    code_dir = os.path.abspath(os.path.join(base_dir, code_uri))
    conf_dir = os.path.join(code_dir, ".fun", "root", "etc", "ld.so.conf.d")
    if not os.path.isdir(conf_dir):
        return {}

    paths: List[str] = []
    for conf in sorted(glob.glob(os.path.join(conf_dir, "*.conf"))):
        with open(conf, "r") as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#"):
                    paths.append(FUN_ROOT + line)

    if not paths:
        return {}
    return {"LD_LIBRARY_PATH": ":".join(paths)}


def resolve_docker_env(envs: Optional[Dict[str, str]] = None) -> List[str]:
    """Format the environment as the engine expects it, a list of "KEY=VALUE"."""
    return [f"{k}={v}" for k, v in add_env(envs).items()]


def generate_function_envs(function_props: FunctionProps) -> Dict[str, str]:
    return {k: str(v) for k, v in function_props.environment_variables.items()}


def generate_docker_envs(
    base_dir: str,
    function_props: FunctionProps,
    debug_port: Optional[int] = None,
    http_params: Optional[str] = None,
    nas_config: Optional[NasConfig] = None,
    is_http_trigger: bool = False,
    debug_ide: Optional[str] = None,
    credentials: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """
    Assemble the environment of invoke and start containers.

    Later sources override earlier ones: HTTP parameters, ld.so library paths,
    debugger settings, function variables, then the local marker and credentials.

    :param base_dir: directory of the function template.
    :param function_props: function properties.
    :param debug_port: debugger port, or None when not debugging.
    :param http_params: encoded HTTP request parameters for HTTP triggers.
    :param nas_config: NAS configuration of the service.
    :param is_http_trigger: whether the function is invoked through an HTTP trigger.
    :param debug_ide: IDE flavor attached to the debugger.
    :param credentials: dict with "access_key_id" and "access_key_secret".
    :return: environment variables.
    """
    envs: Dict[str, str] = {}

    if http_params:
        envs["FC_HTTP_PARAMS"] = http_params

    envs.update(resolve_lib_paths_from_ld_conf(base_dir, function_props.code_uri))

    runtime = function_props.runtime
    if debug_port:
        envs.update(generate_debug_env(runtime, debug_port, debug_ide))

    if is_http_trigger and runtime == "java8":
        envs["fc_enable_new_java_ca"] = "true"

    envs.update(generate_function_envs(function_props))

    credentials = credentials or {}
    envs.update(
        {
            "local": "true",
            "FC_ACCESS_KEY_ID": credentials.get("access_key_id", ""),
            "FC_ACCESS_KEY_SECRET": credentials.get("access_key_secret", ""),
        }
    )

    return add_env(envs, nas_config)
