"""Declarative properties of functions and services.

The properties come from the function template (the `Properties` block of a
function or service resource). Only the fields used to assemble container
commands, environments and mounts are modelled here.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

NAS_AUTO = "Auto"


@dataclass
class NasMountPoint:
    """
    A NAS mount point of a service.

    Attributes:
        server_addr: "<host>:<path>" of the NAS file system.
        mount_dir: directory where the file system is mounted inside the function.
    """

    server_addr: str
    mount_dir: str

    @property
    def server_host(self) -> str:
        return self.server_addr.split(":", 1)[0]

    @property
    def server_path(self) -> str:
        parts = self.server_addr.split(":", 1)
        return parts[1] if len(parts) == 2 else "/"

    @staticmethod
    def deserialize(data: dict) -> "NasMountPoint":
        return NasMountPoint(server_addr=data["ServerAddr"], mount_dir=data["MountDir"])


@dataclass
class NasConfig:
    """
    NAS configuration of a service.

    An `Auto` configuration lets the platform provision the file system; its user
    and group are then the platform defaults.
    """

    user_id: int = -1
    group_id: int = -1
    mount_points: List[NasMountPoint] = field(default_factory=list)
    auto: bool = False

    @staticmethod
    def deserialize(data: Optional[Union[str, dict]]) -> Optional["NasConfig"]:
        if not data:
            return None
        if data == NAS_AUTO:
            return NasConfig(auto=True)
        return NasConfig(
            user_id=int(data.get("UserId", -1)),
            group_id=int(data.get("GroupId", -1)),
            mount_points=[NasMountPoint.deserialize(m) for m in data.get("MountPoints", [])],
        )


@dataclass
class FunctionProps:
    """
    Properties of a function resource.

    Attributes:
        handler: handler identifier, e.g. "index.handler".
        runtime: runtime identifier, e.g. "python3".
        code_uri: location of the function code, relative to the template.
        initializer: optional initializer identifier.
        initialization_timeout: optional initializer timeout in seconds.
        environment_variables: variables declared by the function.
    """

    handler: str
    runtime: str
    code_uri: str = "."
    initializer: Optional[str] = None
    initialization_timeout: Optional[int] = None
    environment_variables: Dict[str, str] = field(default_factory=dict)

    @staticmethod
    def deserialize(properties: dict) -> "FunctionProps":
        timeout = properties.get("InitializationTimeout")
        return FunctionProps(
            handler=properties["Handler"],
            runtime=properties["Runtime"],
            code_uri=properties.get("CodeUri", "."),
            initializer=properties.get("Initializer"),
            initialization_timeout=int(timeout) if timeout else None,
            environment_variables=dict(properties.get("EnvironmentVariables") or {}),
        )
