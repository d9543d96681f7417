"""Exceptions raised by wrtmesh."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .bridge import BridgeConflict


class WrtMeshError(Exception):
    """Base class for all wrtmesh errors."""


class StoreError(WrtMeshError):
    """Invalid operation against the staged UCI store."""


class SectionNotFoundError(StoreError, KeyError):
    def __init__(self, package: str, section: str):
        self.package = package
        self.section = section
        super().__init__(f"No such section: {package}.{section}")

    def __str__(self) -> str:
        return self.args[0]


class DuplicateSectionError(StoreError):
    def __init__(self, package: str, section: str):
        self.package = package
        self.section = section
        super().__init__(f"Section already exists: {package}.{section}")


class InvalidIPAddressError(WrtMeshError, ValueError):
    def __init__(self, ip: str):
        self.ip = ip
        super().__init__(f"Invalid IP address: {ip}")


class BridgeValidationError(WrtMeshError):
    """A bridge mixes a non-WDS Wi-Fi client with other devices."""

    def __init__(self, conflict: "BridgeConflict"):
        self.conflict = conflict
        super().__init__(conflict.format_message())


class IntentError(WrtMeshError):
    """The requested mesh intent is incomplete or inconsistent."""


class PlanError(WrtMeshError):
    """A plan file could not be loaded."""


class DeviceConnectionError(WrtMeshError, ConnectionError):
    """The target device could not be reached."""


class RemoteCommandError(WrtMeshError):
    """A command run on the target device failed."""

    def __init__(self, command: str, stderr: str, exit_code: int):
        self.command = command
        self.stderr = stderr
        self.exit_code = exit_code
        super().__init__(f"'{command}' failed with exit code {exit_code}: {stderr.strip()}")
