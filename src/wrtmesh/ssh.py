"""SSH access to the OpenWrt device being reconfigured."""

import logging
import time
from typing import Iterable, List, Optional, Set, Tuple

import paramiko

from .errors import DeviceConnectionError, RemoteCommandError
from .store import MESH_PACKAGES, RELOAD_COMMANDS, UCIStore

logger = logging.getLogger(__name__)


class SSHConnection:
    """Manages the SSH connection to an OpenWrt device."""

    def __init__(
        self,
        host: str,
        port: int = 22,
        username: str = "root",
        password: Optional[str] = None,
        key_filename: Optional[str] = None,
        timeout: int = 30,
    ):
        """
        Connection parameters; nothing is opened until ``connect``.

        Args:
            host: Address of the device (its lan or ahwlan IP)
            port: SSH port (default: 22)
            username: SSH username (default: root)
            password: SSH password
            key_filename: Path to SSH private key file
            timeout: Connect timeout in seconds (commands have none)
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.key_filename = key_filename
        self.timeout = timeout
        self._client: Optional[paramiko.SSHClient] = None

    def connect(self) -> None:
        """Establish SSH connection to the device."""
        if self._client is not None:
            return

        self._client = paramiko.SSHClient()
        self._client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        try:
            self._client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                key_filename=self.key_filename,
                timeout=self.timeout,
            )
        except (paramiko.SSHException, OSError) as e:
            self._client = None
            raise DeviceConnectionError(f"Failed to connect to {self.host}: {e}") from e
        logger.debug("Connected to %s@%s:%d", self.username, self.host, self.port)

    def disconnect(self) -> None:
        """Close the SSH connection."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def execute(self, command: str, stdin_data: Optional[str] = None) -> Tuple[str, str, int]:
        """
        Execute a command on the device.

        Args:
            command: The command to execute
            stdin_data: Text fed to the command's standard input

        Returns:
            Tuple of (stdout, stderr, exit_code)
        """
        if self._client is None:
            self.connect()
        assert self._client is not None

        stdin, stdout, stderr = self._client.exec_command(command)
        if stdin_data is not None:
            stdin.write(stdin_data)
            stdin.channel.shutdown_write()
        exit_code = stdout.channel.recv_exit_status()

        return (
            stdout.read().decode("utf-8"),
            stderr.read().decode("utf-8"),
            exit_code,
        )

    def get_uci_config(self, package: str) -> str:
        """
        Retrieve the current UCI configuration for a package.

        Args:
            package: The UCI package name (e.g., 'network', 'wireless')

        Returns:
            The ``uci export`` output
        """
        stdout, stderr, exit_code = self.execute(f"uci export {package}")
        if exit_code != 0:
            raise RemoteCommandError(f"uci export {package}", stderr, exit_code)
        return stdout

    def fetch_store(self, packages: Iterable[str] = MESH_PACKAGES) -> UCIStore:
        """Load the device's packages into a fresh store (missing ones stay empty)."""
        store = UCIStore()
        for package in packages:
            stdout, stderr, exit_code = self.execute(f"uci export {package}")
            if exit_code != 0:
                logger.debug("No %s package on %s: %s", package, self.host, stderr.strip())
                continue
            store.load_package(package, stdout)
        return store

    def run_script(self, script: str) -> str:
        """Run a shell script (e.g. ``UCIStore.to_script()``) on the device."""
        stdout, stderr, exit_code = self.execute("sh -s", stdin_data=script)
        if exit_code != 0:
            raise RemoteCommandError("sh -s", stderr, exit_code)
        return stdout

    def reload_services(self, changed_packages: Set[str]) -> List[str]:
        """
        Restart the services affected by ``changed_packages``.

        Returns:
            List of commands that were executed.
        """
        commands = [command for package, command in RELOAD_COMMANDS if package in changed_packages]

        for cmd in commands:
            stdout, stderr, exit_code = self.execute(cmd)
            if exit_code != 0:
                logger.warning("%s returned non-zero exit code: %s", cmd, stderr.strip())
            time.sleep(1)

        return commands

    def __enter__(self) -> "SSHConnection":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.disconnect()
