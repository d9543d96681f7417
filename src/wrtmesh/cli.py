"""Command-line interface for wrtmesh."""

import logging
import random
import re
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
from dotenv import load_dotenv

from . import __version__
from .bridge import find_bridge_conflict
from .errors import WrtMeshError
from .mac import get_fake_morse_mac, get_random_mac, is_valid_mac
from .network import NetDevice
from .plan import load_plan
from .ssh import SSHConnection
from .store import MESH_PACKAGES, UCIStore


def _load_env_files() -> None:
    """Load environment variables from .env files.

    Uses .env in the current working directory if there is one, otherwise
    searches up the directory tree.
    """
    cwd_env = Path.cwd() / ".env"
    if cwd_env.exists():
        load_dotenv(cwd_env)
    else:
        load_dotenv()


_load_env_files()


def parse_target(target: str) -> Dict[str, Any]:
    """
    Parse a target string into connection parameters.

    Supports:
    - IP address: 192.168.1.1
    - Hostname: router.local
    - IP:port: 192.168.1.1:2222
    - user@host: root@192.168.1.1
    - user@host:port: root@192.168.1.1:2222
    - [IPv6]:port: [fe80::1]:2222

    Returns:
        Dictionary with host, port and username
    """
    result: Dict[str, Any] = {"host": target, "port": 22, "username": "root"}

    if "@" in target:
        user_part, host_part = target.split("@", 1)
        result["username"] = user_part
        target = host_part
        result["host"] = target

    if target.startswith("["):
        match = re.match(r"\[([^\]]+)\]:?(\d+)?", target)
        if match:
            result["host"] = match.group(1)
            if match.group(2):
                result["port"] = int(match.group(2))
    elif target.count(":") == 1:
        host, port = target.rsplit(":", 1)
        if port.isdigit():
            result["host"] = host
            result["port"] = int(port)

    return result


def create_connection(
    target: str,
    password: Optional[str] = None,
    key_file: Optional[str] = None,
    timeout: int = 30,
) -> SSHConnection:
    params = parse_target(target)
    return SSHConnection(
        host=params["host"],
        port=params["port"],
        username=params["username"],
        password=password,
        key_filename=key_file,
        timeout=timeout,
    )


def _fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


def _source_options(func: Any) -> Any:
    """Options selecting where the current configuration comes from."""
    options = [
        click.option(
            "-d", "--config-dir", type=click.Path(exists=True, file_okay=False),
            help="Directory laid out like /etc/config",
        ),
        click.option("--target", envvar="WRTMESH_TARGET", help="Device to read from ([user@]host[:port])"),
        click.option("-p", "--password", envvar="WRTMESH_PASSWORD", help="SSH password"),
        click.option(
            "-k", "--key-file", type=click.Path(exists=True), envvar="WRTMESH_KEY_FILE",
            help="SSH private key file",
        ),
        click.option("-t", "--timeout", default=30, envvar="WRTMESH_TIMEOUT", help="Connection timeout in seconds"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _read_store(
    config_dir: Optional[str], target: Optional[str], password: Optional[str], key_file: Optional[str], timeout: int
) -> Tuple[UCIStore, Optional[SSHConnection]]:
    """Load the store from a directory or a device (whose connection is returned open)."""
    if config_dir and target:
        raise click.UsageError("Use either --config-dir or --target, not both")
    if config_dir:
        return UCIStore.from_config_dir(config_dir, MESH_PACKAGES), None
    if target:
        click.echo(f"Connecting to {target}...", err=True)
        conn = create_connection(target, password, key_file, timeout)
        conn.connect()
        return conn.fetch_store(), conn
    raise click.UsageError("One of --config-dir or --target is required")


@click.group()
@click.version_option(version=__version__, prog_name="wrtmesh")
@click.option("-v", "--verbose", count=True, help="More logging (repeat for debug)")
def cli(verbose: int) -> None:
    """wrtmesh - HaLow EasyMesh topology planning for OpenWrt.

    Reads a device's UCI configuration, applies a mesh plan to it and
    prints (or runs) the resulting uci commands.

    Examples:

        \b
        # Show the commands a plan would run
        wrtmesh plan controller.yaml --config-dir ./etc-config

        \b
        # Apply a plan to a device
        wrtmesh plan agent.yaml --target root@10.42.0.1 --apply

        \b
        # Check the lan bridge
        wrtmesh validate lan --target 192.168.1.1
    """
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@cli.command()
@click.argument("plan_file", type=click.Path(exists=True))
@_source_options
@click.option("--apply", "do_apply", is_flag=True, help="Run the commands on --target")
@click.option("--no-reload", is_flag=True, help="Don't restart services after applying")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt")
def plan(
    plan_file: str,
    config_dir: Optional[str],
    target: Optional[str],
    password: Optional[str],
    key_file: Optional[str],
    timeout: int,
    do_apply: bool,
    no_reload: bool,
    yes: bool,
) -> None:
    """Plan the mesh topology described by PLAN_FILE.

    Prints the uci commands as a shell script. With --apply (and --target)
    the commands are run on the device.

    Examples:

        \b
        wrtmesh plan controller.yaml -d ./etc-config > apply.sh
        wrtmesh plan agent.yaml --target 10.42.0.1 --apply -y
    """
    if do_apply and not target:
        raise click.UsageError("--apply needs --target")

    conn = None
    try:
        mesh_plan = load_plan(plan_file)
        store, conn = _read_store(config_dir, target, password, key_file, timeout)

        planner = mesh_plan.planner_for(store)
        planner.apply(mesh_plan.intent)

        if not store.has_changes():
            click.echo("Configuration is already in sync - nothing to apply.", err=True)
            return

        click.echo(store.to_script(include_commit=True, include_reload=not do_apply))

        if do_apply and conn is not None:
            changed = store.changed_packages()
            if not yes and not click.confirm(
                f"Apply {len(store.changes())} changes to {target}?", err=True
            ):
                click.echo("Aborted.", err=True)
                return
            conn.run_script(store.to_script(include_commit=True, include_reload=False))
            if not no_reload:
                conn.reload_services(changed)
            store.commit()
            click.echo("\nConfiguration applied successfully!", err=True)
    except WrtMeshError as e:
        _fail(str(e))
    finally:
        if conn is not None:
            conn.disconnect()


@cli.command()
@click.argument("network")
@_source_options
def validate(
    network: str,
    config_dir: Optional[str],
    target: Optional[str],
    password: Optional[str],
    key_file: Optional[str],
    timeout: int,
) -> None:
    """Check that NETWORK's bridge can work.

    A non-WDS Wi-Fi client (station or adhoc) can't share a bridge with
    anything else.

    Examples:

        \b
        wrtmesh validate lan -d ./etc-config
    """
    conn = None
    try:
        store, conn = _read_store(config_dir, target, password, key_file, timeout)
    except WrtMeshError as e:
        _fail(str(e))
    finally:
        if conn is not None:
            conn.disconnect()

    if store.get_section("network", network) is None:
        _fail(f"No network interface named '{network}'")

    conflict = find_bridge_conflict(store, network)
    if conflict is not None:
        _fail(conflict.format_message())

    click.echo(f"Network '{network}' is valid.")


@cli.command()
@click.option("--halow-mac", help="MAC of the HaLow radio to derive from")
@click.option("--seed", type=int, help="Seed for the random MAC")
def mac(halow_mac: Optional[str], seed: Optional[int]) -> None:
    """Print a generated MAC address.

    With --halow-mac the address is derived from the HaLow radio's MAC
    (as used for the mesh bridge), otherwise it is random.
    """
    if halow_mac:
        if not is_valid_mac(halow_mac):
            _fail(f"Invalid MAC address: {halow_mac}")
        derived = get_fake_morse_mac([NetDevice(name="halow", type="wifi", mac=halow_mac, hwmodes=["ah"])])
        click.echo(derived)
    else:
        click.echo(get_random_mac(random.Random(seed)))


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
