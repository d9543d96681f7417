"""Staged, in-memory UCI configuration store.

All reconciliation functions in wrtmesh read and write through a
``UCIStore``. Mutations are applied to a working copy and recorded as
``UCICommand``s; ``commit`` folds them into the base state and ``discard``
throws them away. Nothing here talks to a device: the pending change log is
rendered as a shell script and shipped by the caller.
"""

import copy
import logging
import shlex
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import yaml
from pydantic import BaseModel, Field

from .base import OptionValue, UCICommand, as_list, as_scalar, to_option_value
from .errors import DuplicateSectionError, SectionNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_PACKAGES = ("network", "wireless", "firewall", "dhcp")
# Everything the mesh planner reads or writes.
MESH_PACKAGES = DEFAULT_PACKAGES + ("prplmesh", "mesh11sd", "system")

# Service reloads needed per changed package, in the order they should run.
RELOAD_COMMANDS = (
    ("network", "/etc/init.d/network restart"),
    ("wireless", "wifi reload"),
    ("dhcp", "/etc/init.d/dnsmasq restart"),
    ("firewall", "/etc/init.d/firewall reload"),
    ("prplmesh", "/etc/init.d/prplmesh restart"),
)


class Section(BaseModel):
    """A single UCI section record."""

    name: str
    type: str
    anonymous: bool = False
    options: Dict[str, OptionValue] = Field(default_factory=dict)

    def get(self, option: str, default: Optional[OptionValue] = None) -> Optional[OptionValue]:
        return self.options.get(option, default)

    def get_str(self, option: str) -> Optional[str]:
        """Single-valued read; a list gives its first item."""
        return as_scalar(self.options.get(option))

    def get_list(self, option: str) -> List[str]:
        return as_list(self.options.get(option))


Packages = Dict[str, Dict[str, Section]]


class UCIStore:
    """Transactional view over the uci packages of one device."""

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self._base: Packages = {}
        self._staged: Packages = {}
        self._changes: List[UCICommand] = []
        self._new_anonymous: Set[Tuple[str, str]] = set()
        # Anonymous sections whose id on the device is unknown; addressed as @type[index].
        self._positional: Set[Tuple[str, str]] = set()
        self._counter = 0
        if data:
            for package, sections in data.items():
                self._load_sections(package, self._sections_from_dict(sections))

    # Loading
    def _next_anonymous_id(self) -> str:
        while True:
            self._counter += 1
            candidate = f"cfg{self._counter:06x}"
            if not any(candidate in s for s in self._staged.values()):
                return candidate

    def _sections_from_dict(self, sections: Dict[str, Any]) -> List[Section]:
        result = []
        for name, body in (sections or {}).items():
            body = dict(body or {})
            section_type = body.pop(".type", None)
            if not section_type:
                raise ValueError(f"Section '{name}' has no .type")
            anonymous = bool(body.pop(".anonymous", False))
            options = {k: to_option_value(v) for k, v in body.items() if v is not None}
            result.append(Section(name=str(name), type=section_type, anonymous=anonymous, options=options))
        return result

    def _load_sections(self, package: str, sections: Iterable[Section]) -> None:
        loaded = {s.name: s for s in sections}
        self._base[package] = loaded
        self._staged[package] = copy.deepcopy(loaded)
        logger.debug("Loaded %d sections into package %s", len(loaded), package)

    def load_package(self, package: str, config_str: str) -> None:
        """
        Load a package from ``uci export`` / ``/etc/config`` syntax.

        config device
            option name 'br-lan'
            list ports 'lan1'

        Exports don't carry ids for anonymous sections, so they are given
        store-local ids and addressed as ``package.@type[index]`` in scripts.
        """
        # Register the package first so anonymous ids are checked against it.
        self._staged.setdefault(package, {})
        sections: List[Section] = []
        current: Optional[Section] = None

        for line in config_str.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            tokens = shlex.split(line)
            keyword = tokens[0]

            if keyword == "package":
                continue
            elif keyword == "config" and len(tokens) >= 2:
                if len(tokens) >= 3:
                    current = Section(name=tokens[2], type=tokens[1])
                else:
                    current = Section(name=self._next_anonymous_id(), type=tokens[1], anonymous=True)
                sections.append(current)
            elif keyword == "option" and current is not None and len(tokens) >= 2:
                current.options[tokens[1]] = tokens[2] if len(tokens) >= 3 else ""
            elif keyword == "list" and current is not None and len(tokens) >= 3:
                items = as_list(current.options.get(tokens[1]))
                items.append(tokens[2])
                current.options[tokens[1]] = items

        self._load_sections(package, sections)
        self._positional = {p for p in self._positional if p[0] != package}
        self._positional.update((package, s.name) for s in sections if s.anonymous)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UCIStore":
        """
        Create a store from ``{package: {section: {".type": ..., option: value}}}``.

        ``.anonymous: true`` marks an unnamed section; its key is taken to be
        the id uci reports for it (``uci show`` style, e.g. ``cfg030f15``).
        """
        return cls(data)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "UCIStore":
        return cls.from_dict(yaml.safe_load(yaml_str) or {})

    @classmethod
    def from_yaml_file(cls, filename: str) -> "UCIStore":
        with open(filename, 'r') as f:
            return cls.from_yaml(f.read())

    @classmethod
    def from_config_dir(cls, directory: str, packages: Iterable[str] = DEFAULT_PACKAGES) -> "UCIStore":
        """Load packages from a directory laid out like ``/etc/config``."""
        store = cls()
        for package in packages:
            path = Path(directory) / package
            if path.exists():
                store.load_package(package, path.read_text())
            else:
                logger.debug("No %s in %s, starting empty", package, directory)
        return store

    def to_dict(self) -> Dict[str, Any]:
        """Dump the staged state in the ``from_dict`` layout."""
        data: Dict[str, Any] = {}
        for package, sections in self._staged.items():
            data[package] = {}
            for section in sections.values():
                body: Dict[str, Any] = {".type": section.type}
                if section.anonymous:
                    body[".anonymous"] = True
                body.update(copy.deepcopy(section.options))
                data[package][section.name] = body
        return data

    def to_yaml(self) -> str:
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    # Reads
    def packages(self) -> List[str]:
        return list(self._staged)

    def sections(self, package: str, section_type: Optional[str] = None) -> List[Section]:
        """Return snapshots of the sections of a package, in order."""
        return [
            s.model_copy(deep=True)
            for s in self._staged.get(package, {}).values()
            if section_type is None or s.type == section_type
        ]

    def get_section(self, package: str, section: str) -> Optional[Section]:
        found = self._staged.get(package, {}).get(section)
        return found.model_copy(deep=True) if found else None

    def get(self, package: str, section: str, option: str) -> Optional[OptionValue]:
        found = self._staged.get(package, {}).get(section)
        if found is None:
            return None
        return copy.copy(found.options.get(option))

    def get_first(self, package: str, section_type: str, option: str) -> Optional[OptionValue]:
        for section in self._staged.get(package, {}).values():
            if section.type == section_type:
                return copy.copy(section.options.get(option))
        return None

    # Writes
    def _path(self, package: str, section: str) -> str:
        if (package, section) in self._new_anonymous:
            return f"{package}.${{{section}}}"
        if (package, section) in self._positional:
            # Index among sections of the same type as of this command, which
            # is also what uci sees when the script gets to it.
            section_type = self._staged[package][section].type
            same_type = [name for name, s in self._staged[package].items() if s.type == section_type]
            return f"{package}.@{section_type}[{same_type.index(section)}]"
        return f"{package}.{section}"

    def _require(self, package: str, section: str) -> Section:
        found = self._staged.get(package, {}).get(section)
        if found is None:
            raise SectionNotFoundError(package, section)
        return found

    def add(self, package: str, section_type: str, name: Optional[str] = None) -> str:
        """Add a section and return its id (generated when ``name`` is None)."""
        sections = self._staged.setdefault(package, {})
        if name is not None:
            if name in sections:
                raise DuplicateSectionError(package, name)
            sections[name] = Section(name=name, type=section_type)
            self._changes.append(UCICommand("set", self._path(package, name), section_type))
            return name

        section_id = self._next_anonymous_id()
        sections[section_id] = Section(name=section_id, type=section_type, anonymous=True)
        self._changes.append(UCICommand("add", f"{package}.{section_id}", section_type))
        self._new_anonymous.add((package, section_id))
        return section_id

    def ensure_section(self, package: str, section_type: str, name: str) -> str:
        """Add a named section unless one with that name already exists."""
        if self.get_section(package, name) is None:
            self.add(package, section_type, name)
        return name

    def set(self, package: str, section: str, option: str, value: Any) -> None:
        """Set an option; lists replace the whole list, an empty list unsets."""
        found = self._require(package, section)
        new_value = to_option_value(value)
        if new_value == []:
            self.unset(package, section, option)
            return
        if found.options.get(option) == new_value:
            return

        path = f"{self._path(package, section)}.{option}"
        if isinstance(new_value, list):
            if option in found.options:
                self._changes.append(UCICommand("delete", path))
            for item in new_value:
                self._changes.append(UCICommand("add_list", path, item))
        else:
            self._changes.append(UCICommand("set", path, new_value))
        found.options[option] = new_value

    def unset(self, package: str, section: str, option: str) -> None:
        found = self._staged.get(package, {}).get(section)
        if found is None or option not in found.options:
            return
        del found.options[option]
        self._changes.append(UCICommand("delete", f"{self._path(package, section)}.{option}"))

    def delete(self, package: str, section: str) -> None:
        self._require(package, section)
        self._changes.append(UCICommand("delete", self._path(package, section)))
        del self._staged[package][section]

    # Transactions
    def changes(self) -> List[UCICommand]:
        return list(self._changes)

    def has_changes(self) -> bool:
        return bool(self._changes)

    def changed_packages(self) -> Set[str]:
        return {cmd.package for cmd in self._changes}

    def commit(self) -> None:
        """Make the staged state the new base state."""
        self._base = copy.deepcopy(self._staged)
        self._changes = []
        # Once the script has run, uci has picked ids we never see.
        self._positional.update(self._new_anonymous)
        self._new_anonymous = set()

    def discard(self) -> None:
        """Drop every staged change."""
        self._staged = copy.deepcopy(self._base)
        self._changes = []
        self._new_anonymous = set()

    def to_script(self, include_commit: bool = True, include_reload: bool = True) -> str:
        """
        Generate a shell script with all staged UCI commands.

        Args:
            include_commit: Whether to include 'uci commit' command
            include_reload: Whether to restart services for changed packages

        Returns:
            A shell script as a string
        """
        lines = ["#!/bin/sh", ""]

        for cmd in self._changes:
            lines.append(cmd.to_string())

        if include_commit:
            lines.append("")
            lines.append("uci commit")

        if include_reload:
            changed = self.changed_packages()
            for package, command in RELOAD_COMMANDS:
                if package in changed:
                    lines.append(command)

        return "\n".join(lines)
