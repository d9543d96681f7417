"""Base classes for UCI configuration components."""

from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, TypeVar, Union, get_args, get_origin
from pydantic import BaseModel, ConfigDict, PrivateAttr, field_validator

T = TypeVar('T', bound='UCISection')

# A uci option holds either a single string or an ordered list of strings.
OptionValue = Union[str, List[str]]


def as_list(value: Optional[OptionValue]) -> List[str]:
    """Return an option value as a list (empty for unset options)."""
    if value is None:
        return []
    if isinstance(value, list):
        return list(value)
    return [value]


def as_scalar(value: Optional[OptionValue]) -> Optional[str]:
    """Return an option value as a single string (first item of a list)."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _accepts_list(annotation: Any) -> bool:
    """Whether a field annotation allows a list (``List[str]`` or ``OptionValue``)."""
    if get_origin(annotation) is list:
        return True
    return any(_accepts_list(arg) for arg in get_args(annotation))


def to_option_value(value: Any) -> OptionValue:
    """Convert Python values to UCI string values."""
    if isinstance(value, (list, tuple)):
        return [to_option_value(item) for item in value]  # type: ignore[misc]
    if isinstance(value, bool):
        return "1" if value else "0"
    elif isinstance(value, int):
        return str(value)
    else:
        return str(value)


class UCICommand:
    """Represents a single staged UCI command."""

    def __init__(self, action: str, path: str, value: Optional[str] = None):
        self.action = action
        self.path = path
        self.value = value

    @property
    def package(self) -> str:
        return self.path.split(".", 1)[0]

    def to_string(self) -> str:
        """Convert command to UCI string format."""
        value = str(self.value).replace("'", "'\\''")
        if self.action == "set":
            return f"uci set {self.path}='{value}'"
        elif self.action == "add_list":
            return f"uci add_list {self.path}='{value}'"
        elif self.action == "delete":
            return f"uci delete {self.path}"
        elif self.action == "add":
            # Anonymous section: path is "<package>.<shell variable>"
            package, var = self.path.split(".", 1)
            return f"{var}=$(uci add {package} {self.value})"
        else:
            raise ValueError(f"Unknown action: {self.action}")

    def __repr__(self) -> str:
        return f"UCICommand({self.action}, {self.path}, {self.value})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UCICommand):
            return False
        return (
            self.action == other.action
            and self.path == other.path
            and self.value == other.value
        )


class UCISection(BaseModel):
    """
    Typed, read-only view over a UCI section.

    Views are built from store records with ``from_section``; options not
    declared on the subclass are kept as extras. Fields listed in
    ``_list_fields`` accept either a string or a list and are normalised to
    lists.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    _package: ClassVar[str] = ""
    _section_type: ClassVar[str] = ""
    _list_fields: ClassVar[Tuple[str, ...]] = ()

    _section: str = PrivateAttr(default="")
    _anonymous: bool = PrivateAttr(default=False)

    @field_validator("*", mode="before")
    @classmethod
    def _normalise_lists(cls, value: Any, info: Any) -> Any:
        if info.field_name in cls._list_fields:
            return as_list(value)
        # uci reads "option x 'a'" and "list x 'a'" the same way.
        if isinstance(value, list) and not _accepts_list(cls.model_fields[info.field_name].annotation):
            return as_scalar(value)
        return value

    @property
    def section_name(self) -> str:
        return self._section

    @property
    def anonymous(self) -> bool:
        return self._anonymous

    @classmethod
    def from_section(cls: Type[T], section: Any) -> T:
        """
        Create a view from a store ``Section`` record.

        Args:
            section: Record returned by ``UCIStore.sections``/``get_section``

        Returns:
            Instance of this view
        """
        view = cls.model_validate(dict(section.options))
        view._section = section.name
        view._anonymous = section.anonymous
        return view

    def to_dict(self, exclude_none: bool = True) -> Dict[str, Any]:
        """
        Convert this view back to a plain option dictionary.

        Args:
            exclude_none: Whether to exclude None values

        Returns:
            Dictionary representation
        """
        data = self.model_dump(exclude_none=exclude_none)
        return {k: v for k, v in data.items() if not k.startswith('_') and v != []}
