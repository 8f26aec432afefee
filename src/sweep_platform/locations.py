"""Input locations and XML target paths."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import Enum
from typing import Union

from sweep_platform.errors import VariationError


class Location(str, Enum):
    """Input file category a target parameter lives in."""

    CONFIG = "config"
    RULESETS_COLLECTION = "rulesets_collection"
    INTRACELLULAR = "intracellular"
    IC_CELL = "ic_cell"
    IC_ECM = "ic_ecm"

    @property
    def table_name(self) -> str:
        return f"{self.value}_variations"

    @property
    def id_column(self) -> str:
        return f"{self.value}_variation_id"


def _validate_element(element: str) -> None:
    tokens = element.split(":")
    if len(tokens) < 4:
        return
    # tag::child:content or tag:attr:custom:name
    if tokens[1] == "" or tokens[2] == "custom":
        return
    raise VariationError(
        f"Invalid XML path element {element!r}.",
        user_message=(
            f"XML path element {element!r} has too many ':' tokens; use "
            "'tag::child_tag:child_content' or 'tag:attr:custom:...'."
        ),
        context={"element": element},
    )


class XMLPath(tuple):
    """Immutable path of XML elements identifying one input value."""

    def __new__(cls, elements: Union[str, Iterable[str]]) -> "XMLPath":
        if isinstance(elements, str):
            elements = [elements]
        items = tuple(elements)
        if not items:
            raise VariationError("XML path must contain at least one element.")
        for item in items:
            if not isinstance(item, str) or not item:
                raise VariationError(
                    f"XML path elements must be non-empty strings, got {item!r}."
                )
            _validate_element(item)
        return super().__new__(cls, items)

    @property
    def column_name(self) -> str:
        return "/".join(self)

    def __repr__(self) -> str:
        return f"XMLPath({self.column_name!r})"


def as_xml_path(value: Union[XMLPath, str, Sequence[str]]) -> XMLPath:
    if isinstance(value, XMLPath):
        return value
    return XMLPath(value)


def variation_location(path: Union[XMLPath, Sequence[str]]) -> Location:
    """Infer the input location from the first element of ``path``."""
    first = path[0]
    if first.startswith("behavior_ruleset:name:"):
        return Location.RULESETS_COLLECTION
    if first == "intracellulars":
        return Location.INTRACELLULAR
    if first.startswith("cell_patches:name:"):
        return Location.IC_CELL
    if first.startswith("layer:ID:"):
        return Location.IC_ECM
    return Location.CONFIG


def as_location(value: Union[Location, str]) -> Location:
    try:
        return Location(value)
    except ValueError as exc:
        options = ", ".join(loc.value for loc in Location)
        raise VariationError(
            f"Unknown location {value!r}. Available: {options}."
        ) from exc


__all__ = [
    "Location",
    "XMLPath",
    "as_xml_path",
    "as_location",
    "variation_location",
]
