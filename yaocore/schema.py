"""Import definitions: target columns, import options and field mappings."""

from __future__ import annotations

import json
from collections.abc import Mapping as _Mapping
from dataclasses import dataclass
from dataclasses import field as _field
from typing import Any

from .share import _format_value, _to_int

PREVIEW_AUTO = "auto"
PREVIEW_ALWAYS = "always"
PREVIEW_NEVER = "never"
_PREVIEWS = frozenset({PREVIEW_AUTO, PREVIEW_ALWAYS, PREVIEW_NEVER})

DEFAULT_CHUNK_SIZE = 500
MAX_CHUNK_SIZE = 2000


class FormatError(ValueError):
    """A definition has a missing or malformed field."""


def error_f(template: str, *args: Any) -> FormatError:
    """Build a FormatError, inserting each argument in its JSON form."""
    values = tuple(json.dumps(arg, ensure_ascii=False, default=str) for arg in args)
    return FormatError(template % values)


def get_string(data: _Mapping[str, Any], key: str, required: bool) -> str:
    """Read a string (or bytes) field; a required field must not be empty."""
    value = data.get(key)
    if isinstance(value, bytes):
        value = value.decode()
    if not isinstance(value, str) or (required and value == ""):
        raise error_f("the %s format is incorrect", key)
    return value


def get_array_string(data: _Mapping[str, Any], key: str) -> list[str]:
    """Read a field holding a string or a list of values as a list of strings."""
    value = data.get(key)
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [_format_value(item) for item in value]
    raise error_f("the %s format is incorrect", key)


def _parse_json(text: str | bytes, what: str) -> _Mapping[str, Any]:
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise FormatError(f"{what}: {exc}") from exc
    if not isinstance(data, _Mapping):
        raise FormatError(f"{what} must be an object")
    return data


def _split_name(raw: str) -> tuple[str, str, bool, bool]:
    """Split "skus[*].name" into ("skus", "name", is_array, is_object)."""
    name = raw
    key = ""
    is_array = False
    is_object = False
    if "[*]" in name:
        name = name.replace("[*]", "")
        is_array = True
    if "." in name:
        head, *rest = name.split(".")
        name = head
        if rest:
            is_object = True
            key = ".".join(rest)
    return name, key, is_array, is_object


@dataclass
class ImportColumn:
    """A target column of an import."""

    label: str = ""
    name: str = ""
    field: str = ""
    match: list[str] = _field(default_factory=list)
    rules: list[str] = _field(default_factory=list)
    nullable: bool = False
    primary: bool = False
    key: str = ""
    is_array: bool = False
    is_object: bool = False

    def to_map(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.field,
            "label": self.label,
            "match": list(self.match),
            "rules": list(self.rules),
        }
        if self.nullable:
            data["nullable"] = True
        if self.primary:
            data["primary"] = True
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_map(), ensure_ascii=False)

    @classmethod
    def from_json(cls, text: str | bytes) -> ImportColumn:
        return column_of(_parse_json(text, "column"))


def column_of(data: Any) -> ImportColumn:
    """Build an ImportColumn from its definition; raise FormatError when invalid."""
    if not isinstance(data, _Mapping):
        raise FormatError("column must be an object")
    label = get_string(data, "label", True)
    raw_name = get_string(data, "name", True)
    match = get_array_string(data, "match")
    rules = get_array_string(data, "rules")
    name, key, is_array, is_object = _split_name(raw_name)
    primary = data.get("primary")
    nullable = data.get("nullable")
    return ImportColumn(
        label=label,
        name=name,
        field=raw_name,
        match=match,
        rules=rules,
        nullable=nullable if isinstance(nullable, bool) else False,
        primary=primary if isinstance(primary, bool) else False,
        key=key,
        is_array=is_array,
        is_object=is_object,
    )


@dataclass
class Option:
    """Import options."""

    use_template: bool = True
    template_link: str = ""
    chunk_size: int = DEFAULT_CHUNK_SIZE
    mapping_preview: str = PREVIEW_AUTO
    data_preview: str = PREVIEW_AUTO

    @classmethod
    def from_json(cls, text: str | bytes) -> Option:
        return option_of(_parse_json(text, "option"))


def _preview(value: str) -> str:
    return value if value in _PREVIEWS else PREVIEW_AUTO


def option_of(data: Any) -> Option:
    """Read import options; unknown or out-of-range values fall back to defaults."""
    if not isinstance(data, _Mapping):
        raise FormatError("option must be an object")
    option = Option()
    use_template = data.get("useTemplate")
    if isinstance(use_template, bool):
        option.use_template = use_template
    try:
        chunk_size = _to_int(data.get("chunkSize"))
    except (TypeError, ValueError):
        chunk_size = 0
    if 0 < chunk_size < MAX_CHUNK_SIZE:
        option.chunk_size = chunk_size
    mapping_preview = data.get("mappingPreview")
    if isinstance(mapping_preview, str):
        option.mapping_preview = _preview(mapping_preview)
    data_preview = data.get("dataPreview")
    if isinstance(data_preview, str):
        option.data_preview = _preview(data_preview)
    return option


def _str_field(data: _Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise error_f("the %s format is incorrect", key)
    return value


def _str_list(data: _Mapping[str, Any], key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
        raise error_f("the %s format is incorrect", key)
    return list(value)


def _int_field(data: _Mapping[str, Any], key: str) -> int:
    try:
        return _to_int(data.get(key))
    except (TypeError, ValueError) as exc:
        raise error_f("the %s format is incorrect", key) from exc


@dataclass
class Binding:
    """Binds a target field to a source column."""

    label: str = ""
    field: str = ""
    name: str = ""
    axis: str = ""
    value: str = ""
    rules: list[str] = _field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> Binding:
        if not isinstance(data, _Mapping):
            raise FormatError("binding must be an object")
        return cls(
            label=_str_field(data, "label"),
            field=_str_field(data, "field"),
            name=_str_field(data, "name"),
            axis=_str_field(data, "axis"),
            value=_str_field(data, "value"),
            rules=_str_list(data, "rules"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "field": self.field,
            "name": self.name,
            "axis": self.axis,
            "value": self.value,
            "rules": list(self.rules),
        }


@dataclass
class Mapping:
    """Mapping between the columns of a source sheet and the import fields."""

    sheet: str = ""
    col_start: int = 0
    row_start: int = 0
    columns: list[Binding] = _field(default_factory=list)
    auto_matching: bool = False
    template_matching: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> Mapping:
        if not isinstance(data, _Mapping):
            raise FormatError("mapping must be an object")
        bindings = data.get("data")
        if bindings is None:
            bindings = []
        if not isinstance(bindings, (list, tuple)):
            raise error_f("the %s format is incorrect", "data")
        return cls(
            sheet=_str_field(data, "sheet"),
            col_start=_int_field(data, "colStart"),
            row_start=_int_field(data, "rowStart"),
            columns=[Binding.from_dict(item) for item in bindings],
            auto_matching=bool(data.get("autoMatching", False)),
            template_matching=bool(data.get("templateMatching", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sheet": self.sheet,
            "colStart": self.col_start,
            "rowStart": self.row_start,
            "data": [binding.to_dict() for binding in self.columns],
            "autoMatching": self.auto_matching,
            "templateMatching": self.template_matching,
        }