"""Shared definitions: application metadata, UI descriptors and file helpers."""

from __future__ import annotations

import os
import posixpath
import stat
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

VERSION = "0.10.0"
PRVERSION = "DEV"
BUILDIN = False
BUILDNAME = "yao"

_SCHEMES = ("fs://", "file://")


def _strip_scheme(path: str) -> str:
    for scheme in _SCHEMES:
        path = path.removeprefix(scheme)
    return path


def _format_value(value: Any) -> str:
    """Render a value the way a generic text formatter would print it."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_format_value(item) for item in value) + "]"
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "map[" + " ".join(f"{_format_value(k)}:{_format_value(v)}" for k, v in items) + "]"
    return str(value)


def _to_int(value: Any) -> int:
    """Coerce a loosely typed value to an integer."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, (str, bytes)):
        text = (value.decode() if isinstance(value, bytes) else value).strip()
        if not text:
            return 0
        try:
            return int(text)
        except ValueError:
            return int(float(text))
    raise TypeError(f"cannot convert {type(value).__name__} to int")


def _mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise TypeError(f"{what} must be an object, got {type(data).__name__}")
    return data


def _opt_dict(value: Any, what: str) -> dict[str, Any] | None:
    if value is None:
        return None
    return dict(_mapping(value, what))


def _import_fields(data: Mapping[str, Any]) -> dict[str, Any]:
    source = data.get("in")
    if source is not None and not isinstance(source, (list, tuple)):
        raise TypeError("in must be an array")
    return {
        "import_name": str(data.get("@") or ""),
        "import_in": list(source) if source is not None else None,
    }


def _dump_import(out: dict[str, Any], import_name: str, import_in: list[Any] | None) -> dict[str, Any]:
    if import_name:
        out["@"] = import_name
    if import_in:
        out["in"] = list(import_in)
    return out


@dataclass
class Script:
    """A file found in an application directory."""

    name: str = ""
    type: str = ""
    content: bytes = b""
    file: str = ""


@dataclass
class Render:
    """How a component is rendered."""

    type: str = ""
    props: dict[str, Any] | None = None
    components: dict[str, Any] | None = None
    import_name: str = ""
    import_in: list[Any] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Render:
        data = _mapping(data, "render")
        return cls(
            type=str(data.get("type") or ""),
            props=_opt_dict(data.get("props"), "props"),
            components=_opt_dict(data.get("components"), "components"),
            **_import_fields(data),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.type:
            out["type"] = self.type
        if self.props:
            out["props"] = dict(self.props)
        if self.components:
            out["components"] = dict(self.components)
        return _dump_import(out, self.import_name, self.import_in)


def _render_of(value: Any) -> Render:
    return Render() if value is None else Render.from_dict(value)


@dataclass
class Column:
    """How a data field is shown, edited and exported."""

    label: str = ""
    export: str = ""
    view: Render = field(default_factory=Render)
    edit: Render = field(default_factory=Render)
    form: Render = field(default_factory=Render)
    import_name: str = ""
    import_in: list[Any] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Column:
        data = _mapping(data, "column")
        return cls(
            label=str(data.get("label") or ""),
            export=str(data.get("export") or ""),
            view=_render_of(data.get("view")),
            edit=_render_of(data.get("edit")),
            form=_render_of(data.get("form")),
            **_import_fields(data),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"label": self.label}
        if self.export:
            out["export"] = self.export
        out["view"] = self.view.to_dict()
        out["edit"] = self.edit.to_dict()
        out["form"] = self.form.to_dict()
        return _dump_import(out, self.import_name, self.import_in)


@dataclass
class Filter:
    """A query filter bound to an input component."""

    label: str = ""
    bind: str = ""
    input: Render = field(default_factory=Render)
    import_name: str = ""
    import_in: list[Any] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Filter:
        data = _mapping(data, "filter")
        return cls(
            label=str(data.get("label") or ""),
            bind=str(data.get("bind") or ""),
            input=_render_of(data.get("input")),
            **_import_fields(data),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"label": self.label}
        if self.bind:
            out["bind"] = self.bind
        out["input"] = self.input.to_dict()
        return _dump_import(out, self.import_name, self.import_in)


@dataclass
class Page:
    """Layout of a list page."""

    primary: str = ""
    layout: dict[str, Any] | None = None
    actions: dict[str, Render] | None = None
    option: dict[str, Any] | None = None
    import_name: str = ""
    import_in: list[Any] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Page:
        data = _mapping(data, "page")
        actions = data.get("actions")
        return cls(
            primary=str(data.get("primary") or ""),
            layout=_opt_dict(data.get("layout"), "layout"),
            actions=None
            if actions is None
            else {name: Render.from_dict(value) for name, value in _mapping(actions, "actions").items()},
            option=_opt_dict(data.get("option"), "option"),
            **_import_fields(data),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"primary": self.primary, "layout": self.layout}
        if self.actions:
            out["actions"] = {name: render.to_dict() for name, render in self.actions.items()}
        if self.option:
            out["option"] = dict(self.option)
        return _dump_import(out, self.import_name, self.import_in)


@dataclass
class API:
    """Configuration of an exposed API endpoint."""

    name: str = ""
    source: str = ""
    disable: bool = False
    process: str = ""
    guard: str = ""
    default: list[Any] | None = None
    import_name: str = ""
    import_in: list[Any] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> API:
        data = _mapping(data, "api")
        default = data.get("default")
        if default is not None and not isinstance(default, (list, tuple)):
            raise TypeError("default must be an array")
        return cls(
            disable=bool(data.get("disable", False)),
            process=str(data.get("process") or ""),
            guard=str(data.get("guard") or ""),
            default=list(default) if default is not None else None,
            **_import_fields(data),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.disable:
            out["disable"] = True
        if self.process:
            out["process"] = self.process
        if self.guard:
            out["guard"] = self.guard
        if self.default:
            out["default"] = list(self.default)
        return _dump_import(out, self.import_name, self.import_in)

    def validate_loop(self, name: str) -> API:
        """Raise ValueError when the API would call itself."""
        if self.process_is(name):
            raise ValueError(f"circular reference {name}")
        return self

    def process_is(self, name: str) -> bool:
        return self.process.lower() == name.lower()

    def _default_at(self, index: int) -> Any:
        if not self.default or not 0 <= index < len(self.default):
            return None
        return self.default[index]

    def default_int(self, index: int, default: int = 0) -> int:
        value = self._default_at(index)
        return default if value is None else _to_int(value)

    def default_string(self, index: int, default: str = "") -> str:
        value = self._default_at(index)
        if value is None:
            return default
        return value if isinstance(value, str) else _format_value(value)


@dataclass
class AppStorageOSS:
    endpoint: str = ""
    id: str = ""
    secret: str = ""
    role_arn: str = ""
    session_name: str = ""


@dataclass
class AppStorage:
    default: str = ""
    buckets: dict[str, str] | None = None
    s3: dict[str, Any] | None = None
    oss: AppStorageOSS | None = None
    cos: dict[str, Any] | None = None


@dataclass
class AppInfo:
    """Application metadata."""

    name: str = ""
    lang: str = ""
    l: dict[str, str] = field(default_factory=dict)  # noqa: E741
    short: str = ""
    version: str = ""
    description: str = ""
    icons: dict[str, str] = field(default_factory=dict)
    storage: AppStorage = field(default_factory=AppStorage)
    option: dict[str, Any] | None = None

    def public(self) -> AppInfo:
        """Return a copy without storage credentials."""
        return replace(self, storage=replace(self.storage, cos=None, oss=None, s3=None))


@dataclass
class AppRoot:
    apis: str = ""
    flows: str = ""
    models: str = ""
    plugins: str = ""
    tables: str = ""
    charts: str = ""
    screens: str = ""
    data: str = ""


def _walk_paths(path: str) -> Iterator[str]:
    yield path
    if stat.S_ISDIR(os.lstat(path).st_mode):
        for entry in sorted(os.listdir(path)):
            yield from _walk_paths(f"{path}/{entry}")


def _matching(root: str, suffix: str) -> tuple[str, Iterator[str]]:
    root = posixpath.normpath(root)
    os.lstat(root)
    return root, (path for path in _walk_paths(root) if path.endswith(suffix))


def walk(root: str, suffix: str) -> Iterator[tuple[str, str]]:
    """Yield (root, path) for every path under root ending with suffix, in lexical order."""
    clean_root, paths = _matching(_strip_scheme(root), suffix)
    return ((clean_root, path) for path in paths)


def spec_name(root: str, file: str) -> str:
    """Dotted name of a spec file: ("/t/apis", "/t/apis/foo/bar.http.json") gives "foo.bar"."""
    filename = file.removeprefix(root + "/")
    return ".".join(filename.split(".")[0].split("/"))


def script_name(filename: str) -> str:
    parts = filename.removesuffix(".js").split(".")
    return parts[0] if len(parts) < 2 else parts[-1]


def read_file(filename: str | os.PathLike[str]) -> bytes:
    return Path(filename).read_bytes()


def dir_not_exists(directory: str) -> bool:
    try:
        os.stat(_strip_scheme(directory))
    except FileNotFoundError:
        return True
    except OSError:
        return False
    return False


def dir_abs(directory: str) -> str:
    return os.path.abspath(_strip_scheme(directory))


def get_type_name(path: str) -> tuple[str, str]:
    """Split "type/a/b.ext" into ("a.b", "type")."""
    parts = path.split(".")[0].split("/")
    return ".".join(parts[1:]), parts[0]


def get_app_file_name(root: str, file: str) -> str:
    return spec_name(root, file)


def get_app_file_base_name(root: str, file: str) -> str:
    first = file.removeprefix(root + "/").split(".")[0]
    joined = "/".join(part for part in (root, first) if part)
    return posixpath.normpath(joined) if joined else ""


def get_file_name(root: str, file: str) -> str:
    return get_type_name(file.removeprefix(root + "/"))[0]


def get_file_base_name(root: str, file: str) -> str:
    return get_app_file_base_name(root, file)


def get_app_plugins(root: str, suffix: str) -> list[Script]:
    root, paths = _matching(root, suffix)
    return [Script(name=get_app_file_name(root, path), type="plugin", file=path) for path in paths]


def get_app_files(root: str, suffix: str) -> list[Script]:
    root, paths = _matching(root, suffix)
    return [
        Script(name=get_app_file_name(root, path), type="app", content=read_file(path)) for path in paths
    ]


def get_files(root: str, suffix: str) -> list[Script]:
    root, paths = _matching(root, suffix)
    scripts = []
    for path in paths:
        name, typ = get_type_name(path.removeprefix(root + "/"))
        scripts.append(Script(name=name, type=typ, content=read_file(path)))
    return scripts