"""Data pages: loading, default APIs and settings lookup."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from . import share
from .process import Process, ProcessError, register_process_handler
from .share import API, Filter

log = logging.getLogger(__name__)

PAGES: dict[str, Page] = {}


class PageNotLoaded(ProcessError):
    """The requested page has not been loaded."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Page:{name}; not loaded", 400)
        self.page_name = name


def _default_apis() -> dict[str, API]:
    return {
        "data": API(name="data", guard="bearer-jwt", process="xiang.page.data", default=[{}]),
        "setting": API(name="setting", guard="bearer-jwt", process="xiang.page.setting"),
    }


def _named(value: Any, what: str, parse: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise TypeError(f"{what} must be an object")
    return {name: parse(item) for name, item in value.items()}


@dataclass
class Page:
    """A data page with its APIs, filters and layout."""

    name: str = ""
    label: str = ""
    version: str = ""
    description: str = ""
    apis: dict[str, API] = field(default_factory=dict)
    filters: dict[str, Filter] = field(default_factory=dict)
    page: share.Page = field(default_factory=share.Page)

    @classmethod
    def from_dict(cls, data: Any, name: str = "") -> Page:
        if not isinstance(data, Mapping):
            raise TypeError("page must be an object")
        layout = data.get("page")
        return cls(
            name=name,
            label=str(data.get("label") or ""),
            version=str(data.get("version") or ""),
            description=str(data.get("description") or ""),
            apis=_named(data.get("apis"), "apis", API.from_dict),
            filters=_named(data.get("filters"), "filters", Filter.from_dict),
            page=share.Page() if layout is None else share.Page.from_dict(layout),
        )

    def setup_apis(self) -> None:
        """Merge the configured APIs into the defaults; unknown names are dropped."""
        defaults = _default_apis()
        for name, given in self.apis.items():
            api = defaults.get(name)
            if api is None:
                continue
            if given.process:
                api.process = given.process
            if given.guard:
                api.guard = given.guard
            if given.default is not None:
                api.default = given.default
        self.apis = defaults


def load_page(source: str | bytes, name: str) -> Page:
    """Parse a page definition and register it under name."""
    try:
        page = Page.from_dict(json.loads(source), name)
    except (ValueError, TypeError) as exc:
        log.error("page %s: %s", name, exc)
        raise ValueError(f"page {name}: {exc}") from exc
    page.setup_apis()
    PAGES[name] = page
    return page


def load_from(directory: str, prefix: str = "") -> list[Page]:
    """Load every .json page below directory; invalid files are logged and skipped."""
    if share.dir_not_exists(directory):
        raise FileNotFoundError(f"{directory} does not exists")
    loaded = []
    for root, filename in share.walk(directory, ".json"):
        name = prefix + share.spec_name(root, filename)
        try:
            loaded.append(load_page(share.read_file(filename), name))
        except ValueError as exc:
            log.error("root=%s file=%s: %s", root, filename, exc)
    return loaded


def select(name: str) -> Page:
    try:
        return PAGES[name]
    except KeyError:
        raise PageNotLoaded(name) from None


def process_setting(process: Process) -> Any:
    """xiang.page.setting: name, comma separated fields."""
    process.validate_arg_nums(2)
    name = process.args_string(0)
    field_arg = "" if process.args[1] is None else process.args_string(1)
    page = select(name)

    fields = field_arg.split(",")
    setting: dict[str, Any] = {
        "name": page.name,
        "label": page.label,
        "version": page.version,
        "description": page.description,
        "filters": page.filters,
        "page": page.page,
    }

    if len(fields) == 1 and fields[0] in setting:
        return setting[fields[0].strip()]

    if len(fields) > 1:
        return {key: setting[key] for key in (f.strip() for f in fields) if key in setting}

    return setting


register_process_handler("xiang.page.setting", process_setting)