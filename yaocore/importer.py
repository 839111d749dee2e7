"""Spreadsheet importers: field mapping, cleaning, preview and import runs."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import uuid
from collections.abc import Callable
from collections.abc import Mapping as _AbcMapping
from dataclasses import dataclass, field
from typing import Any

from . import share
from .process import Process, ProcessError, register_process_handler
from .schema import (
    Binding,
    FormatError,
    ImportColumn,
    Mapping,
    Option,
    column_of,
    option_of,
)
from .share import _format_value, _to_int
from .xlsx import Row, Source, SourceColumn, open_xlsx

log = logging.getLogger(__name__)

IMPORTERS: dict[str, Importer] = {}

# Directory that relative file names given to the process handlers are resolved against.
STORAGE_ROOT = ""

PAGE_COUNT = 10


class ImporterError(ProcessError):
    """An importer is missing, misconfigured or cannot read its source."""

    def __init__(self, message: str, code: int = 400) -> None:
        super().__init__(message, code)


def _str(data: _AbcMapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise FormatError(f'the "{key}" format is incorrect')
    return value


@dataclass
class Importer:
    """An import definition: target columns, the process that stores rows and options."""

    title: str = ""
    process: str = ""
    output: str = ""
    columns: list[ImportColumn] = field(default_factory=list)
    option: Option = field(default_factory=Option)
    rules: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> Importer:
        """Build an importer from its definition; raise FormatError when invalid."""
        if not isinstance(data, _AbcMapping):
            raise FormatError("importer must be an object")
        columns = data.get("columns") or []
        if not isinstance(columns, (list, tuple)):
            raise FormatError('the "columns" format is incorrect')
        rules = data.get("rules") or {}
        if not isinstance(rules, _AbcMapping):
            raise FormatError('the "rules" format is incorrect')
        option = data.get("option")
        return cls(
            title=_str(data, "title"),
            process=_str(data, "process"),
            output=_str(data, "output"),
            columns=[column_of(column) for column in columns],
            option=option_of({} if option is None else option),
            rules={str(key): _format_value(value) for key, value in rules.items()},
        )

    def auto_mapping(self, src: Source) -> Mapping:
        """Bind each target column to the source column named by its match suggestions."""
        source_columns = _source_columns(src)
        info = src.inspect()
        mapping = Mapping(
            sheet=info.sheet_name,
            col_start=info.col_start,
            row_start=info.row_start,
            columns=[],
            auto_matching=True,
            template_matching=False,
        )
        for column in self.columns:
            binding = Binding(label=column.label, field=column.field)
            for suggest in column.match:
                found = source_columns.get(suggest)
                if found is not None:
                    binding = Binding(
                        label=column.label,
                        field=column.field,
                        name=found.name,
                        axis=found.axis,
                        rules=list(column.rules),
                    )
            mapping.columns.append(binding)
        return mapping

    def data_get(self, src: Source, page: int, size: int, mapping: Mapping) -> tuple[list[str], list[Row]]:
        """Read one page of rows and clean them."""
        row = (page - 1) * size + mapping.row_start
        if row < 0:
            row = mapping.row_start
        axes = [binding.axis for binding in mapping.columns]
        return self.data_clean(src.data(row, size, axes), mapping.columns)

    def chunk(self, src: Source, mapping: Mapping, callback: Callable[[int, list[Row]], None]) -> None:
        """Pass the source rows to callback in batches of the configured chunk size."""
        axes = [binding.axis for binding in mapping.columns]
        src.chunk(self.option.chunk_size, axes, callback)

    def data_clean(self, data: list[Row], bindings: list[Binding]) -> tuple[list[str], list[Row]]:
        """Apply the cleaning rules; each row gains a final flag telling whether it is valid."""
        columns = [binding.field for binding in bindings]
        cleaned: list[Row] = []
        for row in data:
            success = True
            for i, binding in enumerate(bindings):
                for rule in binding.rules:
                    update, ok = data_validate(row, row[i], rule)
                    if ok:
                        row = update
                    else:
                        success = False
            cleaned.append([*row, success])
        columns.append("__effected")
        return columns, cleaned

    def data_preview(self, src: Source, page: int, size: int, mapping: Mapping | None = None) -> dict[str, Any]:
        """One page of cleaned rows as records, with paging information."""
        page = max(page, 1)
        result: dict[str, Any] = {
            "page": page,
            "pagesize": size,
            "pagecnt": PAGE_COUNT,
            "next": page + 1,
            "prev": page - 1,
        }
        if mapping is None:
            mapping = self.auto_mapping(src)
        columns, rows = self.data_get(src, page, size, mapping)
        records = []
        for idx, row in enumerate(rows):
            if len(row) != len(columns):
                raise ImporterError("data error, please contact the administrator", 500)
            record = dict(zip(columns, row))
            record["id"] = idx + 1
            records.append(record)
        result["data"] = records
        return result

    def mapping_preview(self, src: Source) -> Mapping:
        """The automatic mapping, each binding carrying a sample value from the first row."""
        mapping = self.auto_mapping(src)
        columns, rows = self.data_get(src, 1, 1, mapping)
        if rows:
            record = dict(zip(columns, rows[0]))
            for binding in mapping.columns:
                binding.value = _format_value(record.get(binding.field))
        return mapping

    def data_setting(self) -> dict[str, Any]:
        """Table layout for the data preview."""
        columns: dict[str, share.Column] = {}
        layout_columns = []
        for column in self.columns:
            name = column.label
            layout_columns.append({"name": name})
            columns[name] = share.Column(
                label=name,
                view=share.Render(type="label", props={"value": f":{column.field}"}),
            )
        return {
            "columns": columns,
            "filters": {},
            "list": share.Page(
                primary="id",
                layout={"columns": layout_columns},
                actions={"pagination": share.Render(props={"showTotal": True})},
                option={
                    "operation": {
                        "hideView": True,
                        "hideEdit": True,
                        "width": 120,
                        "unfold": True,
                        "checkbox": [
                            {
                                "value": ":__effected",
                                "visible_label": False,
                                "status": [
                                    {"label": "有效", "value": True},
                                    {"label": "无效", "value": False},
                                ],
                            }
                        ],
                    }
                },
            ),
        }

    def mapping_setting(self, src: Source) -> dict[str, Any]:
        """Table layout for editing the field mapping."""
        columns = {
            "字段名称": share.Column(
                label="字段名称",
                view=share.Render(type="label", props={"value": ":label"}),
            ),
            "数据源": share.Column(
                label="数据源",
                view=share.Render(type="label", props={"value": ":name"}),
                edit=share.Render(type="select", props={"options": _source_option(src), "value": ":axis"}),
            ),
            "清洗规则": share.Column(
                label="清洗规则",
                view=share.Render(type="tag", props={"value": ":rules"}),
                edit=share.Render(
                    type="select",
                    props={"options": self._rules_option(), "value": ":rules", "mode": "multiple"},
                ),
            ),
            "数据示例": share.Column(
                label="数据示例",
                view=share.Render(type="label", props={"value": ":value"}),
            ),
        }
        return {
            "columns": columns,
            "filters": {},
            "list": share.Page(
                primary="field",
                layout={
                    "columns": [
                        {"name": "字段名称"},
                        {"name": "数据源"},
                        {"name": "清洗规则", "width": 300},
                        {"name": "数据示例"},
                    ]
                },
                option={"operation": {"hideView": True, "hideEdit": True, "width": 0}},
                actions={},
            ),
        }

    def fingerprint(self, src: Source) -> str:
        """SHA-256 of the source's header names and cell types, independent of order."""
        keys = sorted(f"{column.name}|{int(column.type)}" for column in src.columns())
        return hashlib.sha256("".join(keys).encode()).hexdigest()

    def run(self, src: Source, mapping: Mapping | None = None) -> Any:
        """Clean every row and hand each batch to the import process.

        The process receives (columns, rows, run id, page) and answers
        [failed, ignored]. Returns the counts, or what the output process
        makes of them.
        """
        if mapping is None:
            mapping = self.auto_mapping(src)

        run_id = str(uuid.uuid4())
        counts = {"page": 0, "total": 0, "failed": 0, "ignore": 0}

        def handle(line: int, data: list[Row]) -> None:
            counts["page"] += 1
            length = len(data)
            counts["total"] += length
            columns, cleaned = self.data_clean(data, mapping.columns)
            try:
                response = Process(self.process, columns, cleaned, run_id, counts["page"]).exec()
            except ProcessError as exc:
                counts["failed"] += length
                log.error("line=%s import failed: %s", line, exc)
                return
            if isinstance(response, (list, tuple)) and len(response) > 1:
                try:
                    counts["failed"] += _to_int(response[0])
                    counts["ignore"] += _to_int(response[1])
                    return
                except (TypeError, ValueError):
                    pass
            log.error(
                "line=%s response=%r length=%s: the import process returned no failure counts",
                line,
                response,
                length,
            )

        self.chunk(src, mapping, handle)

        output = {
            "total": counts["total"],
            "success": counts["total"] - counts["failed"] - counts["ignore"],
            "failure": counts["failed"],
            "ignore": counts["ignore"],
        }
        if self.output:
            try:
                return Process(self.output, output).exec()
            except ProcessError as exc:
                log.error("output=%s: %s", self.output, exc)
                return output
        return output

    def _rules_option(self) -> list[dict[str, Any]]:
        return [{"label": self.rules[key], "value": key} for key in sorted(self.rules)]


def _source_columns(src: Source) -> dict[str, SourceColumn]:
    return {column.name: column for column in src.columns() if column.name}


def _source_option(src: Source) -> list[dict[str, Any]]:
    return [{"label": column.name, "value": column.axis} for column in src.columns()]


def load_from(directory: str, prefix: str = "") -> dict[str, Importer]:
    """Load every .json importer below directory; a missing directory loads nothing."""
    loaded: dict[str, Importer] = {}
    if share.dir_not_exists(directory):
        return loaded
    for root, filename in share.walk(directory, ".json"):
        name = prefix + share.spec_name(root, filename)
        try:
            importer = Importer.from_dict(json.loads(share.read_file(filename)))
        except (ValueError, TypeError) as exc:
            raise ImporterError(f"{name} import configuration error. {exc} ({filename})") from exc
        IMPORTERS[name] = importer
        loaded[name] = importer
    return loaded


def select(name: str) -> Importer:
    try:
        return IMPORTERS[name]
    except KeyError:
        raise ImporterError(f"importer {name} is not loaded") from None


def open_source(name: str, root: str = "") -> Source:
    """Open an import file; relative names are resolved against root."""
    ext = os.path.splitext(name)[1].removeprefix(".").lower()
    if ext == "xlsx":
        fullpath = name if name.startswith("/") else os.path.join(root, name)
        return open_xlsx(fullpath)
    raise ImporterError(f"importing {ext} files is not supported")


def data_validate(row: Row, value: Any, rule: str) -> tuple[Row, bool]:
    """Run a cleaning rule; a rule that cannot run leaves the row valid and unchanged."""
    try:
        result = Process(rule, value, row).exec()
    except ProcessError as exc:
        log.error("rule=%s row=%r DataValidate: %s", rule, row, exc)
        return row, True
    if isinstance(result, list):
        return result, True
    return row, False


def any_to_mapping(value: Any) -> Mapping:
    """Read a field mapping from a Mapping or its dict form."""
    if value is None:
        return Mapping()
    if isinstance(value, Mapping):
        value = value.to_dict()
    try:
        return Mapping.from_dict(json.loads(json.dumps(value, default=str)))
    except (FormatError, TypeError, ValueError) as exc:
        raise ImporterError("the field mapping data format is incorrect") from exc


def process_run(process: Process) -> Any:
    """xiang.import.Run: name, file, mapping."""
    process.validate_arg_nums(3)
    imp = select(process.args_string(0))
    with open_source(process.args_string(1), STORAGE_ROOT) as src:
        mapping = any_to_mapping(process.args[2])
        return imp.run(src, mapping)


def process_setting(process: Process) -> dict[str, Any]:
    """xiang.import.Setting: name."""
    process.validate_arg_nums(1)
    imp = select(process.args_string(0))
    return {
        "mappingPreview": imp.option.mapping_preview,
        "dataPreview": imp.option.data_preview,
        "templateLink": imp.option.template_link,
        "title": imp.title,
    }


def process_data(process: Process) -> dict[str, Any]:
    """xiang.import.Data: name, file, page, size, mapping."""
    process.validate_arg_nums(5)
    imp = select(process.args_string(0))
    with open_source(process.args_string(1), STORAGE_ROOT) as src:
        page = process.args_int(2)
        size = process.args_int(3)
        mapping = any_to_mapping(process.args[4])
        return imp.data_preview(src, page, size, mapping)


def process_data_setting(process: Process) -> dict[str, Any]:
    """xiang.import.DataSetting: name."""
    process.validate_arg_nums(1)
    return select(process.args_string(0)).data_setting()


def process_mapping(process: Process) -> Mapping:
    """xiang.import.Mapping: name, file."""
    process.validate_arg_nums(2)
    imp = select(process.args_string(0))
    with open_source(process.args_string(1), STORAGE_ROOT) as src:
        return imp.mapping_preview(src)


def process_mapping_setting(process: Process) -> dict[str, Any]:
    """xiang.import.MappingSetting: name, file."""
    process.validate_arg_nums(2)
    imp = select(process.args_string(0))
    with open_source(process.args_string(1), STORAGE_ROOT) as src:
        return imp.mapping_setting(src)


register_process_handler("xiang.import.Run", process_run)
register_process_handler("xiang.import.Data", process_data)
register_process_handler("xiang.import.Setting", process_setting)
register_process_handler("xiang.import.DataSetting", process_data_setting)
register_process_handler("xiang.import.Mapping", process_mapping)
register_process_handler("xiang.import.MappingSetting", process_mapping_setting)