import re
import zipfile
from xml.sax.saxutils import escape

import pytest

from yaocore.xlsx import (
    CellType,
    XlsxError,
    axis_to_position,
    open_xlsx,
    position_to_axis,
)

MAIN_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
REL_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
PKG_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
SHEET_TYPE = REL_NS + "/worksheet"

AXES = ["A1", "B1", "C1"]

SIMPLE = {
    "A1": ("s", "sn"),
    "B1": ("s", "name"),
    "C1": ("s", "price"),
    "A2": ("s", "SN-1"),
    "B2": ("inlineStr", "Alice"),
    "C2": ("n", "10.5"),
    "B3": ("s", "Bob"),
    "C3": ("n", "3"),
    "A4": ("s", "SN-4"),
    "B4": ("str", "Carol"),
    "C4": ("n", "7"),
    "A5": ("s", "SN-5"),
    "B5": ("s", "Dave"),
    "C5": ("", "2"),
}

SIMPLE_ROWS = [
    ["SN-1", "Alice", "10.5"],
    ["", "Bob", "3"],
    ["SN-4", "Carol", "7"],
    ["SN-5", "Dave", "2"],
]


def write_workbook(path, sheets, active=0):
    shared = []

    def cell_xml(ref, kind, text):
        if kind == "s":
            shared.append(text)
            return f'<c r="{ref}" t="s"><v>{len(shared) - 1}</v></c>'
        if kind == "inlineStr":
            return f'<c r="{ref}" t="inlineStr"><is><t>{escape(text)}</t></is></c>'
        attr = f' t="{kind}"' if kind else ""
        return f'<c r="{ref}"{attr}><v>{escape(text)}</v></c>'

    sheet_parts = []
    for _, cells in sheets:
        rows = {}
        for ref, (kind, text) in cells.items():
            number = int(re.search(r"\d+", ref).group())
            rows.setdefault(number, []).append(cell_xml(ref, kind, text))
        body = "".join(f'<row r="{n}">{"".join(rows[n])}</row>' for n in sorted(rows))
        sheet_parts.append(f'<worksheet xmlns="{MAIN_NS}"><sheetData>{body}</sheetData></worksheet>')

    sheet_list = "".join(
        f'<sheet name="{name}" sheetId="{i + 1}" r:id="rId{i + 1}"/>' for i, (name, _) in enumerate(sheets)
    )
    workbook = (
        f'<workbook xmlns="{MAIN_NS}" xmlns:r="{REL_NS}">'
        f'<bookViews><workbookView activeTab="{active}"/></bookViews>'
        f"<sheets>{sheet_list}</sheets></workbook>"
    )
    rels = "".join(
        f'<Relationship Id="rId{i + 1}" Type="{SHEET_TYPE}" Target="worksheets/sheet{i + 1}.xml"/>'
        for i in range(len(sheets))
    )
    strings = "".join(f"<si><t>{escape(text)}</t></si>" for text in shared)
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("xl/workbook.xml", workbook)
        archive.writestr("xl/_rels/workbook.xml.rels", f'<Relationships xmlns="{PKG_NS}">{rels}</Relationships>')
        archive.writestr("xl/sharedStrings.xml", f'<sst xmlns="{MAIN_NS}">{strings}</sst>')
        for i, part in enumerate(sheet_parts):
            archive.writestr(f"xl/worksheets/sheet{i + 1}.xml", part)
    return str(path)


@pytest.fixture
def simple(tmp_path):
    return write_workbook(tmp_path / "simple.xlsx", [("Sheet1", SIMPLE)])


def test_position_to_axis_values():
    assert position_to_axis(0, 0) == "A1"
    assert position_to_axis(1, 2) == "C2"
    assert position_to_axis(0, 26) == "AA1"
    assert position_to_axis(-1, 0) == ""
    assert position_to_axis(0, -1) == ""


def test_axis_to_position_case_insensitive():
    assert axis_to_position("C2") == (1, 2)
    assert axis_to_position("c2") == axis_to_position("C2")


@pytest.mark.parametrize("position", [(0, 0), (4, 3), (99, 24), (7, 27), (12, 30)])
def test_axis_round_trip(position):
    assert axis_to_position(position_to_axis(*position)) == position


@pytest.mark.parametrize("axis", ["A", "", "A@1", "1A"])
def test_axis_to_position_invalid(axis):
    with pytest.raises(ValueError):
        axis_to_position(axis)


def test_open_inspect(simple):
    src = open_xlsx(simple)
    info = src.inspect()
    assert info.sheet_name == "Sheet1"
    assert info.sheet_index == 0
    assert (info.row_start, info.col_start) == (0, 0)


def test_columns(simple):
    src = open_xlsx(simple)
    columns = src.columns()
    assert [c.name for c in columns] == ["sn", "name", "price"]
    assert [c.axis for c in columns] == AXES
    assert all(c.type == CellType.STRING for c in columns)
    info = src.inspect()
    assert (info.row_start, info.col_start) == (1, 1)


def test_columns_offset_header(tmp_path):
    cells = {"C3": ("s", "title"), "D3": ("s", "qty"), "C4": ("s", "pen"), "D4": ("n", "4")}
    src = open_xlsx(write_workbook(tmp_path / "offset.xlsx", [("Sheet1", cells)]))
    columns = src.columns()
    assert [c.axis for c in columns] == ["C3", "D3"]
    assert (src.row_start, src.col_start) == (3, 3)
    assert src.data(src.row_start, 5, [c.axis for c in columns]) == [["pen", "4"]]


def test_column_types(tmp_path):
    cells = {"A1": ("", "5"), "B1": ("n", "6"), "C1": ("b", "1"), "D1": ("str", "x")}
    src = open_xlsx(write_workbook(tmp_path / "types.xlsx", [("Sheet1", cells)]))
    assert [c.type for c in src.columns()] == [CellType.UNKNOWN, CellType.NUMBER, CellType.BOOL, CellType.STRING]


def test_data_page(simple):
    src = open_xlsx(simple)
    assert src.data(1, 2, AXES) == SIMPLE_ROWS[:2]


def test_data_reads_until_end(simple):
    src = open_xlsx(simple)
    assert src.data(1, 10, AXES) == SIMPLE_ROWS


def test_data_empty_axis_gives_empty_value(simple):
    src = open_xlsx(simple)
    assert src.data(1, 1, ["A1", ""]) == [["SN-1", ""]]


def test_data_stops_at_empty_row(tmp_path):
    cells = {k: v for k, v in SIMPLE.items() if not k.endswith("4")}
    src = open_xlsx(write_workbook(tmp_path / "gap.xlsx", [("Sheet1", cells)]))
    assert src.data(1, 10, AXES) == SIMPLE_ROWS[:2]


def test_chunk_after_columns(simple):
    src = open_xlsx(simple)
    columns = src.columns()
    assert [c.axis for c in columns] == AXES
    lines, rows = [], []

    def collect(line, data):
        lines.append(line)
        rows.extend(data)

    src.chunk(3, AXES, collect)
    assert lines == [3, 4]
    assert rows == SIMPLE_ROWS
    assert src.inspect().row_start == 1


def test_chunk_batches_cover_all_rows(simple):
    src = open_xlsx(simple)
    src.columns()
    batches = []
    src.chunk(2, AXES, lambda line, data: batches.append((line, list(data))))
    assert [row for _, data in batches for row in data] == SIMPLE_ROWS
    assert all(len(data) <= 2 for _, data in batches)
    assert all(line % 2 == 0 for line, _ in batches[:-1])


def test_chunk_stops_at_empty_row(tmp_path):
    cells = {k: v for k, v in SIMPLE.items() if not k.endswith("4")}
    src = open_xlsx(write_workbook(tmp_path / "gap.xlsx", [("Sheet1", cells)]))
    src.columns()
    calls = []
    src.chunk(3, AXES, lambda line, data: calls.append((line, data)))
    assert len(calls) == 1
    assert calls[0][1] == SIMPLE_ROWS[:2]


def test_chunk_rejects_zero_size(simple):
    src = open_xlsx(simple)
    with pytest.raises(ValueError):
        src.chunk(0, AXES, lambda line, data: None)


def test_active_sheet(tmp_path):
    second = {"A1": ("s", "second header")}
    path = write_workbook(tmp_path / "two.xlsx", [("First", SIMPLE), ("Second", second)], active=1)
    src = open_xlsx(path)
    assert src.inspect().sheet_name == "Second"
    assert src.inspect().sheet_index == 1
    assert [c.name for c in src.columns()] == ["second header"]


def test_active_sheet_out_of_range_falls_back(tmp_path):
    path = write_workbook(tmp_path / "bad_tab.xlsx", [("First", SIMPLE)], active=5)
    src = open_xlsx(path)
    assert src.inspect().sheet_index == 0
    assert src.inspect().sheet_name == "First"


def test_too_many_columns(tmp_path):
    cells = {"A1": ("s", "a"), position_to_axis(0, 1000): ("s", "far")}
    path = write_workbook(tmp_path / "wide.xlsx", [("Sheet1", cells)])
    with pytest.raises(XlsxError) as exc:
        open_xlsx(path)
    assert exc.value.code == 400


def test_missing_file(tmp_path):
    with pytest.raises(XlsxError):
        open_xlsx(str(tmp_path / "missing.xlsx"))


def test_not_a_workbook(tmp_path):
    path = tmp_path / "plain.xlsx"
    path.write_bytes(b"not a workbook")
    with pytest.raises(XlsxError):
        open_xlsx(str(path))


def test_context_manager_closes(simple):
    with open_xlsx(simple) as src:
        assert src.inspect().sheet_name == "Sheet1"
    assert src.data(1, 10, AXES) == []