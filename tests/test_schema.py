import json

import pytest

from yaocore.schema import (
    Binding,
    FormatError,
    ImportColumn,
    Mapping,
    Option,
    column_of,
    error_f,
    get_array_string,
    get_string,
    option_of,
)

COLUMNS = {
    "normal": """{
        "label": "订单号",
        "name": "order_sn",
        "match": ["订单号", "订单", "order_sn", "id"],
        "rules": ["scripts.rules.order_sn"],
        "primary": true
    }""",
    "object": """{
        "label": "性别",
        "name": "user.sex",
        "match": "性别",
        "rules": ["scripts.rules.FmtUser"],
        "nullable": true
    }""",
    "array": """{
        "label": "库存",
        "name": "stock[*]",
        "rules": ["scripts.rules.FmtGoods"]
    }""",
    "arrayObject": """{
        "label": "商品",
        "name": "skus[*].name",
        "match": ["商品", "商品名称", "goods", "skus", "sku_id", "goods_id"],
        "rules": ["scripts.rules.FmtGoods"]
    }""",
    "failure": """{
        "xx": "商品",
        "sx": "skus[*].name",
        "a": ["商品", "商品名称", "goods", "skus", "sku_id", "goods_id"],
        "b": ["scripts.rules.FmtGoods"]
    }""",
}

OPTIONS = {
    "normal": """{
        "autoMatching": true,
        "chunkSize":200,
        "mappingPreview": "always",
        "dataPreview": "never"
    }""",
    "defaults": "{}",
    "failure": '""',
}


def test_column_normal():
    col = ImportColumn.from_json(COLUMNS["normal"])
    assert col.label == "订单号"
    assert col.name == "order_sn"
    assert col.key == ""
    assert col.match == ["订单号", "订单", "order_sn", "id"]
    assert col.rules == ["scripts.rules.order_sn"]
    assert col.nullable is False
    assert col.primary is True
    assert col.is_array is False
    assert col.is_object is False


def test_column_object():
    col = ImportColumn.from_json(COLUMNS["object"])
    assert col.label == "性别"
    assert col.name == "user"
    assert col.key == "sex"
    assert col.match == ["性别"]
    assert col.rules == ["scripts.rules.FmtUser"]
    assert col.nullable is True
    assert col.is_array is False
    assert col.is_object is True
    assert col.primary is False


def test_column_array():
    col = ImportColumn.from_json(COLUMNS["array"])
    assert col.label == "库存"
    assert col.name == "stock"
    assert col.key == ""
    assert col.match == []
    assert col.rules == ["scripts.rules.FmtGoods"]
    assert col.nullable is False
    assert col.is_array is True
    assert col.is_object is False
    assert col.primary is False


def test_column_array_object():
    col = ImportColumn.from_json(COLUMNS["arrayObject"])
    assert col.label == "商品"
    assert col.name == "skus"
    assert col.key == "name"
    assert col.match == ["商品", "商品名称", "goods", "skus", "sku_id", "goods_id"]
    assert col.rules == ["scripts.rules.FmtGoods"]
    assert col.nullable is False
    assert col.is_array is True
    assert col.is_object is True
    assert col.primary is False


def test_column_failure():
    with pytest.raises(FormatError) as exc:
        ImportColumn.from_json(COLUMNS["failure"])
    assert '"label" format is incorrect' in str(exc.value)


def test_column_missing_name():
    with pytest.raises(FormatError) as exc:
        column_of({"label": "x"})
    assert '"name" format is incorrect' in str(exc.value)


def test_column_not_an_object():
    with pytest.raises(FormatError):
        ImportColumn.from_json("[1, 2]")


def test_column_keeps_raw_field():
    col = ImportColumn.from_json(COLUMNS["arrayObject"])
    assert col.field == "skus[*].name"


def test_column_to_map():
    col = ImportColumn.from_json(COLUMNS["normal"])
    assert col.to_map() == {
        "name": "order_sn",
        "label": "订单号",
        "match": ["订单号", "订单", "order_sn", "id"],
        "rules": ["scripts.rules.order_sn"],
        "primary": True,
    }


@pytest.mark.parametrize("key", ["normal", "object", "array", "arrayObject"])
def test_column_json_round_trip(key):
    col = ImportColumn.from_json(COLUMNS[key])
    assert ImportColumn.from_json(col.to_json()) == col


def test_column_bad_match_type():
    with pytest.raises(FormatError) as exc:
        column_of({"label": "a", "name": "b", "match": 5})
    assert str(exc.value) == 'the "match" format is incorrect'


def test_get_array_string_values():
    assert get_array_string({"k": ["a", b"b", 1, 2.5, True]}, "k") == ["a", "b", "1", "2.5", "true"]
    assert get_array_string({}, "k") == []
    assert get_array_string({"k": "one"}, "k") == ["one"]


def test_get_string():
    assert get_string({"k": b"bytes"}, "k", True) == "bytes"
    assert get_string({"k": ""}, "k", False) == ""
    with pytest.raises(FormatError):
        get_string({"k": ""}, "k", True)
    with pytest.raises(FormatError):
        get_string({"k": 3}, "k", False)


def test_error_f_quotes_arguments():
    err = error_f("the %s format is incorrect", "label")
    assert isinstance(err, FormatError)
    assert str(err) == 'the "label" format is incorrect'


def test_option_normal():
    option = Option.from_json(OPTIONS["normal"])
    assert option.use_template is True
    assert option.chunk_size == 200
    assert option.mapping_preview == "always"
    assert option.data_preview == "never"


def test_option_defaults():
    option = Option.from_json(OPTIONS["defaults"])
    assert option.use_template is True
    assert option.chunk_size == 500
    assert option.mapping_preview == "auto"
    assert option.data_preview == "auto"


def test_option_failure():
    with pytest.raises(FormatError):
        Option.from_json(OPTIONS["failure"])


@pytest.mark.parametrize("size", [0, -1, 2000, 5000, "bad"])
def test_option_chunk_size_out_of_range(size):
    assert option_of({"chunkSize": size}).chunk_size == 500


def test_option_unknown_preview_falls_back():
    option = option_of({"mappingPreview": "sometimes", "dataPreview": "always", "useTemplate": False})
    assert option.mapping_preview == "auto"
    assert option.data_preview == "always"
    assert option.use_template is False


def test_mapping_round_trip():
    mapping = Mapping(
        sheet="Sheet1",
        col_start=1,
        row_start=2,
        columns=[
            Binding(label="订单号", field="order_sn", name="sn", axis="A1", value="x", rules=["r1"]),
            Binding(label="备注", field="remark"),
        ],
        auto_matching=True,
    )
    data = json.loads(json.dumps(mapping.to_dict()))
    assert Mapping.from_dict(data) == mapping


def test_mapping_from_dict_keys():
    mapping = Mapping.from_dict(
        {"sheet": "S", "colStart": 3, "rowStart": 4, "data": [{"field": "f", "axis": "C4"}], "templateMatching": True}
    )
    assert mapping.col_start == 3
    assert mapping.row_start == 4
    assert mapping.columns[0].field == "f"
    assert mapping.columns[0].rules == []
    assert mapping.template_matching is True
    assert mapping.auto_matching is False


def test_mapping_rejects_bad_data():
    with pytest.raises(FormatError):
        Mapping.from_dict({"data": "nope"})
    with pytest.raises(FormatError):
        Binding.from_dict({"rules": "r"})