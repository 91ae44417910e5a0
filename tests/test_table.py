import pytest

from datathon.core.errors import ValidationError
from datathon.scoring.table import read_table


def test_headers_and_values_are_trimmed_and_kept_as_text():
    table = read_table(b" row_id , label \n 001 , cat \n2,  dog\n")
    assert table.columns == ["row_id", "label"]
    assert table.rows == [{"row_id": "001", "label": "cat"}, {"row_id": "2", "label": "dog"}]


def test_byte_order_mark_is_ignored():
    table = read_table("\ufeffid,target\n1,0\n".encode("utf-8"))
    assert table.has_columns("id", "target")


def test_blank_cells_stay_empty_strings():
    table = read_table(b"row_id,label\n1,\n2,NA\n")
    assert table.column("label") == ["", "NA"]


def test_custom_delimiter():
    table = read_table(b"row_id;label\n1;a\n", delimiter=";")
    assert table.column("label") == ["a"]


def test_header_only_table_has_no_rows():
    table = read_table(b"row_id,label\n")
    assert len(table) == 0
    assert table.columns == ["row_id", "label"]


@pytest.mark.parametrize("raw", [b"", b"   \n", b"a,b\n1,2\n3,4,5,6\n", b"\xff\xfe\x00bad"])
def test_malformed_input(raw):
    with pytest.raises(ValidationError) as exc:
        read_table(raw)
    assert exc.value.reason == "malformed_table"
