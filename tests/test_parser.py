import pytest

from contact_import.models import MalformedInput, RawTable
from contact_import.parser import format_delimited, parse_delimited


def test_quoted_field_with_delimiter_newline_and_escaped_quote():
    text = 'name,bio,email\nAlice,"Hi, there\nHe said ""hi""",alice@x.com\n'
    table = parse_delimited(text)
    assert table.headers == ("name", "bio", "email")
    assert table.rows == (("Alice", 'Hi, there\nHe said "hi"', "alice@x.com"),)


def test_escaped_quote_alone():
    table = parse_delimited('a,b\n"He said ""hi""",next\n')
    assert table.rows[0] == ('He said "hi"', "next")


def test_round_trip_for_plain_cells():
    table = RawTable(
        headers=("name", "email", "followers"),
        rows=(("Alice", "alice@x.com", "1.2k"), ("Bob", "bob@x.com", "")),
    )
    assert parse_delimited(format_delimited(table)) == table


def test_round_trip_with_quoting():
    table = RawTable(headers=("name", "bio"), rows=(("Alice", 'multi\nline, "quoted"'),))
    assert parse_delimited(format_delimited(table)).rows == table.rows


def test_short_and_long_rows_are_padded_and_truncated():
    table = parse_delimited("a,b,c\n1\n1,2,3,4,5\n1,2,3\n")
    assert all(len(row) == len(table.headers) for row in table.rows)
    assert table.rows[0] == ("1", "", "")
    assert table.rows[1] == ("1", "2", "3")
    assert table.padded_rows == (0,)
    assert table.truncated_rows == (1,)


def test_newline_conventions_are_normalized():
    table = parse_delimited("a,b\r\n1,2\r3,4")
    assert table.rows == (("1", "2"), ("3", "4"))


def test_trailing_row_without_newline_is_emitted():
    table = parse_delimited("a,b\n1,2")
    assert table.rows == (("1", "2"),)


def test_empty_rows_are_dropped():
    table = parse_delimited("a,b\n\n1,2\n,\n   \n3,4\n\n")
    assert table.rows == (("1", "2"), ("3", "4"))


def test_byte_order_mark_is_removed():
    table = parse_delimited("\ufeffname,email\nA,a@x.com\n")
    assert table.headers == ("name", "email")


def test_quote_inside_unquoted_field_is_literal():
    table = parse_delimited('a,b\nsay "x",2\n')
    assert table.rows == (('say "x"', "2"),)


def test_custom_delimiter():
    table = parse_delimited("a;b\n1;2,5\n", delimiter=";")
    assert table.rows == (("1", "2,5"),)


@pytest.mark.parametrize("text", ["", "name,email\n", "\n\n", "name,email\n,\n"])
def test_malformed_input_without_data_rows(text):
    with pytest.raises(MalformedInput):
        parse_delimited(text)


def test_delimiter_must_be_single_character():
    with pytest.raises(ValueError):
        parse_delimited("a,b\n1,2\n", delimiter=",,")
