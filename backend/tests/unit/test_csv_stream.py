"""
Unit tests for the streaming CSV tokenizer.
"""

import pytest

from csvhub.utils.csv_stream import iter_csv_records


async def _collect(path, **kwargs):
    return [record async for record in iter_csv_records(path, **kwargs)]


async def test_simple_records(write_csv):
    path = write_csv("name,age\nalice,30\nbob,25\n")
    records = await _collect(path)
    assert [r.fields for r in records] == [["name", "age"], ["alice", "30"], ["bob", "25"]]
    assert [r.line_number for r in records] == [1, 2, 3]


async def test_quoted_commas_quotes_and_newlines(write_csv):
    path = write_csv('id,text\n1,"Smith, John"\n2,"He said ""hi"""\n3,"line one\nline two"\n4,plain\n')
    records = await _collect(path)
    assert [r.fields for r in records[1:]] == [
        ["1", "Smith, John"],
        ["2", 'He said "hi"'],
        ["3", "line one\nline two"],
        ["4", "plain"],
    ]
    assert records[4].line_number == 6


@pytest.mark.parametrize("chunk_size", [1, 3, 7, 64])
async def test_chunk_boundaries_do_not_change_records(write_csv, chunk_size):
    path = write_csv('a,b\r\n"x\r\ny",z\r\n"q,""r""",s\r\n')
    records = await _collect(path, chunk_size=chunk_size)
    assert [r.fields for r in records] == [["a", "b"], ["x\r\ny", "z"], ['q,"r"', "s"]]


async def test_blank_lines_are_skipped(write_csv):
    path = write_csv("h1,h2\n\n1,2\n   \n\r\n3,4\n")
    records = await _collect(path)
    assert [r.fields for r in records] == [["h1", "h2"], ["1", "2"], ["3", "4"]]


async def test_bom_is_stripped(write_csv):
    path = write_csv(b"\xef\xbb\xbfname,city\nann,Paris\n")
    records = await _collect(path)
    assert records[0].fields == ["name", "city"]


async def test_undecodable_bytes_are_replaced(write_csv):
    path = write_csv(b"name\ncaf\xff\n")
    records = await _collect(path)
    assert records[1].fields == ["caf\ufffd"]


async def test_missing_trailing_newline(write_csv):
    path = write_csv("a,b\n1,2")
    records = await _collect(path, chunk_size=2)
    assert [r.fields for r in records] == [["a", "b"], ["1", "2"]]


async def test_oversized_record_is_reported_and_skipped(write_csv):
    path = write_csv('h1,h2\n"unterminated,x\n' + "c,d\n" * 10)
    errors = []
    records = await _collect(path, max_record_bytes=20, on_error=errors.append)

    assert len(errors) == 1
    assert errors[0].line_number == 2
    assert records[0].fields == ["h1", "h2"]
    assert [r.fields for r in records[1:]] == [["c", "d"]] * 8


async def test_bytes_read_is_monotonic_and_reaches_file_size(write_csv):
    content = "".join(f"{i},value{i}\n" for i in range(200))
    path = write_csv(content)
    records = await _collect(path, chunk_size=128)

    positions = [r.bytes_read for r in records]
    assert positions == sorted(positions)
    assert positions[-1] == len(content.encode("utf-8"))
    assert len(records) == 200


async def test_empty_file_yields_nothing(write_csv):
    assert await _collect(write_csv("")) == []


async def test_literal_quote_inside_unquoted_field_does_not_swallow_rows(write_csv):
    content = 'item,size\ntv,55"\n' + "".join(f"a{i},{i}\n" for i in range(200))
    path = write_csv(content)
    errors = []
    records = await _collect(path, max_record_bytes=1024, on_error=errors.append)

    assert errors == []
    assert len(records) == 202
    assert records[1].fields == ["tv", '55"']
    assert records[-1].fields == ["a199", "199"]


async def test_mid_field_quote_then_quoted_field(write_csv):
    path = write_csv('a,b\n5"x,"a,b"\n3" pipe,"two\nlines"\nlast,row\n')
    records = await _collect(path)
    assert [r.fields for r in records[1:]] == [
        ['5"x', "a,b"],
        ['3" pipe', "two\nlines"],
        ["last", "row"],
    ]
    assert records[3].line_number == 5
