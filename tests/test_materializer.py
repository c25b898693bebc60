from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeTransport, text_reply

from pyopendata.exceptions import FailureKind, OpenDataEmptyPayload, OpenDataParseError
from pyopendata.materializer import MaterializedResource, ResourceMaterializer, parse_csv, safe_filename
from pyopendata.models.dataset import DatasetResource
from pyopendata.models.payload import PayloadSource
from pyopendata.outcomes import Failure

CSV_URL = "https://open.data.gov.sa/files/population.csv"


def _csv_resource(url: str = CSV_URL, fmt: str = "CSV") -> DatasetResource:
    return DatasetResource(id="r1", name="population", format=fmt, download_url=url)


def _materializer(transport: FakeTransport, tmp_path: Path) -> ResourceMaterializer:
    return ResourceMaterializer(transport, data_dir=tmp_path / "open-data")


# ---------------------------------------------------------------------------
# parse_csv
# ---------------------------------------------------------------------------


def test_parse_csv_coerces_cells_and_keeps_header_order() -> None:
    payload = parse_csv("region,code,population,share\nRiyadh,011,8000000,0.25\nMakkah,012,,\n")

    assert payload.columns == ["region", "code", "population", "share"]
    assert payload.total_records == 2
    assert payload.records[0] == {"region": "Riyadh", "code": "011", "population": 8000000, "share": 0.25}
    assert payload.records[1]["population"] is None
    assert payload.records[1]["share"] is None
    assert list(payload.records[0]) == payload.columns


def test_parse_csv_pads_short_rows_and_ignores_extra_cells() -> None:
    payload = parse_csv("a,b,c\n1,2\n4,5,6,7\n")

    assert payload.records[0] == {"a": 1, "b": 2, "c": None}
    assert payload.records[1] == {"a": 4, "b": 5, "c": 6}


def test_parse_csv_strips_bom_and_skips_blank_lines() -> None:
    payload = parse_csv("\ufeffname,value\n\nx,1\n\n")

    assert payload.columns == ["name", "value"]
    assert payload.records == [{"name": "x", "value": 1}]


def test_parse_csv_names_blank_and_duplicate_headers() -> None:
    payload = parse_csv("id,,id\n1,2,3\n")

    assert payload.columns == ["id", "column_2", "id_2"]


def test_parse_csv_quoted_fields_keep_commas() -> None:
    payload = parse_csv('name,note\n"Al Khobar, East","said ""hi"""\n')

    assert payload.records[0] == {"name": "Al Khobar, East", "note": 'said "hi"'}


def test_parse_csv_header_only_is_empty_payload() -> None:
    with pytest.raises(OpenDataEmptyPayload):
        parse_csv("a,b,c\n")


def test_parse_csv_malformed_quoting_is_parse_error() -> None:
    with pytest.raises(OpenDataParseError):
        parse_csv('a,b\n"unterminated,1\n')


# ---------------------------------------------------------------------------
# Resource selection
# ---------------------------------------------------------------------------


def test_select_resource_skips_other_formats(fake_transport: FakeTransport, tmp_path: Path) -> None:
    materializer = _materializer(fake_transport, tmp_path)
    resources = [
        _csv_resource(url="https://x/a.xlsx", fmt="XLSX"),
        _csv_resource(url="", fmt="CSV"),
        _csv_resource(),
    ]

    assert materializer.select_resource("ds", resources).download_url == CSV_URL


@pytest.mark.asyncio
async def test_no_resources_is_reported(fake_transport: FakeTransport, tmp_path: Path) -> None:
    result = await _materializer(fake_transport, tmp_path).materialize("ds", [])

    assert isinstance(result, Failure)
    assert result.kind == FailureKind.NO_RESOURCES
    assert result.target == "ds"
    assert fake_transport.calls == []


@pytest.mark.asyncio
async def test_format_match_is_case_sensitive(fake_transport: FakeTransport, tmp_path: Path) -> None:
    fake_transport.route("GET", CSV_URL, text_reply("a\n1\n"))

    result = await _materializer(fake_transport, tmp_path).materialize("ds", [_csv_resource(fmt="csv")])

    assert isinstance(result, Failure)
    assert result.kind == FailureKind.NO_TABULAR_RESOURCE
    assert fake_transport.calls == []


# ---------------------------------------------------------------------------
# Download validation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        "<html><body>Please wait</body></html>",
        "  \n<!DOCTYPE html><html></html>",
        "Request Rejected\nThe requested URL was rejected. Please consult with your administrator.",
    ],
)
async def test_block_page_is_challenge_blocked(fake_transport: FakeTransport, tmp_path: Path, body: str) -> None:
    fake_transport.route("GET", CSV_URL, text_reply(body))

    result = await _materializer(fake_transport, tmp_path).materialize("ds", [_csv_resource()])

    assert isinstance(result, Failure)
    assert result.kind == FailureKind.CHALLENGE_BLOCKED
    assert not (tmp_path / "open-data").exists()


@pytest.mark.asyncio
async def test_http_error_is_upstream_rejection(fake_transport: FakeTransport, tmp_path: Path) -> None:
    fake_transport.route("GET", CSV_URL, text_reply("forbidden", status=403))

    result = await _materializer(fake_transport, tmp_path).materialize("ds", [_csv_resource()])

    assert isinstance(result, Failure)
    assert result.kind == FailureKind.UPSTREAM_REJECTION
    assert result.status_code == 403


@pytest.mark.asyncio
async def test_blank_download_is_empty_payload(fake_transport: FakeTransport, tmp_path: Path) -> None:
    fake_transport.route("GET", CSV_URL, text_reply("   \n"))

    result = await _materializer(fake_transport, tmp_path).materialize("ds", [_csv_resource()])

    assert isinstance(result, Failure)
    assert result.kind == FailureKind.EMPTY_PAYLOAD


@pytest.mark.asyncio
async def test_zero_row_csv_is_empty_payload(fake_transport: FakeTransport, tmp_path: Path) -> None:
    fake_transport.route("GET", CSV_URL, text_reply("a,b\n"))

    result = await _materializer(fake_transport, tmp_path).materialize("ds", [_csv_resource()])

    assert isinstance(result, Failure)
    assert result.kind == FailureKind.EMPTY_PAYLOAD


@pytest.mark.asyncio
async def test_malformed_csv_is_parse_failure(fake_transport: FakeTransport, tmp_path: Path) -> None:
    fake_transport.route("GET", CSV_URL, text_reply('a,b\n"open,1\n'))

    result = await _materializer(fake_transport, tmp_path).materialize("ds", [_csv_resource()])

    assert isinstance(result, Failure)
    assert result.kind == FailureKind.PARSE_FAILURE


# ---------------------------------------------------------------------------
# Sink
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_materialize_writes_sink_file(fake_transport: FakeTransport, tmp_path: Path) -> None:
    body = "region,count\nRiyadh,10\n"
    fake_transport.route("GET", CSV_URL, text_reply(body))

    result = await _materializer(fake_transport, tmp_path).materialize("ab/cd", [_csv_resource()])

    assert isinstance(result, MaterializedResource)
    assert result.local_ref == "ab_cd.csv"
    assert (tmp_path / "open-data" / "ab_cd.csv").read_text(encoding="utf-8") == body
    assert result.payload.provenance == PayloadSource.API
    assert result.payload.records == [{"region": "Riyadh", "count": 10}]


@pytest.mark.asyncio
async def test_materialize_without_persist_writes_nothing(fake_transport: FakeTransport, tmp_path: Path) -> None:
    fake_transport.route("GET", CSV_URL, text_reply("a\n1\n"))

    result = await _materializer(fake_transport, tmp_path).materialize("ds", [_csv_resource()], persist=False)

    assert isinstance(result, MaterializedResource)
    assert result.local_ref is None
    assert not (tmp_path / "open-data").exists()


@pytest.mark.asyncio
async def test_unwritable_sink_is_storage_failure(fake_transport: FakeTransport, tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    fake_transport.route("GET", CSV_URL, text_reply("a\n1\n"))
    materializer = ResourceMaterializer(fake_transport, data_dir=blocker / "open-data")

    result = await materializer.materialize("ds", [_csv_resource()])

    assert isinstance(result, Failure)
    assert result.kind == FailureKind.STORAGE_FAILURE


def test_safe_filename() -> None:
    assert safe_filename("0e1f-AB") == "0e1f-AB"
    assert safe_filename("../etc/passwd") == "_etc_passwd"
    assert safe_filename("...") == "dataset"


@pytest.mark.asyncio
async def test_html_fragment_inside_a_cell_is_data(fake_transport: FakeTransport, tmp_path: Path) -> None:
    body = 'name,description\nParks,"<html> snippet: <b>green</b> spaces"\n'
    fake_transport.route("GET", CSV_URL, text_reply(body))

    result = await _materializer(fake_transport, tmp_path).materialize("ds", [_csv_resource()])

    assert isinstance(result, MaterializedResource)
    assert result.payload.records[0]["description"] == "<html> snippet: <b>green</b> spaces"
