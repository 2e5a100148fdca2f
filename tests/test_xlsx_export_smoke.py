from __future__ import annotations

import zipfile
from datetime import datetime
from pathlib import Path

import polars as pl
import pytest

from sheetkit.export import (
    Column,
    ExportSheet,
    SpecExportOptions,
    SpecSheetStyle,
    XlsxExporter,
    XlsxSheetWriter,
    export_xlsx,
)
from sheetkit.export.spec import EnumWriteStrategy, SpecHeaderCell, SpecPageContext


def _read_sheet_xml(file_xlsx: Path, idx: int = 1) -> str:
    with zipfile.ZipFile(file_xlsx) as zf:
        return zf.read(f"xl/worksheets/sheet{idx}.xml").decode("utf-8")


@pytest.mark.parametrize("if_constant_memory", [False, True])
def test_export_nested_header_bulk_sheet(tmp_path: Path, if_constant_memory: bool) -> None:
    out_file = tmp_path / "bulk.xlsx"
    sheet = ExportSheet(
        name="Orders",
        columns=[
            Column(
                title="Customer",
                children=[Column(title="Name", key="name"), Column(title="City", key="city")],
            ),
            Column(title="Total", key="total"),
        ],
        data=pl.DataFrame(
            {"name": ["Ann", "Bo"], "city": ["Oslo", None], "total": [1.5, float("nan")]}
        ),
        style=SpecSheetStyle(gridline=2, zoom=90, is_first=True),
    )

    report = export_xlsx(
        out_file,
        sheet,
        options=SpecExportOptions(
            dir_temp=tmp_path, if_constant_memory=if_constant_memory
        ),
    )

    assert report.status == "done"
    assert report.sheets[0].strategy is EnumWriteStrategy.BULK
    assert report.n_rows == 2
    assert out_file.exists()
    assert out_file.stat().st_size > 0

    c_xml = _read_sheet_xml(out_file)
    assert '<mergeCell ref="A1:B1"/>' in c_xml
    # streaming mode draws vertical spans with borders instead of merging
    assert ('<mergeCell ref="C1:C2"/>' in c_xml) is not if_constant_memory


def test_export_typed_cells_with_image(tmp_path: Path, file_png: Path) -> None:
    out_file = tmp_path / "typed.xlsx"

    def produce(ctx: SpecPageContext) -> list[dict]:
        n_start = (ctx.page - 1) * ctx.page_size
        return [
            {
                "id": _i,
                "site": f"https://example.org/{_i}",
                "sum": f"A{_i + 2}*2",
                "when": datetime(2024, 1, 1 + _i),
                "photo": str(file_png) if _i % 2 == 0 else "https://unreachable.invalid/x.png",
            }
            for _i in range(n_start, min(5, n_start + ctx.page_size))
        ]

    class NoNetwork:
        name = "offline"

        def fetch_batch(self, urls):
            return {_u: None for _u in urls}

    sheet = ExportSheet(
        name="Typed",
        columns=[
            Column(title="ID", key="id"),
            Column(title="Site", key="site", type={"type": "url", "text": "open"}),
            Column(title="Double", key="sum", type="formula"),
            Column(title="When", key="when", type={"type": "date", "date_format": "dd/mm/yyyy"}),
            Column(title="Photo", key="photo", type={"type": "image", "height": 40}),
        ],
        data=produce,
        count=5,
        page_size=2,
    )

    with XlsxExporter(
        out_file,
        options=SpecExportOptions(dir_temp=tmp_path),
        fetch_strategy=NoNetwork(),
    ) as exporter:
        report = exporter.export([sheet, ExportSheet(name="Typed", columns=sheet.columns, data=[])])

    assert report.status == "done"
    assert [_s.sheet_name for _s in report.sheets] == ["Typed", "Typed__2"]
    cfg_sheet = report.sheets[0]
    assert cfg_sheet.strategy is EnumWriteStrategy.CELL
    assert (cfg_sheet.n_rows, cfg_sheet.n_pages) == (5, 3)
    assert cfg_sheet.n_images_failed == 2

    with zipfile.ZipFile(out_file) as zf:
        l_names = zf.namelist()
    assert sum(1 for _n in l_names if _n.startswith("xl/media/")) >= 1

    c_xml = _read_sheet_xml(out_file)
    assert "<f>A2*2</f>" in c_xml
    assert "<hyperlink" in c_xml


def test_constant_memory_header_keeps_titles_after_tall_leaf(tmp_path: Path) -> None:
    out_file = tmp_path / "streaming.xlsx"
    sheet = ExportSheet(
        columns=[
            Column(title="Tall", key="t"),
            Column(title="Group", children=[Column(title="x", key="x"), Column(title="y", key="y")]),
        ],
        data=[{"t": 1, "x": 2, "y": 3}],
    )

    export_xlsx(
        out_file,
        sheet,
        options=SpecExportOptions(dir_temp=tmp_path, if_constant_memory=True),
    )

    # constant-memory mode writes inline strings into the sheet itself
    c_xml = _read_sheet_xml(out_file)
    assert "<t>Tall</t>" in c_xml
    assert "<t>Group</t>" in c_xml
    assert '<mergeCell ref="B1:C1"/>' in c_xml


def test_header_single_cells_are_not_merged(tmp_path: Path) -> None:
    out_file = tmp_path / "header.xlsx"
    cell_wide = SpecHeaderCell(first_row=0, first_col=0, last_row=0, last_col=1, value="Wide")
    cell_one = SpecHeaderCell(first_row=0, first_col=2, last_row=0, last_col=2, value="One")

    with XlsxSheetWriter(out_file) as writer:
        writer.add_sheet("Header")
        writer.write_header([cell_one, cell_wide])

    assert not cell_wide.is_single
    assert cell_one.is_single
    c_xml = _read_sheet_xml(out_file)
    assert '<mergeCell ref="A1:B1"/>' in c_xml
    assert 'mergeCells count="1"' in c_xml
    assert '<c r="C1"' in c_xml
