from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from sheetkit.export.column import Column
from sheetkit.export.errors import ExportConfigError
from sheetkit.export.exporter import XlsxExporter, select_write_strategy
from sheetkit.export.sheet import ExportSheet
from sheetkit.export.spec import (
    EnumCellKind,
    EnumWriteStrategy,
    SpecCellFormat,
    SpecCellWrite,
    SpecExportOptions,
    SpecHeaderCell,
    SpecPageContext,
    SpecSheetStyle,
)
from sheetkit.export.types import TextType, UrlType


class RecordingWriter:
    def __init__(self) -> None:
        self.row_cursor = 0
        self.calls: list[tuple[Any, ...]] = []
        self.header_cells: list[tuple[int, int, int, int, str]] = []
        self.header_formats: dict[str, SpecCellFormat | None] = {}
        self.rows: list[tuple[int, list[Any]]] = []
        self.cells: list[SpecCellWrite] = []

    def add_sheet(self, name: str) -> None:
        self.calls.append(("add_sheet", name))
        self.row_cursor = 0

    def apply_sheet_style(self, style: SpecSheetStyle) -> None:
        self.calls.append(("style", style))

    def write_header(self, cells: Sequence[SpecHeaderCell]) -> None:
        self.calls.append(("header", len(cells)))
        for _c in cells:
            self.header_cells.append(
                (_c.first_row, _c.first_col, _c.last_row, _c.last_col, _c.value)
            )
            self.header_formats[_c.value] = _c.fmt

    def set_column(self, first_col, last_col, width, fmt=None) -> None:
        self.calls.append(("set_column", first_col, last_col, width, fmt))

    def set_row(self, row: int, height: float) -> None:
        self.calls.append(("set_row", row, height))

    def write_rows(self, rows: Sequence[Sequence[Any]]) -> None:
        self.calls.append(("write_rows", len(rows)))
        for _row in rows:
            self.rows.append((self.row_cursor, list(_row)))
            self.row_cursor += 1

    def write_cell(self, cell: SpecCellWrite) -> None:
        self.calls.append(("write_cell", cell.row_idx, cell.col_idx))
        self.cells.append(cell)

    def close(self) -> None:
        self.calls.append(("close",))


class FakeStrategy:
    name = "fake"

    def __init__(self, contents: dict[str, bytes | None]) -> None:
        self.contents = contents
        self.urls_fetched: list[str] = []

    def fetch_batch(self, urls: Sequence[str]) -> dict[str, bytes | None]:
        self.urls_fetched.extend(urls)
        return {_u: self.contents.get(_u) for _u in urls}


TREE = [
    Column(
        title="A",
        children=[Column(title="A1", key="a1"), Column(title="A2", key="a2")],
    ),
    Column(title="B", key="b"),
]


def _create_exporter(
    tmp_path: Path, writer: RecordingWriter, **kwargs: Any
) -> XlsxExporter:
    kwargs.setdefault("options", SpecExportOptions(dir_temp=tmp_path))
    return XlsxExporter(tmp_path / "out.xlsx", writer=writer, **kwargs)


def test_select_write_strategy() -> None:
    assert select_write_strategy([Column(title="a", key="a")]) is EnumWriteStrategy.BULK
    assert (
        select_write_strategy([Column(title="a", key="a"), Column(title="u", key="u", type="url")])
        is EnumWriteStrategy.CELL
    )


def test_all_text_sheet_uses_bulk_rows_below_header(tmp_path: Path) -> None:
    writer = RecordingWriter()
    sheet = ExportSheet(
        name="Data", columns=TREE, data=[{"a1": 1, "a2": "x", "b": None}]
    )

    with _create_exporter(tmp_path, writer) as exporter:
        report = exporter.export_sheet(sheet)

    assert report.strategy is EnumWriteStrategy.BULK
    assert report.max_depth == 2
    assert writer.header_cells == [
        (0, 0, 0, 1, "A"),
        (0, 2, 1, 2, "B"),
        (1, 0, 1, 0, "A1"),
        (1, 1, 1, 1, "A2"),
    ]
    assert writer.rows == [(2, [1, "x", None])]
    assert writer.cells == []
    assert writer.calls[-1] == ("close",)


def test_header_widths_and_styles(tmp_path: Path) -> None:
    writer = RecordingWriter()
    fmt_group = SpecCellFormat(bg_color="#DDDDDD")
    fmt_cell = SpecCellFormat(italic=True)
    sheet = ExportSheet(
        columns=[
            Column(
                title="Group",
                header_style=fmt_group,
                style=fmt_cell,
                height=30,
                children=[
                    Column(title="x", key="x", width=20),
                    Column(title="a much longer column title", key="y"),
                ],
            )
        ],
        data=[],
    )

    with _create_exporter(tmp_path, writer) as exporter:
        exporter.export_sheet(sheet)

    l_set_column = [_c for _c in writer.calls if _c[0] == "set_column"]
    assert l_set_column == [
        ("set_column", 0, 1, None, fmt_cell),
        ("set_column", 0, 0, 20, None),
        ("set_column", 1, 1, len("a much longer column title") + 2, None),
    ]
    assert ("set_row", 0, 30) in writer.calls
    assert writer.header_formats["Group"].bg_color == "#DDDDDD"
    assert writer.header_formats["Group"].bold is True
    assert writer.header_formats["x"] == SpecExportOptions().fmt_header


def test_typed_sheet_writes_contiguous_cells_across_pages(tmp_path: Path) -> None:
    writer = RecordingWriter()
    columns = [
        Column(title="Name", key="name"),
        Column(title="Link", key="link", type=UrlType(text="open")),
    ]

    def produce(ctx: SpecPageContext) -> list[dict[str, Any]]:
        n_start = (ctx.page - 1) * ctx.page_size
        return [
            {"name": f"n{_i}", "link": f"https://example.org/{_i}"}
            for _i in range(n_start, min(25, n_start + ctx.page_size))
        ]

    sheet = ExportSheet(columns=columns, data=produce, count=25, page_size=10)

    with _create_exporter(tmp_path, writer) as exporter:
        report = exporter.export_sheet(sheet)

    assert report.strategy is EnumWriteStrategy.CELL
    assert (report.n_rows, report.n_pages) == (25, 3)
    assert writer.rows == []
    assert sorted({_c.row_idx for _c in writer.cells}) == list(range(1, 26))
    assert {_c.kind for _c in writer.cells if _c.col_idx == 1} == {EnumCellKind.URL}
    assert writer.cells[-1].value == "https://example.org/24"


def test_config_error_happens_before_any_write(tmp_path: Path) -> None:
    writer = RecordingWriter()
    sheet = ExportSheet(columns=[Column(title="orphan")], data=[{"x": 1}])
    exporter = _create_exporter(tmp_path, writer)

    with pytest.raises(ExportConfigError):
        exporter.export(sheet)

    assert writer.calls == []
    assert exporter.report().status == "failed"


def test_empty_column_tree_is_rejected(tmp_path: Path) -> None:
    exporter = _create_exporter(tmp_path, RecordingWriter())

    with pytest.raises(ExportConfigError):
        exporter.export_sheet(ExportSheet(columns=[], data=[]))


def test_producer_error_aborts_export(tmp_path: Path) -> None:
    def produce(ctx: SpecPageContext) -> list[Any]:
        raise RuntimeError("query failed")

    writer = RecordingWriter()
    exporter = _create_exporter(tmp_path, writer)

    with pytest.raises(RuntimeError, match="query failed"):
        with exporter:
            exporter.export(
                ExportSheet(columns=[Column(title="a", key="a")], data=produce, count=5)
            )

    assert exporter.report().status == "failed"
    assert writer.calls[-1] == ("close",)


def test_hooks_wrap_workbook_sheet_and_pages(tmp_path: Path) -> None:
    l_events: list[str] = []

    class Hook:
        def on_workbook_before(self, exporter: XlsxExporter) -> None:
            l_events.append("workbook_before")

        def on_workbook_after(self, exporter: XlsxExporter) -> None:
            l_events.append("workbook_after")

        def on_sheet_before(self, sheet: ExportSheet) -> None:
            l_events.append(f"sheet_before:{sheet.name}")

        def on_sheet_after(self, sheet: ExportSheet, report: Any) -> None:
            l_events.append(f"sheet_after:{report.n_rows}")

        def on_page_before(self, ctx: SpecPageContext) -> None:
            l_events.append(f"page_before:{ctx.page}")

        def on_page_after(self, ctx: SpecPageContext, rows: list[Any]) -> None:
            l_events.append(f"page_after:{len(rows)}")

    with _create_exporter(tmp_path, RecordingWriter(), hooks=[Hook()]) as exporter:
        report = exporter.export(
            [ExportSheet(name="S", columns=[Column(title="a", key="a")], data=[{"a": 1}])]
        )

    assert report.status == "done"
    assert l_events == [
        "workbook_before",
        "sheet_before:S",
        "page_before:1",
        "page_after:1",
        "sheet_after:1",
        "workbook_after",
    ]


def test_duplicate_and_illegal_sheet_names(tmp_path: Path) -> None:
    writer = RecordingWriter()
    columns = [Column(title="a", key="a")]

    with _create_exporter(tmp_path, writer) as exporter:
        report = exporter.export(
            [
                ExportSheet(name="Data", columns=columns, data=[]),
                ExportSheet(name="data", columns=columns, data=[]),
                ExportSheet(name="a/b", columns=columns, data=[]),
            ]
        )

    assert [_c[1] for _c in writer.calls if _c[0] == "add_sheet"] == [
        "Data",
        "data__2",
        "a_b",
    ]
    assert len(report.warnings) == 2


def test_sheet_style_is_applied(tmp_path: Path) -> None:
    writer = RecordingWriter()
    cfg_style = SpecSheetStyle(gridline=2, zoom=80, is_first=True)

    with _create_exporter(tmp_path, writer) as exporter:
        exporter.export_sheet(
            ExportSheet(columns=[Column(title="a", key="a")], data=[], style=cfg_style)
        )

    assert ("style", cfg_style) in writer.calls


def test_image_cells_are_prefetched_and_degrade_to_text(
    tmp_path: Path, png_bytes: bytes
) -> None:
    writer = RecordingWriter()
    strategy = FakeStrategy(
        {"https://img.test/ok.png": png_bytes, "https://img.test/bad.png": None}
    )
    sheet = ExportSheet(
        columns=[
            Column(title="Name", key="name", type=TextType()),
            Column(title="Photo", key="photo", type="image"),
        ],
        data=[
            {"name": "a", "photo": "https://img.test/ok.png"},
            {"name": "b", "photo": "https://img.test/bad.png"},
            {"name": "c", "photo": "https://img.test/ok.png"},
        ],
    )

    with _create_exporter(
        tmp_path, writer, fetch_strategy=strategy, token="op-1"
    ) as exporter:
        report = exporter.export_sheet(sheet)
        assert (tmp_path / "op-1" / "images").is_dir()

    assert strategy.urls_fetched == ["https://img.test/ok.png", "https://img.test/bad.png"]
    assert [_c.kind for _c in writer.cells if _c.col_idx == 1] == [
        EnumCellKind.IMAGE,
        EnumCellKind.TEXT,
        EnumCellKind.IMAGE,
    ]
    assert (report.n_images_downloaded, report.n_images_failed) == (1, 1)
    # the operation's image directory is removed on close
    assert not (tmp_path / "op-1").exists()


def test_image_dir_kept_when_cleanup_disabled(tmp_path: Path, png_bytes: bytes) -> None:
    strategy = FakeStrategy({"https://img.test/ok.png": png_bytes})
    options = SpecExportOptions(dir_temp=tmp_path, if_cleanup_images=False)
    sheet = ExportSheet(
        columns=[Column(title="Photo", key="photo", type="image")],
        data=[{"photo": "https://img.test/ok.png"}],
    )

    with _create_exporter(
        tmp_path, RecordingWriter(), options=options, fetch_strategy=strategy, token="op-2"
    ) as exporter:
        exporter.export_sheet(sheet)

    assert (tmp_path / "op-2" / "images").is_dir()
