import os
import secrets
from collections.abc import Iterable, Sequence
from pathlib import Path
from types import TracebackType
from typing import Any, Self

from loguru import logger

from .column import Column, SpecLayout, process_columns
from .conf import DEFAULT_EXPORT_OPTIONS, N_NCOLS_EXCEL_MAX, N_NROWS_EXCEL_MAX
from .errors import ExportConfigError, ExportLimitError
from .hook import dispatch_hooks
from .image.cache import ImageCache
from .image.fetch import ImageFetchStrategy
from .image.prefetch import ImagePrefetcher
from .paginator import stream_sheet_data
from .render import render_cell
from .sheet import ExportSheet
from .spec import (
    EnumCellKind,
    EnumWriteStrategy,
    SpecExportOptions,
    SpecExportReport,
    SpecHeaderCell,
    SpecPageContext,
    SpecSheetReport,
)
from .types import ImageType, is_text_type
from .util import calculate_autofit_width, create_unique_sheet_name, sanitize_sheet_name
from .writer import SheetWriter, XlsxSheetWriter


def select_write_strategy(leaves: Sequence[Column]) -> EnumWriteStrategy:
    if all(is_text_type(_c.type) for _c in leaves):
        return EnumWriteStrategy.BULK
    return EnumWriteStrategy.CELL


class XlsxExporter:
    """Export one or more column-tree sheets into a single workbook.

    One exporter is one export operation: it owns the operation token, the
    image cache scoped to it, and the report.

    Parameters
    ----------
    file_out:
        Output ``.xlsx`` path.
    options:
        ``SpecExportOptions``; defaults to ``DEFAULT_EXPORT_OPTIONS``.
    hooks:
        Objects implementing any subset of ``ExportHook``.
    writer:
        Backend to write into; an ``XlsxSheetWriter`` on ``file_out`` by default.
    fetch_strategy:
        Image download strategy; chosen from the execution context by default.
    token:
        Operation token; a random one by default.
    """

    def __init__(
        self,
        file_out: os.PathLike[str] | str,
        *,
        options: SpecExportOptions | None = None,
        hooks: Sequence[object] = (),
        writer: SheetWriter | None = None,
        fetch_strategy: ImageFetchStrategy | None = None,
        token: str | None = None,
    ):
        self.file_out = Path(file_out)
        self.options = DEFAULT_EXPORT_OPTIONS if options is None else options
        self.hooks = tuple(hooks)
        self.token = secrets.token_hex(16) if token is None else token
        self.writer: SheetWriter = (
            XlsxSheetWriter(
                self.file_out, if_constant_memory=self.options.if_constant_memory
            )
            if writer is None
            else writer
        )
        self._fetch_strategy = fetch_strategy
        self._image_cache: ImageCache | None = None
        self._prefetcher: ImagePrefetcher | None = None
        self._existing_sheet_names: set[str] = set()
        self._report = SpecExportReport(token=self.token)
        self._is_closed = False

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self, exc_type: type | None, exc: BaseException | None, tb: TracebackType | None
    ) -> None:
        if exc is not None and self._report.status == "running":
            self._report.status = "failed"
        self.close()

    def close(self) -> None:
        if self._is_closed:
            return
        self._is_closed = True
        try:
            self.writer.close()
        finally:
            if self._image_cache is not None and self.options.if_cleanup_images:
                self._image_cache.cleanup()
        if self._report.status != "failed":
            logger.success(
                f"Wrote {self.file_out} ({len(self._report.sheets)} sheet(s), "
                f"{self._report.n_rows} row(s))"
            )

    def report(self) -> SpecExportReport:
        return self._report

    @property
    def image_cache(self) -> ImageCache:
        if self._image_cache is None:
            self._image_cache = ImageCache(self.token, dir_temp=self.options.dir_temp)
        return self._image_cache

    @property
    def prefetcher(self) -> ImagePrefetcher:
        if self._prefetcher is None:
            self._prefetcher = ImagePrefetcher(
                self.image_cache,
                policy=self.options.image_policy,
                strategy=self._fetch_strategy,
            )
        return self._prefetcher

    ################################################################################
    # #region Header
    def _write_header(self, cfg_layout: SpecLayout) -> None:
        cfg_autofit = self.options.autofit_policy

        # column widths and styles: parents first, so leaves override them
        for _node in cfg_layout.full_structure:
            n_col_last = _node.col + _node.col_span - 1
            if _node.has_children:
                if _node.width or _node.style is not None:
                    self.writer.set_column(
                        _node.col, n_col_last, _node.width or None, _node.style
                    )
                continue
            n_width = _node.width or calculate_autofit_width(_node.title, cfg_autofit)
            self.writer.set_column(_node.col, n_col_last, n_width, _node.style)

        dict_heights: dict[int, float] = {}
        for _node in cfg_layout.full_structure:
            if not _node.height:
                continue
            for _row in range(_node.row, _node.row + _node.row_span):
                dict_heights[_row] = max(dict_heights.get(_row, 0), _node.height)
        for _row, _height in sorted(dict_heights.items()):
            self.writer.set_row(_row, _height)

        self.writer.write_header(
            [
                SpecHeaderCell(
                    first_row=_node.row,
                    first_col=_node.col,
                    last_row=_node.row + _node.row_span - 1,
                    last_col=_node.col + _node.col_span - 1,
                    value=str(_node.title or ""),
                    fmt=(
                        self.options.fmt_header
                        if _node.header_style is None
                        else self.options.fmt_header.merge(_node.header_style)
                    ),
                )
                for _node in sorted(
                    cfg_layout.full_structure, key=lambda c: (c.row, c.col)
                )
            ]
        )
        self.writer.row_cursor = cfg_layout.max_depth

    # #endregion
    ################################################################################
    # #region Body
    def _write_page_cells(
        self,
        rows: list[list[Any]],
        ctx: SpecPageContext,
        leaves: Sequence[Column],
        report: SpecSheetReport,
        if_has_image: bool,
    ) -> None:
        n_row_start = self.writer.row_cursor
        if n_row_start + len(rows) > N_NROWS_EXCEL_MAX:
            raise ExportLimitError(
                f"Sheet {ctx.sheet_name!r} would exceed {N_NROWS_EXCEL_MAX} rows."
            )
        if if_has_image:
            cfg_prefetch = self.prefetcher.ensure_available(leaves, rows)
            report.n_images_downloaded += cfg_prefetch.n_downloaded

        image_cache = self._image_cache
        for _idx_row, _row in enumerate(rows):
            n_row_idx = n_row_start + _idx_row
            for _col, _value in zip(leaves, _row):
                cell = render_cell(
                    _col.type,
                    _value,
                    _col,
                    row_idx=n_row_idx,
                    image_cache=image_cache,
                    date_format_default=self.options.date_format_default,
                )
                if (
                    isinstance(_col.type, ImageType)
                    and cell.kind is EnumCellKind.TEXT
                    and cell.value
                ):
                    report.n_images_failed += 1
                self.writer.write_cell(cell)
        self.writer.row_cursor = n_row_start + len(rows)

    # #endregion
    ################################################################################
    # #region Export
    def _validate_sheet(self, sheet: ExportSheet) -> SpecLayout:
        cfg_layout = process_columns(sheet.columns)
        if not cfg_layout.leaves:
            raise ExportConfigError(f"Sheet {sheet.name!r} has no columns.")
        if len(cfg_layout.leaves) > N_NCOLS_EXCEL_MAX:
            raise ExportConfigError(
                f"Sheet {sheet.name!r} has {len(cfg_layout.leaves)} columns; "
                f"Excel allows {N_NCOLS_EXCEL_MAX}."
            )
        if cfg_layout.max_depth >= N_NROWS_EXCEL_MAX:
            raise ExportConfigError(f"Header of sheet {sheet.name!r} is too tall.")
        sheet.get_page_size()
        return cfg_layout

    def export_sheet(self, sheet: ExportSheet) -> SpecSheetReport:
        """Write one sheet: header block, then the streamed body.

        Configuration errors are raised before anything is written for the
        sheet. Producer, formatting and writer errors propagate as they are.
        """
        if self._is_closed:
            raise RuntimeError("Exporter is closed.")
        cfg_layout = self._validate_sheet(sheet)
        l_leaves = cfg_layout.leaves
        c_sheet_name = create_unique_sheet_name(
            sanitize_sheet_name(sheet.name), self._existing_sheet_names
        )
        if c_sheet_name != sheet.name:
            self._report.warn(f"Sheet {sheet.name!r} written as {c_sheet_name!r}.")

        rule_strategy = select_write_strategy(l_leaves)
        if_has_image = any(isinstance(_c.type, ImageType) for _c in l_leaves)
        report = SpecSheetReport(
            sheet_name=c_sheet_name,
            strategy=rule_strategy,
            max_depth=cfg_layout.max_depth,
            n_cols=len(l_leaves),
        )
        logger.debug(
            f"Sheet {c_sheet_name!r}: {len(l_leaves)} column(s), "
            f"header depth {cfg_layout.max_depth}, {rule_strategy} strategy"
        )

        dispatch_hooks(self.hooks, "on_sheet_before", sheet)
        self.writer.add_sheet(c_sheet_name)
        if sheet.style is not None:
            self.writer.apply_sheet_style(sheet.style)
        self._write_header(cfg_layout)

        if rule_strategy is EnumWriteStrategy.BULK:

            def write_fn(rows: list[list[Any]], ctx: SpecPageContext) -> None:
                self.writer.write_rows(rows)

        else:

            def write_fn(rows: list[list[Any]], ctx: SpecPageContext) -> None:
                self._write_page_cells(rows, ctx, l_leaves, report, if_has_image)

        cfg_stream = stream_sheet_data(
            sheet, l_leaves, write_fn, hooks=self.hooks, token=self.token
        )
        report.n_rows = cfg_stream.n_rows
        report.n_pages = cfg_stream.n_pages
        if report.n_images_failed:
            self._report.warn(
                f"Sheet {c_sheet_name!r}: {report.n_images_failed} image cell(s) "
                f"written as text."
            )
        self._report.sheets.append(report)
        dispatch_hooks(self.hooks, "on_sheet_after", sheet, report)
        return report

    def export(self, sheets: ExportSheet | Iterable[ExportSheet]) -> SpecExportReport:
        l_sheets = [sheets] if isinstance(sheets, ExportSheet) else list(sheets)
        try:
            dispatch_hooks(self.hooks, "on_workbook_before", self)
            for _sheet in l_sheets:
                self.export_sheet(_sheet)
            dispatch_hooks(self.hooks, "on_workbook_after", self)
        except Exception as e:
            self._report.status = "failed"
            logger.error(f"Export to {self.file_out} failed: {e}")
            raise
        self._report.status = "done"
        return self._report

    # #endregion
    ################################################################################


def export_xlsx(
    file_out: os.PathLike[str] | str,
    sheets: ExportSheet | Iterable[ExportSheet],
    *,
    options: SpecExportOptions | None = None,
    hooks: Sequence[object] = (),
    fetch_strategy: ImageFetchStrategy | None = None,
) -> SpecExportReport:
    with XlsxExporter(
        file_out, options=options, hooks=hooks, fetch_strategy=fetch_strategy
    ) as exporter:
        return exporter.export(sheets)
