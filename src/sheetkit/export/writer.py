import math
import os
from collections.abc import Callable, Sequence
from dataclasses import replace
from pathlib import Path
from types import TracebackType
from typing import Any, Protocol, Self

import xlsxwriter
import xlsxwriter.exceptions
import xlsxwriter.format
import xlsxwriter.worksheet
from loguru import logger

from .conf import N_NCOLS_EXCEL_MAX, N_NROWS_EXCEL_MAX, N_PIXELS_PER_CHAR, N_POINTS_PER_PIXEL
from .errors import ExportLimitError
from .spec import (
    EnumCellKind,
    SpecCellFormat,
    SpecCellWrite,
    SpecHeaderCell,
    SpecSheetStyle,
)
from .util import convert_bulk_value


class SheetWriter(Protocol):
    """What the exporter needs from a spreadsheet backend.

    Row/column indices are 0-based worksheet coordinates. ``row_cursor`` is the
    next row that ``write_rows`` writes to.
    """

    row_cursor: int

    def add_sheet(self, name: str) -> None: ...

    def apply_sheet_style(self, style: SpecSheetStyle) -> None: ...

    def write_header(self, cells: Sequence[SpecHeaderCell]) -> None: ...

    def set_column(
        self,
        first_col: int,
        last_col: int,
        width: float | None,
        fmt: SpecCellFormat | None = None,
    ) -> None: ...

    def set_row(self, row: int, height: float) -> None: ...

    def write_rows(self, rows: Sequence[Sequence[Any]]) -> None: ...

    def write_cell(self, cell: SpecCellWrite) -> None: ...

    def close(self) -> None: ...


class XlsxSheetWriter:
    """``SheetWriter`` over an ``xlsxwriter.Workbook``.

    Image cells grow their row to the image height (pixels -> points) and their
    column to the image width (pixels -> character units). These conversions
    belong to this backend only.

    Parameters
    ----------
    file_out:
        Output ``.xlsx`` path.
    if_constant_memory:
        Use XlsxWriter's streaming mode. Rows must then be written in order,
        which the exporter guarantees.
    """

    def __init__(
        self,
        file_out: os.PathLike[str] | str,
        *,
        if_constant_memory: bool = False,
    ):
        self.file_out = Path(file_out)
        self._if_constant_memory = if_constant_memory
        self.wb = xlsxwriter.Workbook(
            self.file_out.as_posix(),
            {
                "constant_memory": if_constant_memory,
                # NaN/Inf are written as strings, never as Excel errors
                "nan_inf_to_errors": False,
                "remove_timezone": True,
            },
        )
        self.ws: xlsxwriter.worksheet.Worksheet | None = None
        self.row_cursor = 0
        self._format_cache: dict[SpecCellFormat, xlsxwriter.format.Format] = {}
        self._col_widths: dict[int, float | None] = {}
        self._col_formats: dict[int, SpecCellFormat | None] = {}
        self._row_heights: dict[int, float] = {}
        self._is_closed = False
        self._dict_cell_writers: dict[EnumCellKind, Callable[[SpecCellWrite], None]] = {
            EnumCellKind.TEXT: self._write_text,
            EnumCellKind.URL: self._write_url,
            EnumCellKind.FORMULA: self._write_formula,
            EnumCellKind.DATE: self._write_date,
            EnumCellKind.IMAGE: self._write_image,
        }

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self, exc_type: type | None, exc: BaseException | None, tb: TracebackType | None
    ) -> None:
        self.close()

    def close(self) -> None:
        if self._is_closed:
            return
        self._is_closed = True
        self.wb.close()

    def _create_format_cached(
        self, spec: SpecCellFormat | None
    ) -> xlsxwriter.format.Format | None:
        if spec is None:
            return None
        fmt = self._format_cache.get(spec)
        if fmt is None:
            fmt = self.wb.add_format(spec.to_xlsxwriter())
            self._format_cache[spec] = fmt
        return fmt

    @property
    def worksheet(self) -> xlsxwriter.worksheet.Worksheet:
        if self.ws is None:
            raise RuntimeError("No worksheet: call add_sheet() first.")
        return self.ws

    ################################################################################
    # #region SheetLayout
    def add_sheet(self, name: str) -> None:
        self.ws = self.wb.add_worksheet(name)
        self.row_cursor = 0
        self._col_widths = {}
        self._col_formats = {}
        self._row_heights = {}

    def apply_sheet_style(self, style: SpecSheetStyle) -> None:
        ws = self.worksheet
        if style.gridline is not None:
            ws.hide_gridlines(style.gridline)
        if style.zoom is not None:
            ws.set_zoom(style.zoom)
        if style.hide:
            ws.hide()
        if style.is_first:
            ws.activate()
            ws.set_first_sheet()

    def _write_header_range(self, cell: SpecHeaderCell) -> None:
        ws = self.worksheet
        fmt_cell = self._create_format_cached(cell.fmt)
        # a one-cell range is not a merge
        if cell.is_single:
            if cell.value:
                ws.write_string(cell.first_row, cell.first_col, cell.value, fmt_cell)
            else:
                ws.write_blank(cell.first_row, cell.first_col, None, fmt_cell)
            return
        ws.merge_range(
            cell.first_row,
            cell.first_col,
            cell.last_row,
            cell.last_col,
            cell.value,
            fmt_cell,
        )

    def write_header(self, cells: Sequence[SpecHeaderCell]) -> None:
        """Write the header block.

        Notes
        -----
        In constant-memory mode a finished row cannot be revisited, so a range
        spanning several rows is merged per row and drawn as one block by
        dropping the inner horizontal borders. The title sits in its first row.
        """
        if not cells:
            return
        if not self._if_constant_memory:
            for _cell in sorted(cells, key=lambda c: (c.first_row, c.first_col)):
                self._write_header_range(_cell)
            return

        n_row_first = min(_c.first_row for _c in cells)
        n_row_last = max(_c.last_row for _c in cells)
        for _row in range(n_row_first, n_row_last + 1):
            l_cells_row = sorted(
                (_c for _c in cells if _c.first_row <= _row <= _c.last_row),
                key=lambda c: c.first_col,
            )
            for _cell in l_cells_row:
                if _cell.first_row == _cell.last_row:
                    self._write_header_range(_cell)
                    continue
                fmt = _cell.fmt or SpecCellFormat()
                self._write_header_range(
                    replace(
                        _cell,
                        first_row=_row,
                        last_row=_row,
                        value=_cell.value if _row == _cell.first_row else "",
                        fmt=fmt.with_(
                            top=fmt.top if _row == _cell.first_row else 0,
                            bottom=fmt.bottom if _row == _cell.last_row else 0,
                        ),
                    )
                )

    def set_column(
        self,
        first_col: int,
        last_col: int,
        width: float | None,
        fmt: SpecCellFormat | None = None,
    ) -> None:
        if last_col >= N_NCOLS_EXCEL_MAX:
            raise ExportLimitError(
                f"Column {last_col} exceeds Excel limit {N_NCOLS_EXCEL_MAX}."
            )
        for _col in range(first_col, last_col + 1):
            if width is not None:
                self._col_widths[_col] = width
            if fmt is not None:
                self._col_formats[_col] = fmt
            self.worksheet.set_column(
                _col,
                _col,
                self._col_widths.get(_col),
                self._create_format_cached(self._col_formats.get(_col)),
            )

    def set_row(self, row: int, height: float) -> None:
        self._row_heights[row] = height
        self.worksheet.set_row(row, height)

    def _grow_column(self, col: int, width: float) -> None:
        n_width = self._col_widths.get(col)
        if n_width is None or n_width < width:
            self.set_column(col, col, width)

    def _grow_row(self, row: int, height: float) -> None:
        if self._row_heights.get(row, 0) < height:
            self.set_row(row, height)

    # #endregion
    ################################################################################
    # #region BodyWrite
    def _check_row(self, row: int) -> None:
        if row >= N_NROWS_EXCEL_MAX:
            raise ExportLimitError(
                f"Row {row + 1} exceeds Excel limit {N_NROWS_EXCEL_MAX}."
            )

    def write_rows(self, rows: Sequence[Sequence[Any]]) -> None:
        """Bulk path: plain values, column formats only, no type dispatch."""
        if not rows:
            return
        self._check_row(self.row_cursor + len(rows) - 1)
        ws = self.worksheet
        for _row in rows:
            ws.write_row(self.row_cursor, 0, [convert_bulk_value(_v) for _v in _row])
            self.row_cursor += 1

    def write_cell(self, cell: SpecCellWrite) -> None:
        self._check_row(cell.row_idx)
        self._dict_cell_writers.get(cell.kind, self._write_text)(cell)

    def _write_text(self, cell: SpecCellWrite) -> None:
        ws = self.worksheet
        fmt_cell = self._create_format_cached(cell.fmt)
        value = cell.value
        if isinstance(value, int | float) and not isinstance(value, bool):
            if math.isfinite(value):
                ws.write_number(cell.row_idx, cell.col_idx, value, fmt_cell)
                return
            value = convert_bulk_value(value)
        c_value = "" if value is None else str(value)
        if c_value:
            ws.write_string(cell.row_idx, cell.col_idx, c_value, fmt_cell)
        else:
            ws.write_blank(cell.row_idx, cell.col_idx, None, fmt_cell)

    def _write_url(self, cell: SpecCellWrite) -> None:
        n_status = self.worksheet.write_url(
            cell.row_idx,
            cell.col_idx,
            cell.value,
            self._create_format_cached(cell.fmt),
            string=cell.url_text,
            tip=cell.tooltip,
        )
        # xlsxwriter returns a negative code (and writes nothing) for rejected links
        if n_status is not None and n_status < 0:
            logger.warning(f"Hyperlink rejected ({n_status}), writing as text: {cell.value}")
            self._write_text(cell)

    def _write_formula(self, cell: SpecCellWrite) -> None:
        self.worksheet.write_formula(
            cell.row_idx, cell.col_idx, cell.value, self._create_format_cached(cell.fmt)
        )

    def _write_date(self, cell: SpecCellWrite) -> None:
        self.worksheet.write_datetime(
            cell.row_idx, cell.col_idx, cell.value, self._create_format_cached(cell.fmt)
        )

    def _write_image(self, cell: SpecCellWrite) -> None:
        ws = self.worksheet
        c_text = cell.text_fallback or str(cell.value)
        try:
            n_status = ws.insert_image(
                cell.row_idx,
                cell.col_idx,
                cell.value,
                {
                    "x_scale": cell.x_scale,
                    "y_scale": cell.y_scale,
                    "object_position": 1,
                },
            )
        except xlsxwriter.exceptions.UnsupportedImageFormat as e:
            logger.debug(f"Unsupported image {c_text!r} ({e}), writing as text")
            n_status = -1
        if n_status is not None and n_status < 0:
            self._write_text(
                SpecCellWrite(
                    row_idx=cell.row_idx,
                    col_idx=cell.col_idx,
                    kind=EnumCellKind.TEXT,
                    value=c_text,
                    fmt=cell.fmt,
                )
            )
            return

        # anchor cell keeps the style even though the image covers it
        if cell.fmt is not None:
            ws.write_blank(cell.row_idx, cell.col_idx, None, self._create_format_cached(cell.fmt))
        if cell.height_px:
            self._grow_row(cell.row_idx, cell.height_px * N_POINTS_PER_PIXEL)
        if cell.width_px:
            self._grow_column(cell.col_idx, cell.width_px / N_PIXELS_PER_CHAR + 1)

    # #endregion
    ################################################################################
