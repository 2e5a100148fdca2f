import math
from datetime import date, datetime
from pathlib import Path
from typing import Any

import polars as pl
from loguru import logger
from PIL import Image

from .column import Column
from .conf import C_DATE_FORMAT_DEFAULT, C_FORMULA_PREFIX, N_LEN_EXCEL_URL_MAX
from .image.cache import ImageCache
from .spec import EnumCellKind, SpecCellFormat, SpecCellWrite
from .types import CellType, DateType, FormulaType, ImageType, TextType, UrlType
from .util import is_remote_url

################################################################################
# #region Helpers


def resolve_cell_format(cell_type: CellType, column: Column) -> SpecCellFormat | None:
    """The type's own format wins over the column style."""
    return getattr(cell_type, "format_handler", None) or column.style


def _with_num_format(
    fmt: SpecCellFormat | None, num_format: str | None
) -> SpecCellFormat | None:
    if not num_format:
        return fmt
    return (fmt or SpecCellFormat()).with_(num_format=num_format)


def convert_to_datetime(value: Any) -> datetime:
    """Permissive conversion; anything unparseable becomes the current time."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return _parse_datetime_str(value.strip())
    if isinstance(value, bool) or not isinstance(value, int | float):
        return datetime.now()
    if isinstance(value, float) and not math.isfinite(value):
        return datetime.now()
    try:
        return datetime.fromtimestamp(value)
    except (OverflowError, OSError, ValueError):
        return datetime.now()


def _parse_datetime_str(s: str) -> datetime:
    if not s:
        return datetime.now()
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        pass

    # polars infers the common non-ISO layouts ("2024/01/31", "31-01-2024 10:00")
    ser = pl.Series([s])
    for func_parse in (ser.str.to_datetime, ser.str.to_date):
        try:
            value = func_parse(strict=False).item()
        except pl.exceptions.PolarsError:
            continue
        if value is not None:
            return value if isinstance(value, datetime) else datetime(
                value.year, value.month, value.day
            )
    return datetime.now()


def _render_text(
    value: Any,
    *,
    row_idx: int,
    col_idx: int,
    fmt: SpecCellFormat | None,
) -> SpecCellWrite:
    return SpecCellWrite(
        row_idx=row_idx,
        col_idx=col_idx,
        kind=EnumCellKind.TEXT,
        value="" if value is None else str(value),
        fmt=fmt,
    )


# #endregion
################################################################################
# #region Renderers


def _render_url(
    cell_type: UrlType, value: Any, *, row_idx: int, col_idx: int, fmt: Any
) -> SpecCellWrite:
    c_href = "" if value is None else str(value).strip()
    if not c_href or len(c_href) > N_LEN_EXCEL_URL_MAX:
        return _render_text(value, row_idx=row_idx, col_idx=col_idx, fmt=fmt)
    return SpecCellWrite(
        row_idx=row_idx,
        col_idx=col_idx,
        kind=EnumCellKind.URL,
        value=c_href,
        fmt=fmt,
        url_text=cell_type.text or c_href,
        tooltip=cell_type.tooltip,
    )


def _render_formula(value: Any, *, row_idx: int, col_idx: int, fmt: Any) -> SpecCellWrite:
    c_formula = "" if value is None else str(value).strip()
    if not c_formula:
        return _render_text(value, row_idx=row_idx, col_idx=col_idx, fmt=fmt)
    if not c_formula.startswith(C_FORMULA_PREFIX):
        c_formula = C_FORMULA_PREFIX + c_formula
    return SpecCellWrite(
        row_idx=row_idx,
        col_idx=col_idx,
        kind=EnumCellKind.FORMULA,
        value=c_formula,
        fmt=fmt,
    )


def _render_image(
    cell_type: ImageType,
    value: Any,
    *,
    row_idx: int,
    col_idx: int,
    fmt: Any,
    image_cache: ImageCache | None,
) -> SpecCellWrite:
    c_raw = "" if value is None else str(value).strip()
    if is_remote_url(c_raw):
        file_image = None if image_cache is None else image_cache.get_path(c_raw)
    else:
        file_image = Path(c_raw) if c_raw else None

    if file_image is None or not file_image.is_file():
        logger.debug(f"Image not available, writing as text: {c_raw!r}")
        return _render_text(value, row_idx=row_idx, col_idx=col_idx, fmt=fmt)

    try:
        with Image.open(file_image) as img:
            n_width_orig, n_height_orig = img.size
        cfg_scale = cell_type.calculate_scale(n_width_orig, n_height_orig)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        logger.debug(f"Unreadable image {c_raw!r} ({e}), writing as text")
        return _render_text(value, row_idx=row_idx, col_idx=col_idx, fmt=fmt)

    return SpecCellWrite(
        row_idx=row_idx,
        col_idx=col_idx,
        kind=EnumCellKind.IMAGE,
        value=str(file_image),
        fmt=fmt,
        text_fallback=c_raw,
        x_scale=cfg_scale.width_scale,
        y_scale=cfg_scale.height_scale,
        width_px=cfg_scale.width,
        height_px=cfg_scale.height,
    )


def render_cell(
    cell_type: CellType | Any,
    value: Any,
    column: Column,
    *,
    row_idx: int,
    col_idx: int | None = None,
    image_cache: ImageCache | None = None,
    date_format_default: str = C_DATE_FORMAT_DEFAULT,
) -> SpecCellWrite:
    """Turn one cell value into a write instruction for its column type.

    ``col_idx`` defaults to the laid-out column index. Image cells need the
    operation's ``image_cache`` for remote URLs and degrade to text when the
    image is missing or unreadable. Unknown types render as text.
    """
    n_col_idx = column.col if col_idx is None else col_idx
    fmt = resolve_cell_format(cell_type, column)

    match cell_type:
        case UrlType():
            return _render_url(
                cell_type, value, row_idx=row_idx, col_idx=n_col_idx, fmt=fmt
            )
        case FormulaType():
            return _render_formula(value, row_idx=row_idx, col_idx=n_col_idx, fmt=fmt)
        case DateType():
            return SpecCellWrite(
                row_idx=row_idx,
                col_idx=n_col_idx,
                kind=EnumCellKind.DATE,
                value=convert_to_datetime(value),
                fmt=_with_num_format(
                    fmt, cell_type.date_format or date_format_default
                ),
            )
        case ImageType():
            return _render_image(
                cell_type,
                value,
                row_idx=row_idx,
                col_idx=n_col_idx,
                fmt=fmt,
                image_cache=image_cache,
            )
        case TextType(format=c_num_format) if (
            c_num_format
            and isinstance(value, int | float)
            and not isinstance(value, bool)
            and math.isfinite(value)
        ):
            # keep numbers numeric so the number format applies
            return SpecCellWrite(
                row_idx=row_idx,
                col_idx=n_col_idx,
                kind=EnumCellKind.TEXT,
                value=value,
                fmt=_with_num_format(fmt, c_num_format),
            )
        case TextType(format=c_num_format):
            return _render_text(
                value,
                row_idx=row_idx,
                col_idx=n_col_idx,
                fmt=_with_num_format(fmt, c_num_format),
            )
        case _:
            return _render_text(value, row_idx=row_idx, col_idx=n_col_idx, fmt=fmt)


# #endregion
################################################################################
