# "Facts/Results/Plans" produced while laying out and streaming column trees into XLSX files.

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Any, Literal


################################################################################
# #region Enums
class EnumWriteStrategy(StrEnum):
    BULK = "bulk"  # write_row, plain values only
    CELL = "cell"  # per-cell typed write


class EnumCellKind(StrEnum):
    TEXT = "text"
    URL = "url"
    FORMULA = "formula"
    DATE = "date"
    IMAGE = "image"


class EnumFetchStrategy(StrEnum):
    AUTO = "auto"
    TASKGROUP = "taskgroup"
    THREADPOOL = "threadpool"


# #endregion
################################################################################
# #region CellFormatSpecification
@dataclass(frozen=True, slots=True)
class SpecCellFormat:
    # Field names follow XlsxWriter format property keys.
    font_name: str | None = None
    font_size: int | None = None
    font_color: str | None = None
    bold: bool | None = None
    italic: bool | None = None
    underline: int | None = None  # 1 single, 2 double, 33 single accounting, 34 double accounting
    font_strikeout: bool | None = None

    align: str | None = None
    valign: str | None = None
    border: int | None = None
    text_wrap: bool | None = None

    top: int | None = None
    bottom: int | None = None
    left: int | None = None
    right: int | None = None

    num_format: str | None = None
    bg_color: str | None = None
    pattern: int | None = None

    def with_(self, **kwargs: Any) -> "SpecCellFormat":
        return replace(self, **kwargs)

    def merge(self, other: "SpecCellFormat") -> "SpecCellFormat":
        # right-hand non-None wins
        data = {
            k: (
                getattr(other, k) if getattr(other, k) is not None else getattr(self, k)
            )
            for k in self.__dataclass_fields__
        }
        return SpecCellFormat(**data)

    def to_xlsxwriter(self) -> dict[str, Any]:
        dict_props = {
            k: getattr(self, k)
            for k in self.__dataclass_fields__
            if getattr(self, k) is not None
        }
        # a background color without a pattern renders nothing
        if "bg_color" in dict_props and "pattern" not in dict_props:
            dict_props["pattern"] = 1
        return dict_props

    @classmethod
    def from_raw(cls, raw: "SpecCellFormat | dict[str, Any] | None") -> "SpecCellFormat | None":
        if raw is None or isinstance(raw, SpecCellFormat):
            return raw
        try:
            return cls(**raw)
        except TypeError as e:
            raise ValueError(f"Invalid cell format: {raw!r}") from e


@dataclass(frozen=True, slots=True)
class SpecSheetStyle:
    """Sheet-level presentation applied right after the worksheet is created.

    Attributes:
        gridline: XlsxWriter ``hide_gridlines`` option (0 show, 1 hide printed,
            2 hide screen and printed). ``None`` keeps the workbook default.
        zoom: Zoom percentage in ``[10, 400]``.
        hide: Hide the worksheet.
        is_first: Make this the active, first visible sheet.
    """

    gridline: int | None = None
    zoom: int | None = None
    hide: bool = False
    is_first: bool = False


# #endregion
################################################################################
# #region Policies
@dataclass(frozen=True, slots=True)
class SpecImagePolicy:
    batch_threshold: int = 10
    timeout_sec: float = 30.0
    redirects_max: int = 5
    verify_tls: bool = False
    num_workers_max: int | None = None
    rule_strategy: EnumFetchStrategy | str = EnumFetchStrategy.AUTO

    @property
    def size_batch(self) -> int:
        return max(1, int(self.batch_threshold))


@dataclass(frozen=True, slots=True)
class SpecAutofitHeaderPolicy:
    width_cell_min: int = 8
    width_cell_max: int = 60
    width_cell_padding: int = 2


@dataclass(frozen=True, slots=True)
class SpecExportOptions:
    dir_temp: Path | str | None = None
    if_constant_memory: bool = False
    if_cleanup_images: bool = True
    date_format_default: str = "yyyy-mm-dd"
    image_policy: SpecImagePolicy = field(default_factory=SpecImagePolicy)
    autofit_policy: SpecAutofitHeaderPolicy = field(
        default_factory=SpecAutofitHeaderPolicy
    )
    fmt_header: SpecCellFormat = field(
        default_factory=lambda: SpecCellFormat(
            font_size=11, bold=True, align="center", valign="vcenter", border=1
        )
    )

    def with_(self, **kwargs: Any) -> "SpecExportOptions":
        return replace(self, **kwargs)


# #endregion
################################################################################
# #region StreamingSpecification
@dataclass(frozen=True, slots=True)
class SpecPageContext:
    """What a data producer is told about the page being requested."""

    sheet_name: str
    page: int  # 1-based
    page_size: int
    total_count: int
    token: str = ""


@dataclass(frozen=True, slots=True)
class SpecHeaderCell:
    first_row: int
    first_col: int
    last_row: int
    last_col: int
    value: str
    fmt: SpecCellFormat | None = None

    @property
    def is_single(self) -> bool:
        return self.first_row == self.last_row and self.first_col == self.last_col


@dataclass(frozen=True, slots=True)
class SpecStreamResult:
    n_pages: int
    n_rows: int


@dataclass(frozen=True, slots=True)
class SpecCellWrite:
    row_idx: int
    col_idx: int
    kind: EnumCellKind
    value: Any
    fmt: SpecCellFormat | None = None
    text_fallback: str = ""
    url_text: str | None = None
    tooltip: str | None = None
    x_scale: float = 1.0
    y_scale: float = 1.0
    width_px: int | None = None
    height_px: int | None = None


@dataclass(frozen=True, slots=True)
class SpecImageScale:
    width: int
    height: int
    width_scale: float
    height_scale: float


@dataclass(frozen=True, slots=True)
class SpecPrefetchResult:
    n_requested: int = 0  # distinct uncached URLs seen on the page
    n_cached: int = 0  # already on disk, no download
    n_downloaded: int = 0
    n_failed: int = 0


# #endregion
################################################################################
# #region ReportSpecification
@dataclass(slots=True)
class SpecSheetReport:
    sheet_name: str
    strategy: EnumWriteStrategy
    max_depth: int
    n_cols: int
    n_rows: int = 0
    n_pages: int = 0
    n_images_downloaded: int = 0
    n_images_failed: int = 0


@dataclass(slots=True)
class SpecExportReport:
    token: str
    sheets: list[SpecSheetReport] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    time_started: datetime = field(default_factory=datetime.now)
    status: Literal["running", "done", "failed"] = "running"

    def warn(self, msg: str) -> None:
        self.warnings.append(str(msg))

    @property
    def n_rows(self) -> int:
        return sum(s.n_rows for s in self.sheets)


# #endregion
################################################################################
