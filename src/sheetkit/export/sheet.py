from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeAlias

import polars as pl

from .column import Column
from .conf import N_PAGE_SIZE_DEFAULT
from .errors import ExportConfigError
from .spec import SpecPageContext, SpecSheetStyle

Rows: TypeAlias = Sequence[Any] | pl.DataFrame
DataProducer: TypeAlias = Callable[[SpecPageContext], Rows | Iterable[Any] | None]


@dataclass(slots=True)
class ExportSheet:
    """A named data source bound to a column tree.

    ``data`` is either the full row set (a list of mappings/objects or a polars
    DataFrame) or a producer called once per page with a ``SpecPageContext``.
    ``count`` is the producer's declared total; ``0`` means unknown and the
    stream then stops on the first short page.
    """

    name: str = "Sheet1"
    columns: Sequence[Column | Mapping[str, Any]] = field(default_factory=list)
    data: Rows | DataProducer | None = None
    count: int = 0
    page_size: int = N_PAGE_SIZE_DEFAULT
    style: SpecSheetStyle | None = None

    @property
    def is_producer(self) -> bool:
        return callable(self.data) and not isinstance(self.data, pl.DataFrame)

    def get_count(self) -> int:
        if self.is_producer:
            return max(0, int(self.count or 0))
        if self.data is None:
            return 0
        return len(self.data)

    def get_page_size(self) -> int:
        try:
            n_page_size = int(self.page_size)
        except (TypeError, ValueError) as e:
            raise ExportConfigError(
                f"page_size must be an integer, got {self.page_size!r}."
            ) from e
        if n_page_size < 1:
            raise ExportConfigError(f"page_size must be >= 1, got {n_page_size}.")
        return n_page_size

    def fetch_page(self, ctx: SpecPageContext) -> list[Any]:
        if self.is_producer:
            return convert_rows_to_list(self.data(ctx))
        return convert_rows_to_list(self.data)


################################################################################
# #region RowFormatting
def convert_rows_to_list(rows: Rows | Iterable[Any] | None) -> list[Any]:
    if rows is None:
        return []
    if isinstance(rows, pl.DataFrame):
        return list(rows.iter_rows(named=True))
    return list(rows)


def extract_field(row: Any, field_name: str | None) -> Any:
    if field_name is None:
        return None
    if isinstance(row, Mapping):
        return row.get(field_name)
    return getattr(row, field_name, None)


def format_rows(rows: Iterable[Any], leaves: Sequence[Column]) -> list[list[Any]]:
    """Project raw rows onto the leaf columns, in leaf order.

    A column callback receives the whole raw row and replaces field lookup.
    """
    l_formatted: list[list[Any]] = []
    for _row in rows:
        l_formatted.append(
            [
                _col.callback(_row)
                if _col.callback is not None
                else extract_field(_row, _col.field_source)
                for _col in leaves
            ]
        )
    return l_formatted


# #endregion
################################################################################
