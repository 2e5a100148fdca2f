from collections.abc import Callable, Mapping, Sequence
import dataclasses
from dataclasses import dataclass, fields, replace
from typing import Any, NamedTuple

from .errors import ExportConfigError
from .spec import SpecCellFormat
from .types import CellType, resolve_cell_type


################################################################################
# #region ColumnNode
@dataclass(frozen=True, slots=True)
class Column:
    """A node of the header tree.

    A node with children is a header group: it spans its descendants and never
    carries data itself, even when ``field`` or ``type`` are also given.

    ``col``, ``row``, ``row_span``, ``col_span`` and ``has_children`` are filled
    in by ``process_columns`` on a copy of the node. Callers leave them alone.
    """

    title: str = ""
    key: str | None = None
    field: str | None = None
    type: CellType | str | Mapping[str, Any] | None = None
    callback: Callable[[Any], Any] | None = None
    width: float = 0
    height: float = 0
    style: SpecCellFormat | None = None
    header_style: SpecCellFormat | None = None
    children: tuple["Column", ...] = ()

    col: int = dataclasses.field(default=0, compare=False)
    row: int = dataclasses.field(default=0, compare=False)
    row_span: int = dataclasses.field(default=1, compare=False)
    col_span: int = dataclasses.field(default=1, compare=False)
    has_children: bool = dataclasses.field(default=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", resolve_cell_type(self.type))
        object.__setattr__(self, "style", SpecCellFormat.from_raw(self.style))
        object.__setattr__(
            self, "header_style", SpecCellFormat.from_raw(self.header_style)
        )
        object.__setattr__(
            self, "children", tuple(Column.from_raw(_c) for _c in self.children)
        )
        object.__setattr__(
            self, "has_children", self.has_children or bool(self.children)
        )

    @property
    def field_source(self) -> str | None:
        return self.field or self.key

    @classmethod
    def from_raw(cls, raw: "Column | Mapping[str, Any]") -> "Column":
        if isinstance(raw, Column):
            return raw
        if not isinstance(raw, Mapping):
            raise ExportConfigError(
                f"Column node must be a Column or a mapping, got {type(raw).__name__}."
            )
        set_fields = {_f.name for _f in fields(cls) if _f.compare}
        set_unknown = set(raw) - set_fields
        if set_unknown:
            raise ExportConfigError(
                f"Unknown column option(s) {sorted(set_unknown)} on {raw.get('title')!r}."
            )
        try:
            return cls(**raw)
        except (TypeError, ValueError) as e:
            raise ExportConfigError(f"Invalid column {raw.get('title')!r}: {e}") from e


class SpecLayout(NamedTuple):
    leaves: list[Column]
    full_structure: list[Column]
    max_depth: int


# #endregion
################################################################################
# #region TreeMetrics
def calculate_max_depth(columns: Sequence[Column]) -> int:
    if not columns:
        return 1
    return max(
        1 + calculate_max_depth(_c.children) if _c.children else 1 for _c in columns
    )


def count_leaf_columns(column: Column) -> int:
    if not column.children:
        return 1
    return sum(count_leaf_columns(_c) for _c in column.children)


def validate_column_tree(columns: Sequence[Column], *, path: str = "") -> None:
    for _idx, _col in enumerate(columns):
        c_path = f"{path}[{_idx}]"
        if _col.children:
            if not _col.title:
                raise ExportConfigError(f"Header group at {c_path} has no title.")
            validate_column_tree(_col.children, path=f"{c_path}.children")
        elif not (_col.field_source or _col.callback):
            raise ExportConfigError(
                f"Leaf column {_col.title!r} at {c_path} needs a field, a key or a callback."
            )


# #endregion
################################################################################
# #region Layout
def _layout_nodes(
    columns: Sequence[Column],
    *,
    start_row: int,
    end_row: int,
    start_col: int,
    leaves: list[Column],
    full_structure: list[Column],
) -> list[Column]:
    n_col_cursor = start_col
    l_nodes: list[Column] = []
    for _col in columns:
        if _col.children:
            n_col_span = count_leaf_columns(_col)
            # pre-order slot, filled once the subtree is laid out
            n_idx_node = len(full_structure)
            full_structure.append(_col)
            l_children = _layout_nodes(
                _col.children,
                start_row=start_row + 1,
                end_row=end_row,
                start_col=n_col_cursor,
                leaves=leaves,
                full_structure=full_structure,
            )
            col_node = replace(
                _col,
                children=tuple(l_children),
                col=n_col_cursor,
                row=start_row,
                row_span=1,
                col_span=n_col_span,
                has_children=True,
            )
            full_structure[n_idx_node] = col_node
        else:
            n_col_span = 1
            col_node = replace(
                _col,
                col=n_col_cursor,
                row=start_row,
                row_span=end_row - start_row + 1,
                col_span=1,
            )
            full_structure.append(col_node)
            leaves.append(col_node)
        l_nodes.append(col_node)
        n_col_cursor += n_col_span
    return l_nodes


def process_columns(columns: Sequence[Column | Mapping[str, Any]]) -> SpecLayout:
    """Lay out a column tree into absolute header coordinates.

    Returns the leaf columns in output order, every node (pre-order) and the
    header depth. Each returned node is a copy carrying its laid-out children;
    the input tree is untouched.
    Every leaf stretches down to the last header row.
    """
    l_columns = [Column.from_raw(_c) for _c in columns]
    if not l_columns:
        return SpecLayout([], [], 1)
    validate_column_tree(l_columns)

    n_depth_max = calculate_max_depth(l_columns)
    l_leaves: list[Column] = []
    l_full: list[Column] = []
    _layout_nodes(
        l_columns,
        start_row=0,
        end_row=n_depth_max - 1,
        start_col=0,
        leaves=l_leaves,
        full_structure=l_full,
    )
    return SpecLayout(l_leaves, l_full, n_depth_max)


layout = process_columns

# #endregion
################################################################################
