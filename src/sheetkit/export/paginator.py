import math
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from loguru import logger

from .column import Column, process_columns
from .hook import dispatch_hooks
from .sheet import ExportSheet, format_rows
from .spec import SpecPageContext, SpecStreamResult

WriteFn = Callable[[list[list[Any]], SpecPageContext], None]


def check_stream_end(
    *,
    is_producer: bool,
    total_count: int,
    page_size: int,
    n_rows_page: int,
    page: int,
) -> str | None:
    """Return why the stream stops after ``page``, or ``None`` to keep going.

    Producers may report an approximate or unknown total, so a short page
    ends the stream as well.
    """
    if not is_producer:
        return "static source"
    if total_count <= 0:
        return "unknown total"
    if total_count <= page_size:
        return "single page"
    if n_rows_page < page_size:
        return "short page"
    if page >= math.ceil(total_count / page_size):
        return "last page"
    return None


def select_leaf_columns(columns: Sequence[Column | Mapping[str, Any]]) -> list[Column]:
    l_nodes = [Column.from_raw(_x) for _x in columns]
    # an unprocessed tree still holds its children
    if any(_c.children for _c in l_nodes):
        return process_columns(l_nodes).leaves
    return [_c for _c in l_nodes if not _c.has_children]


def stream_sheet_data(
    sheet: ExportSheet,
    columns: Sequence[Column | Mapping[str, Any]] | None,
    write_fn: WriteFn,
    *,
    hooks: Sequence[object] = (),
    token: str = "",
) -> SpecStreamResult:
    """Pull the sheet's rows page by page and hand each formatted page to ``write_fn``.

    Args:
        sheet: Data source. A static source is a single page; a producer is
            called with page numbers 1, 2, ... until the stop rule fires.
        columns: Leaf columns, or a column tree, used for formatting. When
            ``None`` the sheet's own column tree is laid out.
        write_fn: Receives ``(formatted_rows, ctx)`` for every non-empty page,
            in page order.
        hooks: Objects with optional ``on_page_before`` / ``on_page_after``.
        token: Operation token forwarded to the producer through the context.

    Returns:
        SpecStreamResult(n_pages, n_rows)
    """
    l_leaves = select_leaf_columns(sheet.columns if columns is None else columns)
    b_is_producer = sheet.is_producer
    n_page_size = sheet.get_page_size()
    # a static list is one materialized page, never producer-driven
    n_total = sheet.get_count() if b_is_producer else 0
    n_page_size_request = min(n_total, n_page_size) if n_total > 0 else n_page_size

    n_page = 0
    n_rows = 0
    while True:
        n_page += 1
        ctx = SpecPageContext(
            sheet_name=sheet.name,
            page=n_page,
            page_size=n_page_size_request,
            total_count=n_total,
            token=token,
        )
        dispatch_hooks(hooks, "on_page_before", ctx)
        l_rows = sheet.fetch_page(ctx)
        dispatch_hooks(hooks, "on_page_after", ctx, l_rows)

        if l_rows:
            write_fn(format_rows(l_rows, l_leaves), ctx)
            n_rows += len(l_rows)

        c_reason = check_stream_end(
            is_producer=b_is_producer,
            total_count=n_total,
            page_size=n_page_size,
            n_rows_page=len(l_rows),
            page=n_page,
        )
        logger.debug(
            f"Sheet {sheet.name!r} page {n_page}: {len(l_rows)} rows"
            + (f", stop ({c_reason})" if c_reason else "")
        )
        if c_reason is not None:
            break

    return SpecStreamResult(n_pages=n_page, n_rows=n_rows)
