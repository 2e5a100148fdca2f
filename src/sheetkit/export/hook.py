from collections.abc import Sequence
from typing import Any, Protocol


class ExportHook(Protocol):
    """Lifecycle callbacks around an export.

    Every method is optional: the dispatcher only calls what a hook object
    actually defines. Exceptions raised by a hook abort the export.

    Page hooks receive a ``SpecPageContext``; ``on_page_after`` also gets the
    raw rows returned by the producer (before formatting).
    """

    def on_workbook_before(self, exporter: Any) -> None: ...

    def on_workbook_after(self, exporter: Any) -> None: ...

    def on_sheet_before(self, sheet: Any) -> None: ...

    def on_sheet_after(self, sheet: Any, report: Any) -> None: ...

    def on_page_before(self, ctx: Any) -> None: ...

    def on_page_after(self, ctx: Any, rows: list[Any]) -> None: ...


def dispatch_hooks(hooks: Sequence[object], name: str, *args: Any) -> None:
    for _hook in hooks:
        func_hook = getattr(_hook, name, None)
        if callable(func_hook):
            func_hook(*args)
