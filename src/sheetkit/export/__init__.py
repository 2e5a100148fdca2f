from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__all__ = [
    "Column",
    "ExportSheet",
    "XlsxExporter",
    "XlsxSheetWriter",
    "ImageCache",
    "ImagePrefetcher",
    "TextType",
    "UrlType",
    "FormulaType",
    "DateType",
    "ImageType",
    "SpecCellFormat",
    "SpecSheetStyle",
    "SpecImagePolicy",
    "SpecExportOptions",
    "SpecPageContext",
    "SheetkitError",
    "ExportConfigError",
    "ExportLimitError",
    "ImageFetchError",
    "export_xlsx",
    "layout",
    "prefetch_images",
    "process_columns",
    "render_cell",
    "resolve_cell_type",
    "stream_sheet_data",
]

if TYPE_CHECKING:
    from .column import Column, layout, process_columns
    from .errors import (
        ExportConfigError,
        ExportLimitError,
        ImageFetchError,
        SheetkitError,
    )
    from .exporter import XlsxExporter, export_xlsx
    from .image import ImageCache, ImagePrefetcher, prefetch_images
    from .paginator import stream_sheet_data
    from .render import render_cell
    from .sheet import ExportSheet
    from .spec import (
        SpecCellFormat,
        SpecExportOptions,
        SpecImagePolicy,
        SpecPageContext,
        SpecSheetStyle,
    )
    from .types import (
        DateType,
        FormulaType,
        ImageType,
        TextType,
        UrlType,
        resolve_cell_type,
    )
    from .writer import XlsxSheetWriter

_ATTR_MODULES: dict[str, str] = {
    "Column": ".column",
    "layout": ".column",
    "process_columns": ".column",
    "ExportSheet": ".sheet",
    "XlsxExporter": ".exporter",
    "export_xlsx": ".exporter",
    "XlsxSheetWriter": ".writer",
    "ImageCache": ".image",
    "ImagePrefetcher": ".image",
    "prefetch_images": ".image",
    "stream_sheet_data": ".paginator",
    "render_cell": ".render",
    "TextType": ".types",
    "UrlType": ".types",
    "FormulaType": ".types",
    "DateType": ".types",
    "ImageType": ".types",
    "resolve_cell_type": ".types",
    "SpecCellFormat": ".spec",
    "SpecSheetStyle": ".spec",
    "SpecImagePolicy": ".spec",
    "SpecExportOptions": ".spec",
    "SpecPageContext": ".spec",
    "SheetkitError": ".errors",
    "ExportConfigError": ".errors",
    "ExportLimitError": ".errors",
    "ImageFetchError": ".errors",
}


def __getattr__(name: str) -> Any:
    module_name = _ATTR_MODULES.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    attr_loaded = getattr(import_module(module_name, __name__), name)
    globals()[name] = attr_loaded
    return attr_loaded


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))
