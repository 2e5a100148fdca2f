from collections.abc import Mapping
from dataclasses import dataclass, fields
from types import MappingProxyType
from typing import Any, ClassVar, TypeAlias

from .spec import SpecCellFormat, SpecImageScale


################################################################################
# #region CellTypes
@dataclass(frozen=True, slots=True)
class TextType:
    name: ClassVar[str] = "text"

    format: str | None = None  # number format, e.g. "0.00" or "@"
    format_handler: SpecCellFormat | None = None


@dataclass(frozen=True, slots=True)
class UrlType:
    name: ClassVar[str] = "url"

    text: str | None = None  # display text; the href itself when None
    tooltip: str | None = None
    format_handler: SpecCellFormat | None = None


@dataclass(frozen=True, slots=True)
class FormulaType:
    name: ClassVar[str] = "formula"

    format_handler: SpecCellFormat | None = None


@dataclass(frozen=True, slots=True)
class DateType:
    name: ClassVar[str] = "date"

    date_format: str | None = None
    format_handler: SpecCellFormat | None = None


@dataclass(frozen=True, slots=True)
class ImageType:
    """Image cell descriptor.

    Sizes are in pixels. Any of the four fields may be left unset; the missing
    ones are derived from the image's true dimensions by ``calculate_scale``.
    """

    name: ClassVar[str] = "image"

    width: int | None = None
    height: int | None = None
    width_scale: float | None = None
    height_scale: float | None = None
    format_handler: SpecCellFormat | None = None

    def calculate_scale(self, width_orig: int, height_orig: int) -> SpecImageScale:
        """Resolve final size and scales against the image's true dimensions.

        Priority: explicit width and height > one explicit dimension (the other
        follows the aspect ratio unless that axis has an explicit scale) >
        explicit scale(s) > natural size.
        """
        if width_orig <= 0 or height_orig <= 0:
            raise ValueError(
                f"Image dimensions must be positive, got {width_orig}x{height_orig}."
            )

        if self.width and self.height:
            n_w_scale = self.width / width_orig
            n_h_scale = self.height / height_orig
        elif self.width:
            n_w_scale = self.width / width_orig
            n_h_scale = self.height_scale if self.height_scale else n_w_scale
        elif self.height:
            n_h_scale = self.height / height_orig
            n_w_scale = self.width_scale if self.width_scale else n_h_scale
        elif self.width_scale or self.height_scale:
            n_w_scale = self.width_scale or self.height_scale
            n_h_scale = self.height_scale or self.width_scale
        else:
            n_w_scale = n_h_scale = 1.0

        return SpecImageScale(
            width=round(width_orig * n_w_scale),
            height=round(height_orig * n_h_scale),
            width_scale=float(n_w_scale),
            height_scale=float(n_h_scale),
        )


CellType: TypeAlias = TextType | UrlType | FormulaType | DateType | ImageType

# #endregion
################################################################################
# #region Registry
DICT_CELL_TYPES: Mapping[str, type[CellType]] = MappingProxyType(
    {
        _cls.name: _cls
        for _cls in (TextType, UrlType, FormulaType, DateType, ImageType)
    }
)
TUP_CELL_TYPE_CLASSES = tuple(DICT_CELL_TYPES.values())


def _create_from_mapping(raw: Mapping[str, Any]) -> CellType:
    c_name = str(raw.get("name") or raw.get("type") or TextType.name).lower()
    cls_type = DICT_CELL_TYPES.get(c_name, TextType)

    set_fields = {_f.name for _f in fields(cls_type)}
    dict_kwargs = {k: v for k, v in raw.items() if k in set_fields}
    if "format_handler" in dict_kwargs:
        dict_kwargs["format_handler"] = SpecCellFormat.from_raw(
            dict_kwargs["format_handler"]
        )
    return cls_type(**dict_kwargs)


def resolve_cell_type(raw: Any) -> CellType:
    """Resolve a type name, a mapping or a descriptor into a cell type.

    Names are matched case-insensitively. Anything unrecognised resolves to
    ``TextType`` so unknown configuration never breaks an export.
    """
    if raw is None:
        return TextType()
    if isinstance(raw, TUP_CELL_TYPE_CLASSES):
        return raw
    if isinstance(raw, type) and issubclass(raw, TUP_CELL_TYPE_CLASSES):
        return raw()
    if isinstance(raw, str):
        return DICT_CELL_TYPES.get(raw.strip().lower(), TextType)()
    if isinstance(raw, Mapping):
        return _create_from_mapping(raw)
    return TextType()


def is_text_type(cell_type: CellType) -> bool:
    return isinstance(cell_type, TextType)


# #endregion
################################################################################
