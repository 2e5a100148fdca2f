import hashlib
import math
from collections.abc import Generator, Iterable, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any, TypeVar

from .conf import (
    N_LEN_EXCEL_SHEET_NAME_MAX,
    TUP_EXCEL_ILLEGAL,
    TUP_REMOTE_URL_PREFIXES,
)
from .spec import SpecAutofitHeaderPolicy

T = TypeVar("T")

################################################################################
# #region CellValueConversion


def convert_nan_inf_to_str(x: float) -> str:
    if math.isnan(x):
        return "NaN"
    if math.isinf(x):
        return "Inf" if x > 0 else "-Inf"
    raise ValueError("Input is neither NaN nor Inf.")


def convert_bulk_value(value: Any) -> Any:
    """Plain value for a bulk row write: numbers stay numbers, the rest is text."""
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float | Decimal):
        n_val = float(value)
        return n_val if math.isfinite(n_val) else convert_nan_inf_to_str(n_val)
    if isinstance(value, datetime | date):
        return value.isoformat(sep=" ") if isinstance(value, datetime) else value.isoformat()
    return str(value)


# #endregion
################################################################################
# #region Autofit


def estimate_width_len(value: Any) -> int:
    """Estimate display length of a header title for column width calculation.

    Excel widths are not character counts; wide (non-ASCII) glyphs are weighted
    at 1.6 characters, which is close enough for CJK titles.
    """
    if value is None:
        return 0
    s = str(value)
    n_ascii = sum(1 for _chr in s if ord(_chr) < 128)
    n_non_ascii = len(s) - n_ascii
    return n_ascii + int(1.6 * n_non_ascii)


def calculate_autofit_width(title: Any, policy: SpecAutofitHeaderPolicy) -> int:
    n_width = estimate_width_len(title) + policy.width_cell_padding
    return max(policy.width_cell_min, min(policy.width_cell_max, n_width))


# #endregion
################################################################################
# #region Chunking


def generate_chunks(items: Sequence[T], size: int) -> Generator[list[T], None, None]:
    if size < 1:
        raise ValueError(f"Chunk size must be >= 1, got {size}.")
    for _idx in range(0, len(items), size):
        yield list(items[_idx : _idx + size])


def dedupe_in_order(items: Iterable[T]) -> list[T]:
    return list(dict.fromkeys(items))


# #endregion
################################################################################
# #region Urls


def is_remote_url(value: Any) -> bool:
    return (
        isinstance(value, str)
        and bool(value)
        and value.lower().startswith(TUP_REMOTE_URL_PREFIXES)
    )


def hash_url(url: str) -> str:
    return hashlib.blake2b(url.encode("utf-8"), digest_size=16).hexdigest()


# #endregion
################################################################################
# #region SheetNames


def sanitize_sheet_name(name: str, *, replace_to: str = "_") -> str:
    for ch in TUP_EXCEL_ILLEGAL:
        name = name.replace(ch, replace_to)
    name = name.strip() or "Sheet"
    return name[:N_LEN_EXCEL_SHEET_NAME_MAX]


def _create_bumped_name(name: str, i: int) -> str:
    c_suffix = f"__{i}"
    return name[: N_LEN_EXCEL_SHEET_NAME_MAX - len(c_suffix)] + c_suffix


def create_unique_sheet_name(name: str, existing: set[str]) -> str:
    """Return ``name`` or a bumped ``name__2``, ``name__3`` ... not in ``existing``.

    Excel compares sheet names case-insensitively, so ``existing`` is expected to
    hold lower-cased names. The chosen name is added to it.
    """
    if name.lower() not in existing:
        existing.add(name.lower())
        return name

    # deterministic bump: name__2, name__3 ...
    i = 2
    c_candidate_name = _create_bumped_name(name, i)
    while c_candidate_name.lower() in existing:
        i += 1
        c_candidate_name = _create_bumped_name(name, i)
    existing.add(c_candidate_name.lower())
    return c_candidate_name


# #endregion
################################################################################
