from .spec import SpecExportOptions, SpecImagePolicy

N_NROWS_EXCEL_MAX = 1_048_576
N_NCOLS_EXCEL_MAX = 16_384
N_LEN_EXCEL_SHEET_NAME_MAX = 31
N_LEN_EXCEL_URL_MAX = 2_079
TUP_EXCEL_ILLEGAL = ("*", ":", "?", "/", "\\", "[", "]")

# Strategy/Preference/Adjustable Parameters for column-tree export.

N_PAGE_SIZE_DEFAULT = 1_000
C_DATE_FORMAT_DEFAULT = "yyyy-mm-dd"
C_FORMULA_PREFIX = "="
C_DIR_TEMP_NAME = "sheetkit"
C_DIR_IMAGES_NAME = "images"
TUP_REMOTE_URL_PREFIXES = ("http://", "https://")

# xlsxwriter backend: row height is in points, column width in character units.
N_POINTS_PER_PIXEL = 0.75
N_PIXELS_PER_CHAR = 7

DEFAULT_IMAGE_POLICY = SpecImagePolicy()
DEFAULT_EXPORT_OPTIONS = SpecExportOptions()
