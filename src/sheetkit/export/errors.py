class SheetkitError(Exception):
    """Base class for errors raised by sheetkit."""


class ExportConfigError(SheetkitError, ValueError):
    """Malformed export configuration, raised before anything is written."""


class ExportLimitError(SheetkitError, ValueError):
    """The export would exceed a hard worksheet limit."""


class ImageFetchError(SheetkitError):
    """A single image download failed.

    Never escapes the image prefetcher; the URL is cached as a failure instead.
    """

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch image {url!r}: {reason}")
        self.url = url
        self.reason = reason
