import os
import shutil
import tempfile
from pathlib import Path

from loguru import logger

from ..conf import C_DIR_IMAGES_NAME, C_DIR_TEMP_NAME
from ..util import hash_url


class ImageCache:
    """URL -> local file map scoped to one export operation.

    Files live under ``<dir_temp>/<token>/images/`` named by a hash of the URL.
    An entry is either a path or ``None`` (download failed); either way the URL
    is never fetched again for this operation.
    """

    def __init__(self, token: str, *, dir_temp: os.PathLike[str] | str | None = None):
        if not token:
            raise ValueError("ImageCache requires a non-empty operation token.")
        self.token = token
        dir_base = (
            Path(tempfile.gettempdir()) / C_DIR_TEMP_NAME
            if dir_temp is None
            else Path(dir_temp)
        )
        self.dir_token = dir_base / token
        self.dir_images = self.dir_token / C_DIR_IMAGES_NAME
        self._entries: dict[str, Path | None] = {}

    def __contains__(self, url: object) -> bool:
        return url in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def ensure_dir(self) -> Path:
        # OSError here is fatal for the export
        self.dir_images.mkdir(parents=True, exist_ok=True)
        return self.dir_images

    def path_for(self, url: str) -> Path:
        return self.dir_images / hash_url(url)

    def get_path(self, url: str) -> Path | None:
        return self._entries.get(url)

    def resolve(self, url: str) -> Path:
        file_image = self.path_for(url)
        self._entries[url] = file_image
        return file_image

    def mark_failed(self, url: str) -> None:
        self._entries[url] = None

    def store(self, url: str, content: bytes) -> Path:
        file_image = self.path_for(url)
        file_tmp = file_image.with_name(f"{file_image.name}.part")
        try:
            file_tmp.write_bytes(content)
            os.replace(file_tmp, file_image)
        except OSError:
            file_tmp.unlink(missing_ok=True)
            raise
        self._entries[url] = file_image
        return file_image

    def cleanup(self) -> None:
        if self.dir_token.exists():
            shutil.rmtree(self.dir_token, ignore_errors=True)
            logger.debug(f"Removed image cache {self.dir_token}")
        self._entries.clear()
