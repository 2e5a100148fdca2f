import os
from collections.abc import Sequence
from typing import Any

from loguru import logger

from ..column import Column
from ..conf import DEFAULT_IMAGE_POLICY
from ..spec import SpecImagePolicy, SpecPrefetchResult
from ..types import ImageType
from ..util import dedupe_in_order, generate_chunks, is_remote_url
from .cache import ImageCache
from .fetch import ImageFetchStrategy, select_fetch_strategy


class ImagePrefetcher:
    """Resolve every remote image of a formatted page before its cells are written.

    One instance belongs to one export operation and owns its ``ImageCache``.
    Network failures end up as failure entries in the cache and are never
    raised; failing to create the cache directory is.
    """

    def __init__(
        self,
        cache: ImageCache,
        *,
        policy: SpecImagePolicy | None = None,
        strategy: ImageFetchStrategy | None = None,
    ):
        self.cache = cache
        self.policy = DEFAULT_IMAGE_POLICY if policy is None else policy
        self._strategy = strategy

    @property
    def strategy(self) -> ImageFetchStrategy:
        # chosen lazily so the execution context is the one doing the export
        if self._strategy is None:
            self._strategy = select_fetch_strategy(self.policy)
        return self._strategy

    def collect_urls(
        self, columns: Sequence[Column], rows: Sequence[Sequence[Any]]
    ) -> list[str]:
        tup_idx_image = tuple(
            _idx for _idx, _col in enumerate(columns) if isinstance(_col.type, ImageType)
        )
        if not tup_idx_image:
            return []
        l_urls = dedupe_in_order(
            _row[_idx]
            for _row in rows
            for _idx in tup_idx_image
            if _idx < len(_row) and is_remote_url(_row[_idx])
        )
        return [_u for _u in l_urls if _u not in self.cache]

    def ensure_available(
        self, columns: Sequence[Column], rows: Sequence[Sequence[Any]]
    ) -> SpecPrefetchResult:
        """Download the page's uncached remote images in bounded batches.

        ``columns`` are the leaf columns the rows were formatted against.
        """
        l_urls = self.collect_urls(columns, rows)
        if not l_urls:
            return SpecPrefetchResult()

        self.cache.ensure_dir()
        l_pending: list[str] = []
        n_cached = 0
        for _url in l_urls:
            if os.path.isfile(self.cache.path_for(_url)):
                self.cache.resolve(_url)
                n_cached += 1
            else:
                l_pending.append(_url)

        n_downloaded = 0
        n_failed = 0
        for _batch in generate_chunks(l_pending, self.policy.size_batch):
            logger.debug(
                f"Fetching {len(_batch)} image(s) with {self.strategy.name} strategy"
            )
            try:
                dict_contents = self.strategy.fetch_batch(_batch)
            except Exception as e:
                logger.warning(f"Image batch of {len(_batch)} failed: {e}")
                dict_contents = {}

            for _url in _batch:
                content = dict_contents.get(_url)
                if not content:
                    self.cache.mark_failed(_url)
                    n_failed += 1
                    continue
                try:
                    self.cache.store(_url, content)
                except OSError as e:
                    logger.warning(f"Could not store image {_url}: {e}")
                    self.cache.mark_failed(_url)
                    n_failed += 1
                    continue
                n_downloaded += 1

        return SpecPrefetchResult(
            n_requested=len(l_urls),
            n_cached=n_cached,
            n_downloaded=n_downloaded,
            n_failed=n_failed,
        )


def prefetch_images(
    columns: Sequence[Column],
    rows: Sequence[Sequence[Any]],
    token: str,
    *,
    dir_temp: os.PathLike[str] | str | None = None,
    policy: SpecImagePolicy | None = None,
    strategy: ImageFetchStrategy | None = None,
    cache: ImageCache | None = None,
) -> SpecPrefetchResult:
    """Function form of ``ImagePrefetcher.ensure_available``.

    Pass the same ``cache`` across pages of one operation to keep the
    at-most-one-download-per-URL guarantee.
    """
    cfg_cache = ImageCache(token, dir_temp=dir_temp) if cache is None else cache
    return ImagePrefetcher(cfg_cache, policy=policy, strategy=strategy).ensure_available(
        columns, rows
    )
