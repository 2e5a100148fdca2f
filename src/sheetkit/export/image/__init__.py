from .cache import ImageCache
from .fetch import (
    ImageFetchStrategy,
    TaskGroupFetchStrategy,
    ThreadPoolFetchStrategy,
    fetch_image_async,
    fetch_image_sync,
    select_fetch_strategy,
)
from .prefetch import ImagePrefetcher, prefetch_images

__all__ = [
    "ImageCache",
    "ImageFetchStrategy",
    "ImagePrefetcher",
    "TaskGroupFetchStrategy",
    "ThreadPoolFetchStrategy",
    "fetch_image_async",
    "fetch_image_sync",
    "prefetch_images",
    "select_fetch_strategy",
]
