import asyncio
from collections.abc import Awaitable, Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Protocol

import aiohttp
import requests
import urllib3
from loguru import logger

from ..conf import DEFAULT_IMAGE_POLICY
from ..errors import ImageFetchError
from ..spec import EnumFetchStrategy, SpecImagePolicy

FetchFn = Callable[[str], bytes]
AsyncFetchFn = Callable[[str], Awaitable[bytes]]


class ImageFetchStrategy(Protocol):
    """Downloads one batch of URLs.

    ``fetch_batch`` must return an entry for every requested URL: the body on
    success, ``None`` on any failure. It never raises for a single URL.
    """

    name: str

    def fetch_batch(self, urls: Sequence[str]) -> dict[str, bytes | None]: ...


################################################################################
# #region SingleRequest
def fetch_image_sync(
    url: str, *, session: requests.Session, policy: SpecImagePolicy
) -> bytes:
    response = session.get(
        url,
        timeout=policy.timeout_sec,
        verify=policy.verify_tls,
        allow_redirects=True,
    )
    if response.status_code != 200:
        raise ImageFetchError(url, f"HTTP {response.status_code}")
    if not response.content:
        raise ImageFetchError(url, "empty body")
    return response.content


async def fetch_image_async(
    url: str, *, session: aiohttp.ClientSession, policy: SpecImagePolicy
) -> bytes:
    async with session.get(
        url,
        ssl=policy.verify_tls,
        allow_redirects=True,
        max_redirects=policy.redirects_max,
    ) as response:
        if response.status != 200:
            raise ImageFetchError(url, f"HTTP {response.status}")
        content = await response.read()
    if not content:
        raise ImageFetchError(url, "empty body")
    return content


# #endregion
################################################################################
# #region Strategies
class ThreadPoolFetchStrategy:
    """Issue every request of the batch on a thread pool, then collect all."""

    name = EnumFetchStrategy.THREADPOOL.value

    def __init__(
        self,
        policy: SpecImagePolicy | None = None,
        *,
        fetch_one: FetchFn | None = None,
    ):
        self.policy = DEFAULT_IMAGE_POLICY if policy is None else policy
        self._fetch_one = fetch_one

    def _create_session(self) -> requests.Session:
        if not self.policy.verify_tls:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        session = requests.Session()
        session.max_redirects = self.policy.redirects_max
        return session

    def fetch_batch(self, urls: Sequence[str]) -> dict[str, bytes | None]:
        if not urls:
            return {}
        dict_results: dict[str, bytes | None] = {}
        n_workers = min(len(urls), self.policy.num_workers_max or len(urls))

        session: requests.Session | None = None
        func_fetch = self._fetch_one
        if func_fetch is None:
            session = self._create_session()

            def func_fetch(url: str) -> bytes:
                return fetch_image_sync(url, session=session, policy=self.policy)

        try:
            with ThreadPoolExecutor(max_workers=max(1, n_workers)) as executor:
                dict_futures = {executor.submit(func_fetch, _u): _u for _u in urls}
                for _future in as_completed(dict_futures):
                    c_url = dict_futures[_future]
                    try:
                        dict_results[c_url] = _future.result()
                    except Exception as e:
                        logger.warning(f"Image download failed: {c_url} ({e})")
                        dict_results[c_url] = None
        finally:
            if session is not None:
                session.close()
        return dict_results


class TaskGroupFetchStrategy:
    """One lightweight task per URL inside an ``asyncio.TaskGroup``.

    The whole batch is bounded by twice the request timeout; URLs still
    pending at that point count as failed.
    """

    name = EnumFetchStrategy.TASKGROUP.value

    def __init__(
        self,
        policy: SpecImagePolicy | None = None,
        *,
        fetch_one_async: AsyncFetchFn | None = None,
    ):
        self.policy = DEFAULT_IMAGE_POLICY if policy is None else policy
        self._fetch_one_async = fetch_one_async

    async def _fetch_into(
        self, url: str, func_fetch: AsyncFetchFn, results: dict[str, bytes | None]
    ) -> None:
        try:
            results[url] = await func_fetch(url)
        except Exception as e:
            logger.warning(f"Image download failed: {url} ({e})")
            results[url] = None

    async def _run_batch(
        self, urls: Sequence[str], func_fetch: AsyncFetchFn
    ) -> dict[str, bytes | None]:
        dict_results: dict[str, bytes | None] = {}
        try:
            async with asyncio.timeout(self.policy.timeout_sec * 2):
                async with asyncio.TaskGroup() as tg:
                    for _url in urls:
                        tg.create_task(self._fetch_into(_url, func_fetch, dict_results))
        except TimeoutError:
            logger.warning(
                f"Image batch timed out after {self.policy.timeout_sec * 2:.0f}s"
            )
        for _url in urls:
            dict_results.setdefault(_url, None)
        return dict_results

    async def fetch_batch_async(self, urls: Sequence[str]) -> dict[str, bytes | None]:
        if self._fetch_one_async is not None:
            return await self._run_batch(urls, self._fetch_one_async)

        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.policy.timeout_sec),
        ) as session:

            async def func_fetch(url: str) -> bytes:
                return await fetch_image_async(url, session=session, policy=self.policy)

            return await self._run_batch(urls, func_fetch)

    def fetch_batch(self, urls: Sequence[str]) -> dict[str, bytes | None]:
        if not urls:
            return {}
        return asyncio.run(self.fetch_batch_async(urls))


def select_fetch_strategy(policy: SpecImagePolicy | None = None) -> ImageFetchStrategy:
    """Pick the download strategy for the current execution context.

    ``auto`` uses the task group when no event loop is running in this thread;
    inside a running loop ``asyncio.run`` is unavailable, so threads are used.
    """
    cfg_policy = DEFAULT_IMAGE_POLICY if policy is None else policy
    try:
        rule_strategy = EnumFetchStrategy(cfg_policy.rule_strategy)
    except ValueError as e:
        raise ValueError(
            f"Unknown image fetch strategy: {cfg_policy.rule_strategy!r}"
        ) from e

    if rule_strategy is EnumFetchStrategy.AUTO:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            rule_strategy = EnumFetchStrategy.TASKGROUP
        else:
            rule_strategy = EnumFetchStrategy.THREADPOOL

    if rule_strategy is EnumFetchStrategy.TASKGROUP:
        return TaskGroupFetchStrategy(cfg_policy)
    return ThreadPoolFetchStrategy(cfg_policy)


# #endregion
################################################################################
