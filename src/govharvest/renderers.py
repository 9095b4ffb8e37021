"""Page renderers: turn a listing page index into an HTML document.

Sources whose listing is an HTML table use a renderer instead of talking to
the network directly. ``HttpRenderer`` fetches a URL template, ``FileRenderer``
reads pages saved from a browser session, and ``BrowserRenderer`` drives a
real browser through selenium for listings paginated by client-side postbacks.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Tuple

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.common.by import By
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait

from .errors import ConfigurationError, FetchError
from .http_client import HTTPClient
from .logging_config import get_logger
from .models import PhaseStats

logger = get_logger("renderers")

Locator = Tuple[str, str]
DriverFactory = Callable[[], Any]


class Renderer(Protocol):
    """Anything that can produce the HTML of one listing page."""

    async def render(self, page_index: int, stats: Optional[PhaseStats] = None) -> Optional[str]:
        """Return the page HTML, or ``None`` when the page does not exist."""
        ...

    async def close(self) -> None:
        ...


class HttpRenderer:
    """Renders a page by GETting ``url_template.format(page=page_index)``."""

    def __init__(self, http_client: HTTPClient, url_template: str) -> None:
        self.http_client = http_client
        self.url_template = url_template

    async def render(self, page_index: int, stats: Optional[PhaseStats] = None) -> Optional[str]:
        response = await self.http_client.get_async(self.url_template.format(page=page_index), stats=stats)
        return response.text

    async def close(self) -> None:
        return None


class FileRenderer:
    """Reads listing pages previously saved as ``<directory>/<pattern>``."""

    def __init__(self, directory: Path, pattern: str = "page_{page}.html") -> None:
        self.directory = Path(directory)
        self.pattern = pattern

    def path_for(self, page_index: int) -> Path:
        return self.directory / self.pattern.format(page=page_index)

    async def render(self, page_index: int, stats: Optional[PhaseStats] = None) -> Optional[str]:
        if not self.directory.is_dir():
            raise ConfigurationError(f"Saved pages directory not found: {self.directory}")
        path = self.path_for(page_index)
        if not path.exists():
            logger.info(f"No saved page {page_index} at {path}")
            return None
        with open(path, "r", encoding="utf-8") as handle:
            return handle.read()

    async def close(self) -> None:
        return None


def default_chrome_driver() -> webdriver.Chrome:
    chrome_options = Options()
    chrome_options.add_argument("--headless=new")
    chrome_options.add_argument("--no-sandbox")
    chrome_options.add_argument("--disable-dev-shm-usage")
    chrome_options.add_argument("--disable-gpu")
    chrome_options.add_argument("--window-size=1920,1080")
    return webdriver.Chrome(options=chrome_options)


class BrowserRenderer:
    """Drives a selenium browser through a listing paginated in the page.

    The first page is loaded by navigating to ``start_url``; every later page
    is reached by clicking the pagination link matched by
    ``page_link.format(page=page_index)``. Navigation is attempted
    ``navigation_attempts`` times with ``retry_pause`` seconds in between.
    Blocking webdriver calls run in a worker thread.

    Args:
        start_url: Listing URL of the first page
        wait_selector: CSS selector that is present once the listing rendered
        page_link: ``(By, template)`` locator of the link to a numbered page
        driver_factory: Returns a fresh webdriver (headless Chrome by default)
    """

    def __init__(
        self,
        start_url: str,
        *,
        wait_selector: str,
        page_link: Locator,
        first_page_index: int = 1,
        driver_factory: Optional[DriverFactory] = None,
        page_load_timeout: float = 60.0,
        wait_timeout: float = 15.0,
        navigation_attempts: int = 3,
        retry_pause: float = 5.0,
    ) -> None:
        self.start_url = start_url
        self.wait_selector = wait_selector
        self.page_link = page_link
        self.first_page_index = first_page_index
        self.driver_factory = driver_factory or default_chrome_driver
        self.page_load_timeout = page_load_timeout
        self.wait_timeout = wait_timeout
        self.navigation_attempts = navigation_attempts
        self.retry_pause = retry_pause
        self._driver: Optional[Any] = None
        self._current_page: Optional[int] = None

    async def render(self, page_index: int, stats: Optional[PhaseStats] = None) -> Optional[str]:
        if self._driver is None:
            self._driver = await asyncio.to_thread(self.driver_factory)
            self._driver.set_page_load_timeout(self.page_load_timeout)

        if self._current_page is None or page_index == self.first_page_index:
            await self._navigate(page_index, stats)
        elif page_index != self._current_page:
            clicked = await asyncio.to_thread(self._click_page_link, page_index)
            if not clicked:
                logger.info(f"No link to page {page_index}, listing exhausted")
                return None

        self._current_page = page_index
        return self._driver.page_source

    async def close(self) -> None:
        if self._driver is not None:
            driver, self._driver = self._driver, None
            self._current_page = None
            await asyncio.to_thread(driver.quit)

    async def _navigate(self, page_index: int, stats: Optional[PhaseStats]) -> None:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.navigation_attempts + 1):
            if stats:
                stats.http_requests += 1
            try:
                logger.info(f"Navigating to {self.start_url} (attempt {attempt}/{self.navigation_attempts})")
                await asyncio.to_thread(self._load_start_page)
                return
            except WebDriverException as exc:
                last_error = exc
                logger.warning(f"Navigation attempt {attempt} failed: {exc.msg or type(exc).__name__}")
                if attempt < self.navigation_attempts:
                    if stats:
                        stats.retry_attempts += 1
                    await asyncio.sleep(self.retry_pause)

        raise FetchError(
            page_index,
            f"Failed to load {self.start_url} after {self.navigation_attempts} attempts",
            cause=last_error,
        )

    def _load_start_page(self) -> None:
        self._driver.get(self.start_url)
        self._wait_for_listing()

    def _wait_for_listing(self) -> None:
        WebDriverWait(self._driver, self.wait_timeout).until(
            EC.presence_of_element_located((By.CSS_SELECTOR, self.wait_selector))
        )

    def _click_page_link(self, page_index: int) -> bool:
        by, template = self.page_link
        links = self._driver.find_elements(by, template.format(page=page_index))
        if not links:
            return False

        try:
            listing = self._driver.find_element(By.CSS_SELECTOR, self.wait_selector)
            links[0].click()
            WebDriverWait(self._driver, self.wait_timeout).until(EC.staleness_of(listing))
            self._wait_for_listing()
        except TimeoutException as exc:
            raise FetchError(page_index, f"Page {page_index} did not render in time", cause=exc) from exc
        except WebDriverException as exc:
            raise FetchError(page_index, f"Navigation to page {page_index} failed: {exc.msg}", cause=exc) from exc
        return True
