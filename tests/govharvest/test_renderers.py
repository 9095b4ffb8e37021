"""Tests for listing page renderers."""

import pytest
from selenium.common.exceptions import (
    NoSuchElementException,
    StaleElementReferenceException,
    WebDriverException,
)
from selenium.webdriver.common.by import By

from src.govharvest.errors import ConfigurationError, FetchError
from src.govharvest.models import PhaseStats
from src.govharvest.renderers import BrowserRenderer, FileRenderer, HttpRenderer


class FakeElement:
    def __init__(self, driver, generation, on_click=None):
        self.driver = driver
        self.generation = generation
        self.on_click = on_click

    def is_enabled(self):
        if self.driver.generation != self.generation:
            raise StaleElementReferenceException("element is stale")
        return True

    def click(self):
        self.on_click()


class FakeDriver:
    """Minimal webdriver serving numbered listing pages."""

    def __init__(self, pages, failing_gets=0):
        self.pages = pages
        self.failing_gets = failing_gets
        self.current = None
        self.generation = 0
        self.get_calls = []
        self.quit_called = False
        self.timeout = None

    def set_page_load_timeout(self, timeout):
        self.timeout = timeout

    def get(self, url):
        self.get_calls.append(url)
        if self.failing_gets:
            self.failing_gets -= 1
            raise WebDriverException("net::ERR_CONNECTION_RESET")
        self._show(1)

    def _show(self, page):
        self.current = page
        self.generation += 1

    def find_element(self, by, value):
        if self.current is None:
            raise NoSuchElementException(value)
        return FakeElement(self, self.generation)

    def find_elements(self, by, value):
        for page in self.pages:
            if page != self.current and value == f"a[href*='Page{page}']":
                return [FakeElement(self, self.generation, on_click=lambda page=page: self._show(page))]
        return []

    @property
    def page_source(self):
        return self.pages[self.current]

    def quit(self):
        self.quit_called = True


def make_browser_renderer(driver, **kwargs):
    return BrowserRenderer(
        "https://vbpl.vn/pages/vbpq-timkiem.aspx",
        wait_selector="table.search-result",
        page_link=(By.CSS_SELECTOR, "a[href*='Page{page}']"),
        driver_factory=lambda: driver,
        retry_pause=0,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_browser_renderer_walks_pages_by_clicking_links():
    driver = FakeDriver({1: "<p>one</p>", 2: "<p>two</p>", 3: "<p>three</p>"})
    renderer = make_browser_renderer(driver, page_load_timeout=30)

    assert await renderer.render(1) == "<p>one</p>"
    assert await renderer.render(2) == "<p>two</p>"
    assert await renderer.render(3) == "<p>three</p>"
    assert await renderer.render(4) is None

    assert driver.get_calls == ["https://vbpl.vn/pages/vbpq-timkiem.aspx"]
    assert driver.timeout == 30

    await renderer.close()
    assert driver.quit_called


@pytest.mark.asyncio
async def test_browser_renderer_retries_navigation():
    driver = FakeDriver({1: "<p>one</p>"}, failing_gets=2)
    renderer = make_browser_renderer(driver, navigation_attempts=3)
    stats = PhaseStats(phase="list")

    html = await renderer.render(1, stats=stats)

    assert html == "<p>one</p>"
    assert len(driver.get_calls) == 3
    assert stats.http_requests == 3
    assert stats.retry_attempts == 2


@pytest.mark.asyncio
async def test_browser_renderer_gives_up_after_all_attempts():
    driver = FakeDriver({1: "<p>one</p>"}, failing_gets=5)
    renderer = make_browser_renderer(driver, navigation_attempts=2)

    with pytest.raises(FetchError) as excinfo:
        await renderer.render(1)

    assert excinfo.value.page_index == 1
    assert isinstance(excinfo.value.cause, WebDriverException)


@pytest.mark.asyncio
async def test_file_renderer_reads_saved_pages(tmp_path):
    (tmp_path / "page_1.html").write_text("<table>1</table>", encoding="utf-8")
    renderer = FileRenderer(tmp_path)

    assert await renderer.render(1) == "<table>1</table>"
    assert await renderer.render(2) is None


@pytest.mark.asyncio
async def test_file_renderer_missing_directory_is_configuration_error(tmp_path):
    renderer = FileRenderer(tmp_path / "absent", pattern="listing-{page}.htm")

    assert renderer.path_for(3).name == "listing-3.htm"
    with pytest.raises(ConfigurationError):
        await renderer.render(1)


@pytest.mark.asyncio
async def test_http_renderer_formats_page_url():
    requested = []

    class MockResponse:
        text = "<html>ok</html>"

    class MockHttpClient:
        async def get_async(self, url, *, headers=None, params=None, stats=None):
            requested.append(url)
            return MockResponse()

    renderer = HttpRenderer(MockHttpClient(), "https://mod.gov.vn/van-ban?page={page}")

    assert await renderer.render(4) == "<html>ok</html>"
    assert requested == ["https://mod.gov.vn/van-ban?page=4"]
