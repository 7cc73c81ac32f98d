import base64
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from app.infrastructure.storage.artifact_store import ArtifactStore
from app.infrastructure.svg.fonts import FontMapping

PDF_BYTES = b"%PDF-1.4\n1 0 obj<<>>endobj\ntrailer<<>>\n%%EOF\n"
MARTEL_BYTES = b"\x00\x01\x00\x00fake-martel-truetype-data"
CARD_SVG = '<svg><style><![CDATA[]]></style><text font-family="Martel">{{NAME}}</text></svg>'


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePage:
    def __init__(self, dims=None, fail_on=None, pdf_bytes=PDF_BYTES):
        self.dims = dims
        self.fail_on = fail_on
        self.pdf_bytes = pdf_bytes
        self.calls = []
        self.pdf_kwargs = None

    def _step(self, name):
        self.calls.append(name)
        if self.fail_on == name:
            raise TimeoutError(f"{name} timed out")

    async def goto(self, url, **kwargs):
        self._step("goto")

    async def wait_for_selector(self, selector, **kwargs):
        self._step("wait_for_selector")

    async def evaluate(self, script):
        self._step("evaluate")
        return self.dims

    async def set_viewport_size(self, size):
        self._step("set_viewport_size")

    async def pdf(self, **kwargs):
        self._step("pdf")
        self.pdf_kwargs = kwargs
        return self.pdf_bytes


class FakeBrowser:
    def __init__(self, page: FakePage):
        self.page = page
        self.closed = False

    async def new_page(self):
        return self.page


class FakeBrowserFactory:
    """Stands in for chromium_browser and records every acquisition."""

    def __init__(self, page: FakePage):
        self.page = page
        self.browsers = []

    def __call__(self):
        @asynccontextmanager
        async def scope():
            browser = FakeBrowser(self.page)
            self.browsers.append(browser)
            try:
                yield browser
            finally:
                browser.closed = True
        return scope()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    return ArtifactStore(
        public_dir=tmp_path / "public" / "temp-svg",
        private_dir=tmp_path / "tmp" / "download-links",
        public_base_url="http://testserver/temp-svg",
        ttl=timedelta(hours=24),
        clock=clock,
    )


@pytest.fixture
def font_root(tmp_path):
    root = tmp_path / "public"
    (root / "fonts").mkdir(parents=True)
    (root / "fonts" / "Martel-Regular.ttf").write_bytes(MARTEL_BYTES)
    return root


@pytest.fixture
def font_map(font_root):
    css = '@font-face {\n  font-family: "Martel";\n  src: url("/fonts/Martel-Regular.ttf") format("truetype");\n}\n'
    return FontMapping.from_css(css, font_root)


@pytest.fixture
def martel_b64():
    return base64.b64encode(MARTEL_BYTES).decode("ascii")
