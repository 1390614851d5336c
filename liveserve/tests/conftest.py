"""Pytest configuration and fixtures for liveserve tests."""

import gzip
from pathlib import Path
from typing import Callable

import pytest
from fastapi import FastAPI
from fastapi.templating import Jinja2Templates

from liveserve.main import TEMPLATES_DIR, create_app
from liveserve.utils.utils import ServerConfig

INDEX_HTML = b"""<!DOCTYPE html>
<html>
<head><title>Home</title></head>
<body>
<h1>Hello</h1>
</body>
</html>
"""

DOCS_INDEX_HTML = b"<html><body><p>Docs</p></body></html>"

NO_BODY_HTML = b"<html><p>fragment without a closing tag</p></html>"

APP_JS = b"console.log('hello');\n"


@pytest.fixture
def site_dir(tmp_path: Path) -> Path:
    """Serving directory with pages, assets and folders with and without an index."""
    site = tmp_path / "site"
    site.mkdir()

    (site / "index.html").write_bytes(INDEX_HTML)
    (site / "fragment.html").write_bytes(NO_BODY_HTML)
    (site / "app.js").write_bytes(APP_JS)
    (site / "app.js.gz").write_bytes(gzip.compress(APP_JS))
    (site / "notes.unknownext").write_text("plain", encoding="utf-8")

    docs = site / "docs"
    docs.mkdir()
    (docs / "index.html").write_bytes(DOCS_INDEX_HTML)

    notes = site / "notes"
    notes.mkdir()
    (notes / "a.txt").write_text("a", encoding="utf-8")
    (notes / "b file.md").write_text("b", encoding="utf-8")
    (notes / "drafts").mkdir()

    return site


@pytest.fixture
def templates() -> Jinja2Templates:
    return Jinja2Templates(directory=str(TEMPLATES_DIR))


@pytest.fixture
def make_app(site_dir: Path) -> Callable[..., FastAPI]:
    """Factory building an app over site_dir; keyword arguments override ServerConfig fields."""

    def _make(**overrides) -> FastAPI:
        overrides.setdefault("directory", site_dir)
        return create_app(ServerConfig(**overrides))

    return _make
