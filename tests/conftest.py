"""Shared pytest fixtures for site build tests."""
import json
from pathlib import Path

import pytest
import requests

from site_build import Settings
from tests._fixtures.site import (
    CSS_URL,
    FONT_400,
    FONT_700,
    FONT_CSS,
    INDEX_HTML,
    SCRIPTS_JS,
    STYLE_CSS,
    FakeResponse,
    FakeSession,
)


@pytest.fixture
def font_routes():
    return {
        CSS_URL: FakeResponse(200, FONT_CSS),
        FONT_400: FakeResponse(200, b"wOF2-400" * 100),
        FONT_700: FakeResponse(200, b"wOF2-700" * 100),
    }


@pytest.fixture
def fake_session(font_routes):
    return FakeSession(font_routes)


@pytest.fixture
def offline_session():
    return FakeSession({CSS_URL: requests.ConnectionError("network down")})


@pytest.fixture
def site_src(tmp_path):
    """The example project: index.html with a Google Fonts link, style.css, scripts.js."""
    src = tmp_path / "site"
    src.mkdir()
    (src / "index.html").write_text(INDEX_HTML, encoding="utf-8")
    (src / "style.css").write_text(STYLE_CSS, encoding="utf-8")
    (src / "scripts.js").write_text(SCRIPTS_JS, encoding="utf-8")
    (src / "package.json").write_text(
        json.dumps({"name": "pumalabs", "version": "1.4.2"}), encoding="utf-8"
    )
    return src


@pytest.fixture
def settings(site_src, tmp_path):
    return Settings(source_dir=site_src, output_dir=tmp_path / "dist")


@pytest.fixture
def output_site(settings):
    """An output tree holding the example pages, ready for single-stage tests."""
    out = Path(settings.output_dir)
    out.mkdir(parents=True)
    (out / "index.html").write_text(INDEX_HTML, encoding="utf-8")
    (out / "about.html").write_text(INDEX_HTML.replace("Puma Labs", "About"), encoding="utf-8")
    (out / "plain.html").write_text("<p>No fonts here</p>", encoding="utf-8")
    return out
