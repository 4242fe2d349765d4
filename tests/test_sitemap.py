"""Tests for sitemap lastmod stamping."""
import re
from datetime import date

from freezegun import freeze_time

from site_build import stamp_sitemap

SITEMAP = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://example.com/</loc><lastmod>2023-01-01</lastmod></url>
  <url><loc>https://example.com/privacy.html</loc><lastmod></lastmod></url>
  <url>
    <loc>https://example.com/about.html</loc>
    <lastmod>
      2022-12-31
    </lastmod>
  </url>
</urlset>
"""


def test_every_lastmod_gets_today(settings):
    settings.output_dir.mkdir()
    path = settings.output_dir / "sitemap.xml"
    path.write_text(SITEMAP)

    assert stamp_sitemap(settings, date(2026, 3, 5)) == 3

    out = path.read_text()
    assert re.findall(r"<lastmod>(.*?)</lastmod>", out, re.S) == ["2026-03-05"] * 3
    strip = re.compile(r"<lastmod>.*?</lastmod>", re.S)
    assert strip.sub("", out) == strip.sub("", SITEMAP)


@freeze_time("2026-10-18 23:59:00")
def test_defaults_to_utc_today(settings):
    settings.output_dir.mkdir()
    path = settings.output_dir / "sitemap.xml"
    path.write_text("<lastmod>x</lastmod>")
    stamp_sitemap(settings)
    assert path.read_text() == "<lastmod>2026-10-18</lastmod>"


def test_missing_sitemap_is_a_noop(settings):
    settings.output_dir.mkdir()
    assert stamp_sitemap(settings) == 0
    assert not (settings.output_dir / "sitemap.xml").exists()


def test_crlf_line_endings_survive(settings):
    settings.output_dir.mkdir()
    path = settings.output_dir / "sitemap.xml"
    path.write_bytes(b"<urlset>\r\n<lastmod>x</lastmod>\r\n</urlset>\r\n")
    stamp_sitemap(settings, date(2026, 1, 2))
    assert path.read_bytes() == b"<urlset>\r\n<lastmod>2026-01-02</lastmod>\r\n</urlset>\r\n"
