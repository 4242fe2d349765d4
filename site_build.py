#!/usr/bin/env python3
import argparse
import json
import logging
import os
import re
import shutil
import sys
import tomllib
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from string import Template
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union
from urllib.parse import urljoin, urlparse

import rcssmin
import requests
import rjsmin
import yaml
from bs4 import BeautifulSoup, Comment, Doctype, NavigableString, Tag
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# -------------------- Config --------------------

# Google Fonts serves degraded (non-woff2) CSS to clients it does not
# recognise as a modern browser.
DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Accept": "text/css,*/*;q=0.1",
    "Accept-Language": "en-US,en;q=0.7",
}

DEFAULT_IGNORES = ("node_modules", "dist", ".git", ".idea")

FONT_CSS_HOSTS = {"fonts.googleapis.com"}
FONT_FILE_HOSTS = {"fonts.gstatic.com"}
FONT_STYLESHEET_NAME = "fonts.css"

FONT_URL_RE = re.compile(
    r"url\(\s*([\"']?)"
    r"((?:https?:)?//[^)\"'\s]+?\.(?:woff2|woff|ttf|otf|eot)(?:[?#][^)\"'\s]*)?)"
    r"\1\s*\)",
    re.IGNORECASE,
)
FONT_FACE_RE = re.compile(r"@font-face\s*\{([^}]*)\}", re.IGNORECASE)
FONT_DISPLAY_RE = re.compile(r"font-display\s*:", re.IGNORECASE)
LASTMOD_RE = re.compile(r"<lastmod>.*?</lastmod>", re.DOTALL)
INVALID_FILENAME_CHARS_RE = re.compile(r'[<>:"/\\|?*]')
# ASCII whitespace only; U+00A0 from &nbsp; must survive minification
HTML_WS_RE = re.compile(r"[ \t\n\r\f]+")

FONT_MIME_TYPES = {
    ".woff2": "font/woff2",
    ".woff": "font/woff",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".eot": "application/vnd.ms-fontobject",
}

RAW_TEXT_TAGS = {"pre", "textarea", "script", "style"}
INLINE_TAGS = {
    "a",
    "abbr",
    "audio",
    "b",
    "bdi",
    "bdo",
    "br",
    "button",
    "canvas",
    "cite",
    "code",
    "data",
    "del",
    "dfn",
    "em",
    "i",
    "iframe",
    "img",
    "input",
    "ins",
    "kbd",
    "label",
    "mark",
    "meter",
    "object",
    "output",
    "picture",
    "progress",
    "q",
    "s",
    "samp",
    "select",
    "small",
    "span",
    "strong",
    "sub",
    "sup",
    "svg",
    "textarea",
    "time",
    "u",
    "var",
    "video",
    "wbr",
}

# (tag, attribute) -> default values that may be dropped
REDUNDANT_ATTRIBUTES = {
    ("script", "type"): {"text/javascript", "application/javascript"},
    ("style", "type"): {"text/css"},
    ("link", "type"): {"text/css"},
    ("form", "method"): {"get"},
    ("input", "type"): {"text"},
}
EMPTY_REMOVABLE_ATTRIBUTES = {"class", "id", "style", "title", "lang", "dir"}

# -------------------- Settings --------------------


class ServiceWorkerMode(str, Enum):
    PRECACHE = "precache"
    UNREGISTER = "unregister"


class BuildError(RuntimeError):
    pass


@dataclass
class Settings:
    source_dir: Path = Path(".")
    output_dir: Path = Path("dist")
    ignores: Set[str] = field(default_factory=lambda: set(DEFAULT_IGNORES))

    # Minify
    minify: bool = True
    js_entries: List[str] = field(default_factory=lambda: ["scripts.js"])
    css_entries: List[str] = field(default_factory=lambda: ["style.css"])
    remove_empty_attributes: bool = False

    # Fonts
    localize_fonts: bool = True
    font_entry_html: str = "index.html"
    fonts_dir: str = "assets/fonts"
    # kept between builds; defaults to <source>/<fonts_dir>
    font_cache: Optional[Path] = None
    timeout: float = 15.0
    retries: int = 2

    # Sitemap
    sitemap: str = "sitemap.xml"

    # Service worker
    sw_mode: ServiceWorkerMode = ServiceWorkerMode.PRECACHE
    sw_filename: str = "sw.js"
    cache_prefix: str = "pumalabs-static"
    version_file: str = "package.json"
    offline_fallback: str = "/index.html"

    report: Optional[Path] = None


# -------------------- Utils --------------------


def sanitize_filename(name: str) -> str:
    name = INVALID_FILENAME_CHARS_RE.sub("_", name)
    name = name or "file"
    if name.startswith("."):
        name = "_" + name[1:]
    return name[:200]


def build_session(
    retries: int = 2, headers: Optional[Dict[str, str]] = None
) -> requests.Session:
    s = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods={"GET"},
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(DEFAULT_HEADERS if headers is None else headers)
    return s


def ensure_parent_dir(p: Path) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)


def iter_files(root: Path, suffix: Optional[str] = None) -> Iterator[Path]:
    for p in sorted(root.rglob("*")):
        if not p.is_file():
            continue
        if suffix is not None and p.suffix.lower() != suffix:
            continue
        yield p


def to_url_path(path: Path, root: Path) -> str:
    return "/" + path.relative_to(root).as_posix()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# -------------------- HTML utils --------------------


def bs4_parse(html: str) -> BeautifulSoup:
    # html.parser keeps the document as authored (no implied <html>/<body>)
    return BeautifulSoup(html, "html.parser")


def serialize_html(soup: BeautifulSoup) -> str:
    # newer bs4 releases append "\n" to a doctype; write it by hand instead
    parts = []
    for node in soup.contents:
        if isinstance(node, Doctype):
            parts.append(f"<!DOCTYPE {node}>")
        elif isinstance(node, Tag):
            parts.append(node.decode(formatter="minimal"))
        else:
            parts.append(node.output_ready(formatter="minimal"))
    return "".join(parts)


def link_rels(tag: Tag) -> Set[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return {r.lower() for r in rel}


def href_host(href: Optional[str]) -> str:
    if not href:
        return ""
    return (urlparse(urljoin("https:", href.strip())).hostname or "").lower()


def is_font_stylesheet_link(tag: Tag) -> bool:
    if "stylesheet" not in link_rels(tag):
        return False
    return href_host(tag.get("href")) in FONT_CSS_HOSTS


def is_font_preconnect_link(tag: Tag) -> bool:
    rels = link_rels(tag)
    if not rels & {"preconnect", "dns-prefetch"} or "stylesheet" in rels:
        return False
    return href_host(tag.get("href")) in FONT_CSS_HOSTS | FONT_FILE_HOSTS


# -------------------- Mirror --------------------


def clean_output(settings: Settings) -> None:
    out = settings.output_dir.resolve()
    src = settings.source_dir.resolve()
    if out == src or out in src.parents:
        raise BuildError(f"refusing to clean {out}: it contains the source tree")
    if out.exists():
        shutil.rmtree(out)


def copy_tree(
    src_dir: Path, dest_dir: Path, ignores: Set[str], skip: Optional[Path] = None
) -> int:
    """Mirror ``src_dir`` into ``dest_dir``, skipping denylisted names at every level.

    Symlinks and special files are skipped. Returns the number of files copied.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    copied = 0
    with os.scandir(src_dir) as it:
        entries = sorted(it, key=lambda e: e.name)
    for ent in entries:
        if ent.name in ignores:
            continue
        src_path = Path(ent.path)
        if skip is not None and src_path.resolve() == skip:
            continue
        if ent.is_symlink():
            logging.debug("skip symlink: %s", src_path)
            continue
        if ent.is_dir():
            copied += copy_tree(src_path, dest_dir / ent.name, ignores, skip)
        elif ent.is_file():
            shutil.copyfile(src_path, dest_dir / ent.name)
            copied += 1
        else:
            logging.debug("skip special file: %s", src_path)
    return copied


def mirror_source(settings: Settings) -> int:
    clean_output(settings)
    return copy_tree(
        settings.source_dir,
        settings.output_dir,
        settings.ignores,
        skip=settings.output_dir.resolve(),
    )


# -------------------- Minify --------------------


def minify_js(text: str) -> str:
    return rjsmin.jsmin(text)


def minify_css(text: str) -> str:
    return rcssmin.cssmin(text)


def minify_assets(settings: Settings) -> List[Path]:
    written: List[Path] = []
    jobs = [(e, minify_js) for e in settings.js_entries] + [
        (e, minify_css) for e in settings.css_entries
    ]
    for entry, minifier in jobs:
        src = settings.source_dir / entry
        if not src.is_file():
            logging.debug("no entry %s, skipping", src)
            continue
        dest = settings.output_dir / entry
        ensure_parent_dir(dest)
        dest.write_text(minifier(src.read_text(encoding="utf-8")), encoding="utf-8")
        logging.info(
            "minified %s (%d -> %d bytes)",
            entry,
            src.stat().st_size,
            dest.stat().st_size,
        )
        written.append(dest)
    return written


def _in_raw_text(node: NavigableString) -> bool:
    return any(p.name in RAW_TEXT_TAGS for p in node.parents if isinstance(p, Tag))


def _is_inline(node) -> bool:
    if isinstance(node, Tag):
        return node.name in INLINE_TAGS
    if type(node) is NavigableString:
        return bool(node.strip(" \t\n\r\f"))
    return False


def _collapse_text(soup: BeautifulSoup) -> None:
    strings = [s for s in soup.find_all(string=True) if type(s) is NavigableString]
    for s in strings:
        if _in_raw_text(s):
            continue
        parent_inline = isinstance(s.parent, Tag) and s.parent.name in INLINE_TAGS
        prev, nxt = s.previous_sibling, s.next_sibling
        # a missing neighbour inside an inline parent still borders inline text
        keep_left = _is_inline(prev) if prev is not None else parent_inline
        keep_right = _is_inline(nxt) if nxt is not None else parent_inline
        text = HTML_WS_RE.sub(" ", str(s))
        if text == " ":
            if keep_left and keep_right:
                s.replace_with(" ")
            else:
                s.extract()
            continue
        if not keep_left:
            text = text.lstrip(" ")
        if not keep_right:
            text = text.rstrip(" ")
        if text != str(s):
            s.replace_with(text)


def _clean_attributes(tag: Tag, remove_empty: bool) -> None:
    attrs = tag.attrs
    for (tag_name, attr), defaults in REDUNDANT_ATTRIBUTES.items():
        if tag.name != tag_name or attr not in attrs:
            continue
        if tag_name == "link" and "stylesheet" not in link_rels(tag):
            continue
        if str(attrs[attr]).strip().lower() in defaults:
            del attrs[attr]
    if tag.name == "script" and "language" in attrs:
        del attrs["language"]
    if remove_empty:
        for attr in list(attrs):
            value = attrs[attr]
            empty = not value if isinstance(value, list) else not str(value).strip()
            if empty and (attr in EMPTY_REMOVABLE_ATTRIBUTES or attr.startswith("on")):
                del attrs[attr]
    if isinstance(attrs.get("class"), list):
        attrs["class"] = sorted(attrs["class"])
    if "style" in attrs and isinstance(attrs["style"], str):
        attrs["style"] = minify_css(attrs["style"])
    tag.attrs = dict(sorted(attrs.items()))


def minify_html(html: str, *, remove_empty_attributes: bool = False) -> str:
    soup = bs4_parse(html)
    for c in soup.find_all(string=lambda s: isinstance(s, Comment)):
        c.extract()
    # merge the strings a removed comment used to separate
    soup.smooth()
    for tag in soup.find_all(True):
        _clean_attributes(tag, remove_empty_attributes)
    for style in soup.find_all("style"):
        if style.string:
            style.string = minify_css(style.string)
    _collapse_text(soup)
    return serialize_html(soup)


def minify_html_files(settings: Settings) -> List[Path]:
    pages = list(iter_files(settings.output_dir, ".html"))
    for page in pages:
        src = page.read_text(encoding="utf-8")
        out = minify_html(src, remove_empty_attributes=settings.remove_empty_attributes)
        page.write_text(out, encoding="utf-8")
        logging.debug("minified %s", page)
    return pages


# -------------------- Fonts --------------------


@dataclass
class FontLocalization:
    stylesheet_url: str
    stylesheet_path: Path
    fonts: Dict[str, str] = field(default_factory=dict)  # remote -> local href
    downloaded: List[str] = field(default_factory=list)
    reused: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    pages: List[Path] = field(default_factory=list)


def find_font_stylesheet(html: str) -> Optional[str]:
    soup = bs4_parse(html)
    for link in soup.find_all("link", href=True):
        if is_font_stylesheet_link(link):
            return urljoin("https:", link["href"].strip())
    return None


def parse_font_urls(css_text: str) -> List[str]:
    return list(dict.fromkeys(m.group(2) for m in FONT_URL_RE.finditer(css_text)))


def font_filename(url: str) -> str:
    name = os.path.basename(urlparse(url).path.rstrip("/"))
    return sanitize_filename(name)


def fetch_text(session: requests.Session, url: str, timeout: float) -> Optional[str]:
    try:
        resp = session.get(url, timeout=timeout)
    except requests.RequestException as e:
        logging.warning("error fetching %s: %s", url, e)
        return None
    if resp.status_code >= 400:
        logging.warning("failed %s -> HTTP %s", url, resp.status_code)
        return None
    return resp.content.decode("utf-8", errors="replace")


def download_font(
    session: requests.Session, url: str, dest: Path, timeout: float
) -> bool:
    tmp = dest.with_name(dest.name + ".part")
    written = 0
    try:
        resp = session.get(url, timeout=timeout, stream=True)
        if resp.status_code >= 400:
            logging.warning("failed %s -> HTTP %s", url, resp.status_code)
            return False
        ensure_parent_dir(dest)
        with open(tmp, "wb") as f:
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                if not chunk:
                    continue
                written += len(chunk)
                f.write(chunk)
    except requests.RequestException as e:
        tmp.unlink(missing_ok=True)
        logging.warning("error downloading %s: %s", url, e)
        return False
    if written == 0:
        tmp.unlink(missing_ok=True)
        logging.warning("empty response %s", url)
        return False
    os.replace(tmp, dest)
    logging.info("downloaded font: %s -> %s", url, dest)
    return True


def ensure_font_display(css_text: str) -> str:
    def repl(m: re.Match) -> str:
        body = m.group(1)
        if FONT_DISPLAY_RE.search(body):
            return m.group(0)
        body = body.rstrip()
        if body and not body.endswith(";"):
            body += ";"
        return "@font-face {%s\n  font-display: swap;\n}" % body

    return FONT_FACE_RE.sub(repl, css_text)


def rewrite_font_css(css_text: str, mapping: Dict[str, str]) -> str:
    def repl(m: re.Match) -> str:
        q = m.group(1) or ""
        local = mapping.get(m.group(2))
        if local is None:
            return m.group(0)
        return f"url({q}{local}{q})"

    return ensure_font_display(FONT_URL_RE.sub(repl, css_text))


def _font_link_tags(
    soup: BeautifulSoup, preload_hrefs: List[str], css_href: str
) -> List[Tag]:
    tags = []
    for href in preload_hrefs:
        ext = os.path.splitext(urlparse(href).path)[1].lower()
        attrs = {"as": "font", "crossorigin": "", "href": href, "rel": "preload"}
        if ext in FONT_MIME_TYPES:
            attrs["type"] = FONT_MIME_TYPES[ext]
        tags.append(soup.new_tag("link", attrs=dict(sorted(attrs.items()))))
    tags.append(soup.new_tag("link", attrs={"href": css_href, "rel": "stylesheet"}))
    return tags


def rewrite_font_links(
    html: str, preload_hrefs: List[str], css_href: str
) -> Tuple[str, bool]:
    soup = bs4_parse(html)
    changed = False
    replaced = False
    for link in soup.find_all("link"):
        if is_font_stylesheet_link(link):
            if not replaced:
                for new in _font_link_tags(soup, preload_hrefs, css_href):
                    link.insert_before(new)
                replaced = True
            link.decompose()
            changed = True
        elif is_font_preconnect_link(link):
            link.decompose()
            changed = True
    if not changed:
        return html, False
    return serialize_html(soup), True


def font_cache_dir(settings: Settings) -> Path:
    """Directory vendored fonts are kept in between builds.

    The output tree is wiped on every build, so downloads are also copied
    here. By default that is the fonts directory of the source tree, which
    the mirror then carries into the next build's output.
    """
    if settings.font_cache is not None:
        return Path(settings.font_cache)
    return settings.source_dir / settings.fonts_dir


def localize_fonts(
    settings: Settings, session: Optional[requests.Session] = None
) -> Optional[FontLocalization]:
    out = settings.output_dir
    entry = out / settings.font_entry_html
    if not entry.is_file():
        logging.debug("no %s in output, skipping font localization", entry)
        return None
    css_url = find_font_stylesheet(entry.read_text(encoding="utf-8"))
    if css_url is None:
        logging.info("no remote font stylesheet in %s", settings.font_entry_html)
        return None

    if session is None:
        session = build_session(settings.retries)
    logging.info("GET %s", css_url)
    css_text = fetch_text(session, css_url, settings.timeout)
    if css_text is None:
        logging.warning("font localization aborted; keeping remote fonts")
        return None

    fonts_dir = out / settings.fonts_dir
    href_base = "/" + Path(settings.fonts_dir).as_posix().strip("/")
    result = FontLocalization(
        stylesheet_url=css_url, stylesheet_path=fonts_dir / FONT_STYLESHEET_NAME
    )
    font_urls = parse_font_urls(css_text)
    if not font_urls:
        logging.info("no font files referenced by %s", css_url)
        return result

    cache_dir = font_cache_dir(settings)
    for u in font_urls:
        name = font_filename(u)
        dest = fonts_dir / name
        cached = cache_dir / name
        # name-only cache key: an existing file is never re-validated
        if dest.exists():
            logging.debug("font already present: %s", dest)
            result.reused.append(u)
        elif cached.is_file():
            logging.debug("font from cache: %s", cached)
            ensure_parent_dir(dest)
            shutil.copyfile(cached, dest)
            result.reused.append(u)
        elif download_font(session, urljoin(css_url, u), dest, settings.timeout):
            if cached.resolve() != dest.resolve():
                ensure_parent_dir(cached)
                shutil.copyfile(dest, cached)
            result.downloaded.append(u)
        else:
            result.failed.append(u)
        result.fonts[u] = f"{href_base}/{name}"

    ensure_parent_dir(result.stylesheet_path)
    result.stylesheet_path.write_text(
        rewrite_font_css(css_text, result.fonts), encoding="utf-8"
    )
    logging.info("wrote %s", result.stylesheet_path)

    preloads = list(dict.fromkeys(result.fonts.values()))
    css_href = f"{href_base}/{FONT_STYLESHEET_NAME}"
    for page in iter_files(out, ".html"):
        html = page.read_text(encoding="utf-8")
        new_html, changed = rewrite_font_links(html, preloads, css_href)
        if changed:
            page.write_text(new_html, encoding="utf-8")
            result.pages.append(page)
    if result.failed:
        logging.warning(
            "%d font(s) could not be fetched and will 404: %s",
            len(result.failed),
            ", ".join(result.failed),
        )
    return result


# -------------------- Sitemap --------------------


def stamp_sitemap(settings: Settings, today: Optional[date] = None) -> int:
    path = settings.output_dir / settings.sitemap
    if not path.is_file():
        logging.debug("no sitemap at %s", path)
        return 0
    stamp = (today or utc_now().date()).isoformat()
    # bytes in, bytes out: line endings are left exactly as found
    text = path.read_bytes().decode("utf-8")
    new_text, n = LASTMOD_RE.subn(f"<lastmod>{stamp}</lastmod>", text)
    path.write_bytes(new_text.encode("utf-8"))
    return n


# -------------------- Service worker --------------------

PRECACHE_WORKER = Template(
    """const CACHE_NAME = $cache_name;
const ASSETS = $assets;

self.addEventListener('install', (event) => {
  event.waitUntil(
    caches.open(CACHE_NAME).then((cache) => cache.addAll(ASSETS))
  );
  self.skipWaiting();
});

self.addEventListener('activate', (event) => {
  event.waitUntil(
    caches.keys().then((keys) =>
      Promise.all(keys.filter((k) => k !== CACHE_NAME).map((k) => caches.delete(k)))
    )
  );
  self.clients.claim();
});

self.addEventListener('fetch', (event) => {
  const req = event.request;

  // Only handle GET and same-origin
  try {
    const url = new URL(req.url);
    if (req.method !== 'GET' || url.origin !== self.location.origin) return;
  } catch (_) {
    return;
  }

  event.respondWith(
    caches.match(req).then((cached) => {
      if (cached) return cached;
      return fetch(req)
        .then((res) => {
          const resClone = res.clone();
          if (res.ok) {
            caches.open(CACHE_NAME).then((cache) => cache.put(req, resClone)).catch(() => {});
          }
          return res;
        })
        .catch(() => {
          if (req.mode === 'navigate') {
            return caches.match($fallback);
          }
        });
    })
  );
});
"""
)

UNREGISTER_WORKER = """// Replaces a previously deployed caching worker: drops every cache,
// unregisters itself and reloads open tabs from the network.
self.addEventListener('install', () => {
  self.skipWaiting();
});

self.addEventListener('activate', (event) => {
  event.waitUntil(
    caches.keys()
      .then((keys) => Promise.all(keys.map((k) => caches.delete(k))))
      .then(() => self.registration.unregister())
      .then(() => self.clients.matchAll({ type: 'window' }))
      .then((clients) => {
        clients.forEach((client) => client.navigate(client.url));
      })
  );
});
"""


def read_project_version(path: Path) -> str:
    if not path.is_file():
        logging.warning("no %s, using version 0.0.0", path)
        return "0.0.0"
    if path.suffix.lower() == ".toml":
        with open(path, "rb") as f:
            data = tomllib.load(f)
        version = data.get("project", {}).get("version") or (
            data.get("tool", {}).get("poetry", {}).get("version")
        )
    else:
        data = json.loads(path.read_text(encoding="utf-8"))
        version = data.get("version") if isinstance(data, dict) else None
    if not version:
        logging.warning("no version in %s, using 0.0.0", path)
        return "0.0.0"
    return str(version)


def cache_epoch(prefix: str, version: str, now: Optional[datetime] = None) -> str:
    ts = (now or utc_now()).astimezone(timezone.utc).strftime("%Y%m%d%H%M")
    return f"{prefix}-{version}-{ts}"


def collect_asset_urls(output_dir: Path, sw_filename: str) -> List[str]:
    sw_url = "/" + Path(sw_filename).as_posix().lstrip("/")
    assets = {"/"}
    for p in iter_files(output_dir):
        url = to_url_path(p, output_dir)
        # dotfiles (.htaccess, ...) are usually not served and would fail addAll
        if url.startswith("/."):
            continue
        if url == sw_url:
            continue
        assets.add(url)
    return sorted(assets)


def render_precache_worker(cache_name: str, assets: List[str], fallback: str) -> str:
    return PRECACHE_WORKER.substitute(
        cache_name=json.dumps(cache_name),
        assets=json.dumps(assets, indent=2),
        fallback=json.dumps(fallback),
    )


def generate_service_worker(
    settings: Settings, version: str, now: Optional[datetime] = None
) -> Tuple[Path, Optional[str]]:
    path = settings.output_dir / settings.sw_filename
    ensure_parent_dir(path)
    if settings.sw_mode is ServiceWorkerMode.UNREGISTER:
        path.write_text(UNREGISTER_WORKER, encoding="utf-8")
        logging.info("wrote self-unregistering worker %s", path)
        return path, None
    cache_name = cache_epoch(settings.cache_prefix, version, now)
    assets = collect_asset_urls(settings.output_dir, settings.sw_filename)
    path.write_text(
        render_precache_worker(cache_name, assets, settings.offline_fallback),
        encoding="utf-8",
    )
    logging.info("wrote %s: %s, %d assets", path, cache_name, len(assets))
    return path, cache_name


# -------------------- Pipeline --------------------


@dataclass
class BuildReport:
    files_copied: int = 0
    minified: List[Path] = field(default_factory=list)
    html_pages: List[Path] = field(default_factory=list)
    fonts: Optional[FontLocalization] = None
    lastmod_updated: int = 0
    service_worker: Optional[Path] = None
    sw_mode: ServiceWorkerMode = ServiceWorkerMode.PRECACHE
    cache_name: Optional[str] = None

    def to_dict(self, root: Path) -> dict:
        def rel(p: Union[str, Path]) -> str:
            return Path(p).relative_to(root).as_posix()

        fonts = None
        if self.fonts is not None:
            fonts = {
                "stylesheet_url": self.fonts.stylesheet_url,
                "stylesheet": rel(self.fonts.stylesheet_path),
                "fonts": self.fonts.fonts,
                "downloaded": self.fonts.downloaded,
                "reused": self.fonts.reused,
                "failed": self.fonts.failed,
                "pages": [rel(p) for p in self.fonts.pages],
            }
        return {
            "created_utc": utc_now()
            .replace(microsecond=0)
            .isoformat()
            .replace("+00:00", "Z"),
            "files_copied": self.files_copied,
            "minified": [rel(p) for p in self.minified],
            "html_pages": [rel(p) for p in self.html_pages],
            "fonts": fonts,
            "lastmod_updated": self.lastmod_updated,
            "service_worker": rel(self.service_worker) if self.service_worker else None,
            "sw_mode": self.sw_mode.value,
            "cache_name": self.cache_name,
        }


def write_report(report: BuildReport, settings: Settings) -> None:
    path = Path(settings.report)
    ensure_parent_dir(path)
    data = report.to_dict(settings.output_dir)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def build_site(
    settings: Settings,
    session: Optional[requests.Session] = None,
    now: Optional[datetime] = None,
) -> BuildReport:
    report = BuildReport(sw_mode=settings.sw_mode)

    logging.info(
        "Cleaning and copying %s -> %s", settings.source_dir, settings.output_dir
    )
    report.files_copied = mirror_source(settings)

    if settings.minify:
        logging.info("Minifying CSS/JS...")
        report.minified = minify_assets(settings)
        logging.info("Minifying HTML...")
        report.html_pages = minify_html_files(settings)

    if settings.localize_fonts:
        logging.info("Localizing fonts...")
        report.fonts = localize_fonts(settings, session)

    logging.info("Updating sitemap lastmod...")
    report.lastmod_updated = stamp_sitemap(settings, (now or utc_now()).date())

    logging.info("Generating service worker (%s)...", settings.sw_mode.value)
    version = read_project_version(settings.source_dir / settings.version_file)
    report.service_worker, report.cache_name = generate_service_worker(
        settings, version, now
    )

    if settings.report:
        write_report(report, settings)
    logging.info("Build complete. Output: %s", settings.output_dir)
    return report


# -------------------- Config loader --------------------


def load_config_file(path: str) -> Dict[str, Union[str, int, float, bool, List[str]]]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        with open(p, "rb") as f:
            return tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise RuntimeError("Top-level YAML must be a mapping")
            return data
    else:
        raise RuntimeError("Unsupported config format. Use .toml or .yaml")


# -------------------- CLI --------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Build the static site into an output directory.",
        add_help=True,
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)

    p.add_argument("source", nargs="?", default=".", help="source directory")
    p.add_argument("--out", type=str, default="dist", help="output directory")
    p.add_argument(
        "--ignore",
        action="append",
        default=[],
        help="extra directory/file name to skip when copying",
    )
    p.add_argument("--verbose", action="store_true", help="debug logging")

    # minify
    p.add_argument("--no-minify", action="store_true", help="copy assets as-is")
    p.add_argument(
        "--remove-empty-attributes",
        action="store_true",
        help="drop empty class/id/style/... attributes from HTML",
    )

    # fonts
    p.add_argument(
        "--no-fonts", action="store_true", help="keep remote font stylesheet links"
    )
    p.add_argument(
        "--timeout", type=float, default=15.0, help="request timeout seconds"
    )
    p.add_argument("--retries", type=int, default=2, help="retries per request")
    p.add_argument(
        "--font-cache",
        type=str,
        default=None,
        help="directory downloaded fonts are kept in between builds "
        "(default: <source>/<fonts_dir>)",
    )

    # service worker
    p.add_argument(
        "--sw-mode",
        type=str,
        choices=[m.value for m in ServiceWorkerMode],
        default=ServiceWorkerMode.PRECACHE.value,
        help="precache: cache-first worker; unregister: self-destructing worker",
    )
    p.add_argument(
        "--cache-prefix", type=str, default="pumalabs-static", help="cache name prefix"
    )
    p.add_argument(
        "--version-file",
        type=str,
        default="package.json",
        help="package.json or pyproject.toml holding the version",
    )

    p.add_argument("--report", type=str, default=None, help="write a JSON build report")
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        if isinstance(cfg, dict):
            flat = dict(cfg)
            for g in (
                "build",
                "minify",
                "fonts",
                "sitemap",
                "service_worker",
                "general",
            ):
                if isinstance(cfg.get(g), dict):
                    flat.update(cfg[g])
            parser.set_defaults(**flat)
    args = parser.parse_args(argv)
    return args


def _as_list(value) -> List[str]:
    # config files may give a single name where a list is expected
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def settings_from_args(args: argparse.Namespace) -> Settings:
    ignores = set(_as_list(getattr(args, "ignores", None)) or DEFAULT_IGNORES)
    ignores.update(_as_list(args.ignore))
    settings = Settings(
        source_dir=Path(args.source),
        output_dir=Path(args.out),
        ignores=ignores,
        minify=getattr(args, "minify", True) and not args.no_minify,
        remove_empty_attributes=args.remove_empty_attributes,
        localize_fonts=getattr(args, "localize_fonts", True) and not args.no_fonts,
        timeout=max(1.0, args.timeout),
        retries=max(0, args.retries),
        sw_mode=ServiceWorkerMode(args.sw_mode),
        cache_prefix=args.cache_prefix,
        version_file=args.version_file,
        font_cache=Path(args.font_cache) if args.font_cache else None,
        report=Path(args.report) if args.report else None,
    )
    # file-only options without a CLI flag
    for name in (
        "js_entries",
        "css_entries",
        "font_entry_html",
        "fonts_dir",
        "sitemap",
        "sw_filename",
        "offline_fallback",
    ):
        value = getattr(args, name, None)
        if value is not None:
            setattr(settings, name, value)
    return settings


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    try:
        settings = settings_from_args(args)
        build_site(settings)
    except Exception as e:
        logging.debug("build failed", exc_info=True)
        print(f"Build failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
