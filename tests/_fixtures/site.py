"""Sample site content and a requests stand-in shared by the tests."""

CSS_URL = "https://fonts.googleapis.com/css2?family=Inter:wght@400;700&display=swap"
FONT_400 = "https://fonts.gstatic.com/s/inter/v13/inter-400.woff2"
FONT_700 = "https://fonts.gstatic.com/s/inter/v13/inter-700.woff2"

FONT_CSS = f"""/* latin */
@font-face {{
  font-family: 'Inter';
  font-style: normal;
  font-weight: 400;
  src: url({FONT_400}) format('woff2');
}}
/* latin */
@font-face {{
  font-family: 'Inter';
  font-style: normal;
  font-weight: 700;
  font-display: swap;
  src: url({FONT_700}) format('woff2');
}}
/* latin-ext, same file again */
@font-face {{
  font-family: 'Inter';
  font-style: normal;
  font-weight: 400;
  src: url({FONT_400}) format('woff2');
}}
"""

INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Puma Labs</title>
  <!-- fonts -->
  <link rel="preconnect" href="https://fonts.googleapis.com">
  <link rel="preconnect" href="https://fonts.gstatic.com" crossorigin>
  <link href="https://fonts.googleapis.com/css2?family=Inter:wght@400;700&amp;display=swap" rel="stylesheet">
  <link rel="stylesheet" href="/style.css">
  <script type="application/ld+json">{"@context": "https://schema.org",   "name": "Puma Labs"}</script>
</head>
<body>
  <p class="lead  intro">Hello   <b>world</b>!</p>
  <script src="/scripts.js"></script>
</body>
</html>
"""

STYLE_CSS = """/* Layout */
body {
    margin : 0;
    font-family : 'Inter', sans-serif;
}

.lead {
    color : #333333;
}
"""

SCRIPTS_JS = """// Navigation toggle
function toggleMenu(button) {
    // flip the expanded flag
    var expanded = button.getAttribute('aria-expanded') === 'true';
    button.setAttribute('aria-expanded', String(!expanded));
}

document.addEventListener('DOMContentLoaded', function () {
    var btn = document.querySelector('.menu');
    if (btn) {
        btn.addEventListener('click', function () { toggleMenu(btn); });
    }
});
"""


class FakeResponse:
    def __init__(self, status_code=200, body=b""):
        self.status_code = status_code
        self.content = body.encode("utf-8") if isinstance(body, str) else body

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]


class FakeSession:
    """Stands in for requests.Session; unknown URLs answer 404."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.headers = {}

    def get(self, url, timeout=None, stream=False):
        self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404)
        if isinstance(route, Exception):
            raise route
        return route


