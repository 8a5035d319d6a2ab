"""Harvester defaults (endpoints, headers, variants, token families, paths).

Centralizes static defaults so the workflow modules carry no embedded magic
strings. Callers override paths and limits through ``CollectOptions`` /
``FetchConfig`` or the environment.
"""

from __future__ import annotations

from pathlib import Path

# Endpoints
SITE_ORIGIN = "https://tailwindcss.com"
SITE_URL = f"{SITE_ORIGIN}/plus"
LOGIN_URL = f"{SITE_URL}/login"
CATALOG_PREFIX = "/plus/ui-blocks/"
CATALOG_URL = f"{SITE_ORIGIN}{CATALOG_PREFIX}"
LANGUAGE_URL = f"{CATALOG_URL}language"
PRODUCT_INDEX_URLS = {
    "marketing": f"{CATALOG_URL}marketing",
    "application-ui": f"{CATALOG_URL}application-ui",
    "ecommerce": f"{CATALOG_URL}ecommerce",
}
ELEMENTS_DOCS_URL = f"{CATALOG_URL}documentation/llms.txt"
ELEMENTS_PACKAGE = "@tailwindplus/elements"
NPM_REGISTRY_URL = "https://registry.npmjs.org"
CATALYST_URL = f"{SITE_URL}/templates/catalyst/download"
KIT_METADATA_URLS = (f"{SITE_URL}/kits/{{slug}}", f"{SITE_URL}/templates/{{slug}}")

# Secret-manager item is matched against this website
SITE_IDENTIFIER = SITE_URL

# Cookies / headers
XSRF_COOKIE = "XSRF-TOKEN"
HDR_XSRF = "X-XSRF-TOKEN"
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36"
)
INERTIA_HEADERS = {
    "Accept": "text/html, application/xhtml+xml, application/json",
    "X-Inertia": "true",
    "X-Requested-With": "XMLHttpRequest",
}
HDR_INERTIA_VERSION = "X-Inertia-Version"

# Status codes
LOGIN_OK_STATUSES = frozenset({200, 302})
SWITCH_OK_STATUSES = frozenset({200, 303})
SESSION_EXPIRED_STATUSES = frozenset({401, 419})

# Variants
FRAMEWORKS = ("react", "vue", "html")
VERSIONS = ("v3", "v4")
SWITCH_ORDER = ("system", "light", "dark")
CANONICAL_STREAM = "react-v4"

# Bulk fetch
DEFAULT_CONCURRENCY = 10
OUTCOME_LOG_NAME = "batch-run.ndjson"

# Metadata extraction
ICON_PACKAGE = "@heroicons/react"
COLOR_PREFIXES = (
    "bg", "text", "border", "ring", "outline", "shadow", "from", "to", "via",
    "divide", "accent", "caret", "fill", "stroke", "decoration", "placeholder",
)
SPACING_PREFIXES = (
    "p", "px", "py", "pt", "pr", "pb", "pl",
    "m", "mx", "my", "mt", "mr", "mb", "ml",
    "gap", "gap-x", "gap-y", "space-x", "space-y",
    "inset", "top", "right", "bottom", "left",
)
FONT_SIZES = ("xs", "sm", "base", "lg", "xl", "2xl", "3xl", "4xl", "5xl", "6xl", "7xl", "8xl", "9xl")
FONT_WEIGHTS = ("thin", "extralight", "light", "normal", "medium", "semibold", "bold", "extrabold", "black")
METADATA_PROGRESS_EVERY = 50

# Environment overrides
ENV_CACHE_DIR = "HARVEST_CACHE_DIR"
ENV_DOCS_DIR = "HARVEST_DOCS_DIR"
ENV_CONCURRENCY = "HARVEST_CONCURRENCY"

# Paths (relative to the working directory unless overridden)
DEFAULT_CACHE_DIR = Path("cache")
DEFAULT_DOCS_DIR = Path("docs")
DEFAULT_CREDENTIALS_FILE = Path("twp-credentials.json")
COOKIE_FILE_NAME = "twp-cookies.txt"
PROGRESS_FILE_NAME = ".progress"

DATA_SOURCES = (
    "UI components (react/vue/html × {versions} × light/dark/system)",
    "Elements npm package (@tailwindplus/elements)",
    "Elements documentation (llms.txt)",
    "Catalyst UI Kit",
    "Template kits",
    "Tailwind CSS documentation (v3/v4)",
)
