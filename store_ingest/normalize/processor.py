"""Canonicalize raw price strings and product URLs."""

import logging
import re
from decimal import Decimal, InvalidOperation
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

_NUMERIC_RUN = re.compile(r"[\d.,]+")
_SEPARATORS = re.compile(r"[.,]")

# Host labels that never carry the brand name
_HOST_PREFIXES = {"www", "eu", "us", "uk", "shop", "store"}

# Collection handles that map onto a generic bucket
_COLLECTION_ALIASES = {
    "new arrivals": "new",
    "new in": "new",
}

PLACEHOLDER_CATEGORIES = frozenset({"new", "all", "general"})

COLOR_MODIFIERS = frozenset({"light", "dark", "pale", "washed", "faded", "heather", "deep", "bright", "off"})


def normalize_price(value) -> Decimal | None:
    """
    Canonicalize a price to a two-place decimal.

    Strings keep only digits and separators from the first numeric run.
    When more than one separator remains the last one is the decimal point,
    so both "1,234.50" and "1.234,50" become 1234.50 and "49,00" becomes 49.00.

    Returns:
        Decimal quantized to cents, or None when nothing numeric is found
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return None
        if not amount.is_finite():
            return None
        return amount.quantize(CENTS)

    text = str(value)
    run = next(
        (m.group(0) for m in _NUMERIC_RUN.finditer(text) if any(c.isdigit() for c in m.group(0))),
        None,
    )
    if run is None:
        return None

    run = run.strip(".,")
    separators = list(_SEPARATORS.finditer(run))
    if separators:
        last = separators[-1].start()
        whole = re.sub(r"\D", "", run[:last]) or "0"
        fraction = re.sub(r"\D", "", run[last + 1:])
        digits = f"{whole}.{fraction}" if fraction else whole
    else:
        digits = run

    try:
        return Decimal(digits).quantize(CENTS)
    except InvalidOperation:
        logger.debug(f"Could not parse price from {value!r}")
        return None


def normalize_url(url: str) -> str:
    """
    Canonical identity form of a product URL.

    https scheme, lowercase host without "www.", no query or fragment and
    no single trailing slash (the bare root stays "/").
    Malformed URLs (bad port, unbalanced IPv6 brackets) normalize to "".
    """
    url = (url or "").strip()
    if not url:
        return ""
    if url.startswith("//"):
        url = f"https:{url}"
    elif "://" not in url:
        url = f"https://{url}"

    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        logger.debug(f"Malformed URL {url!r}")
        return ""
    host = (parts.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    if port and port not in (80, 443):
        host = f"{host}:{port}"

    path = parts.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]

    return urlunsplit(("https", host, path, "", ""))


def url_host(url: str) -> str:
    """Lowercase host of a URL without a leading "www."."""
    return urlsplit(normalize_url(url)).hostname or ""


def brand_from_url(url: str) -> str:
    """
    Derive a brand name from the store domain.

    https://eu.stussy.com/collections/tees -> "stussy"
    """
    labels = [label for label in url_host(url).split(".") if label]
    if not labels:
        return "unknown"

    while len(labels) > 2 and labels[0] in _HOST_PREFIXES:
        labels.pop(0)

    return labels[0]


def category_from_url(url: str) -> str | None:
    """
    Category implied by a /collections/<handle> URL.

    Hyphens become spaces, "new-arrivals" becomes "new" and any "all..."
    handle becomes "general".
    """
    path = urlsplit(normalize_url(url)).path
    match = re.search(r"/collections/([^/?#]+)", path)
    if not match:
        return None

    handle = match.group(1).lower().replace("-", " ").replace("_", " ").strip()
    if not handle:
        return None
    if handle == "all" or handle.startswith("all "):
        return "general"
    return _COLLECTION_ALIASES.get(handle, handle)


def slug_from_url(url: str) -> str:
    """Last non-empty path segment of a URL."""
    segments = [s for s in urlsplit(normalize_url(url)).path.split("/") if s]
    return segments[-1] if segments else ""


def title_from_slug(slug: str) -> str:
    """Turn "1140312-basic-tee-black" into "Basic Tee Black"."""
    tokens = [t for t in re.split(r"[-_]+", slug) if t]
    if len(tokens) > 1 and tokens[0].isdigit():
        tokens = tokens[1:]
    return " ".join(t.capitalize() for t in tokens)


def color_from_slug(url: str) -> str:
    """
    Guess a color from the tail of a product slug.

    "/products/1140312-basic-tee-light-blue" -> "light blue",
    "/products/basic-tee-black" -> "black". Numeric tails give no guess.
    """
    tokens = [t for t in re.split(r"[-_]+", slug_from_url(url).lower()) if t]
    if len(tokens) > 1 and tokens[0].isdigit():
        tokens = tokens[1:]
    if len(tokens) < 2 or tokens[-1].isdigit():
        return ""
    if len(tokens) > 2 and tokens[-2] in COLOR_MODIFIERS:
        return f"{tokens[-2]} {tokens[-1]}"
    return tokens[-1]


def clean_categories(categories) -> tuple[str, ...]:
    """
    Lowercase, trim and de-duplicate categories keeping first-seen order.

    The generic placeholders (new, all, general) are dropped whenever at
    least one specific category is present.
    """
    seen: list[str] = []
    for raw in categories:
        if not raw:
            continue
        name = re.sub(r"\s+", " ", str(raw)).strip().lower()
        if name and name not in seen:
            seen.append(name)

    specific = [c for c in seen if c not in PLACEHOLDER_CATEGORIES]
    return tuple(specific) if specific else tuple(seen)
