"""Path, URL and checksum helpers shared by the ingestion pipeline."""

import base64
import hashlib
import logging
import re
from functools import lru_cache
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlparse

import pathspec

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {'md', 'mdx', 'mdoc', 'rst', 'txt', 'html', 'htm'}

APPROX_CHARS_PER_TOKEN = 3.8

_HTTP_URL_RE = re.compile(r'^https?://[a-zA-Z]+')
_EXTENSION_RE = re.compile(r'\.(\w*)$')
_SCHEMA_RE = re.compile(r'^(\w+:)?//')
_GITHUB_URL_RE = re.compile(r'^https://github.com/([a-zA-Z0-9\-_.]+)/([a-zA-Z0-9\-_.]+)')
_DOMAIN_RE = re.compile(
    r'^(((?!-))(xn--|_)?[a-z0-9-]{0,61}[a-z0-9]{1,1}\.)*(xn--)?'
    r'([a-z0-9][a-z0-9-]{0,60}|[a-z0-9-]{1,30}\.[a-z]{2,})$'
)


def create_checksum(content: str) -> str:
    """Base64-encoded SHA-256 digest of the content."""
    digest = hashlib.sha256(content.encode('utf-8')).digest()
    return base64.b64encode(digest).decode('ascii')


def approximated_token_count(text: str) -> int:
    # Slightly conservative, to stay within quota boundaries.
    return round(len(text) / APPROX_CHARS_PER_TOKEN)


def get_file_extension(path_or_name: str) -> Optional[str]:
    match = _EXTENSION_RE.search(path_or_name)
    return match.group(1) if match else None


def get_file_type(name: str) -> str:
    extension = get_file_extension(name)
    if extension in ('mdoc', 'mdx', 'md', 'rst'):
        return extension
    if extension in ('html', 'htm'):
        return 'html'
    return 'txt'


def is_supported_file_type(path_or_name: str) -> bool:
    extension = get_file_extension(path_or_name)
    if not extension:
        # No extension, e.g. a page URL
        return True
    return extension in SUPPORTED_EXTENSIONS


@lru_cache(maxsize=128)
def _compile_globs(globs: tuple) -> pathspec.PathSpec:
    return pathspec.PathSpec.from_lines("gitwildmatch", globs)


def matches_globs(path: str, globs: Sequence[str]) -> bool:
    if not globs:
        return False
    return _compile_globs(tuple(globs)).match_file(path)


def should_include_file_with_path(path: str,
                                  include_globs: Sequence[str],
                                  exclude_globs: Sequence[str],
                                  is_website_source: bool = False) -> bool:
    """Decide whether a candidate path is ingested.

    Dotfiles, dot-directories and unsupported extensions are always
    rejected. The path must then match an include glob and no exclude
    glob.
    """
    if is_website_source:
        # A root URL such as https://example.com must not be read as a
        # file with extension ".com".
        if not url_has_path(path) and not path.endswith('/'):
            path = path + '/'

    if path.startswith('.') or '/.' in path or not is_supported_file_type(path):
        return False

    if matches_globs(path, include_globs):
        return not matches_globs(path, exclude_globs)

    return False


def get_name_from_path(path: str) -> str:
    return path.split('/')[-1]


def get_name_from_url_or_path(url: str) -> str:
    """File name for a page; pages are always considered HTML files."""
    base_name = url.split('/')[-1]
    if base_name.endswith('.html'):
        return base_name
    elif base_name:
        return f"{base_name}.html"
    return 'index.html'


def get_path_from_github_archive_path(path: str) -> str:
    """Drop the top-level ``owner-repo-sha/`` folder of a GitHub archive entry."""
    return '/'.join(path.split('/')[1:])


def remove_schema(url: str) -> str:
    return _SCHEMA_RE.sub('', url)


def get_url_hostname(url: str) -> str:
    return remove_schema(url).split('/')[0]


def get_schema(url: str) -> str:
    return url.split('://')[0]


def to_normalized_origin(url: str, use_insecure_schema: bool = False) -> str:
    if _HTTP_URL_RE.match(url):
        return f"{get_schema(url)}://{get_url_hostname(url)}"
    return f"http{'' if use_insecure_schema else 's'}://{get_url_hostname(url)}"


def to_normalized_url(url: str, use_insecure_schema: bool = False) -> str:
    """Add a schema, drop port, query parameters and trailing slashes."""
    if not url.startswith('http://') and not url.startswith('https://'):
        url = ('http://' if use_insecure_schema else 'https://') + url

    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError:
        return url
    if not hostname:
        return url
    return f"{parsed.scheme}://{hostname}{parsed.path}".rstrip('/')


def get_url_path(url: str) -> Optional[str]:
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return parsed.path or '/'


def url_has_path(url: str) -> bool:
    path = get_url_path(url)
    return bool(path) and path != '/'


def is_href_from_base_url(base_url: str, href: str) -> bool:
    """Whether a link found on a page belongs under ``base_url``.

    ``base_url`` is expected in normalized form (see ``to_normalized_url``).
    Given https://example.com/docs: https://acme.com is not,
    https://example.com/docs/welcome is, /blog is not, /docs/welcome is,
    and relative links such as ``welcome`` are. ``mailto:``, ``tel:`` and
    other scheme-prefixed links are not.
    """
    if _HTTP_URL_RE.match(href):
        return to_normalized_url(href).startswith(base_url)
    elif href.startswith('/'):
        base_path = get_url_path(base_url) or '/'
        return href.startswith(base_path)
    return ':' not in href


def complete_href_with_base_url(base_url: str, href: str) -> str:
    if href.startswith('/'):
        return f"{to_normalized_origin(base_url)}{href}"
    elif _HTTP_URL_RE.match(href):
        return href
    return f"{base_url}/{href}"


def parse_github_url(url: str) -> Optional[Dict[str, str]]:
    match = _GITHUB_URL_RE.match(url)
    if match:
        return {'owner': match.group(1), 'repo': match.group(2)}
    return None


def get_github_owner_repo_string(url: str) -> Optional[str]:
    info = parse_github_url(url)
    if not info:
        return None
    return f"{info['owner']}/{info['repo']}"


def is_valid_domain(domain: str) -> bool:
    return bool(_DOMAIN_RE.match(domain))


def truncate(text: str, max_length: int) -> str:
    if len(text) > max_length:
        return text[:max_length] + '...'
    return text


def pluralize(value: int, singular: str, plural: str) -> str:
    return f"{value} {singular if value == 1 else plural}"


def unique(items: List[str]) -> List[str]:
    """Order-preserving de-duplication."""
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result
