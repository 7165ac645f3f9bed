import hashlib
from pathlib import Path
from urllib.parse import quote, urlparse

from tsupdate.models import Target, UpdateItem


def is_valid_site_url(url: str) -> bool:
    """Check that a site URL is an absolute http(s) URL with a host."""
    parsed = urlparse(url or "")
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def join_url(site_url: str, *segments: str) -> str:
    """Append percent-quoted path segments to the site URL."""
    base = site_url.rstrip('/')
    return '/'.join([base] + [quote(segment, safe='') for segment in segments])


def item_url(site_url: str, target: Target, item: UpdateItem) -> str:
    return join_url(site_url, target.version, target.arch.text, item.product, item.filename)


def item_path(root: Path, target: Target, item: UpdateItem) -> Path:
    return Path(root) / target.version / target.arch.text / item.product / item.filename


def calculate_md5(file_path: Path, chunk_size: int = 1024 * 1024) -> str:
    """Calculate the MD5 checksum of a file, uppercase hex."""
    md5 = hashlib.md5()
    with file_path.open('rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            md5.update(chunk)
    return md5.hexdigest().upper()
