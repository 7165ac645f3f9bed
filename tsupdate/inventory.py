import json
import os
from pathlib import Path
from typing import Iterable, Iterator, List, Union

import requests

from tsupdate.logger import get_logger
from tsupdate.manifest import format_line, parse_line
from tsupdate.models import ManifestFetchError, Target, UpdateItem
from tsupdate.utils import join_url

logger = get_logger()


def iter_inventory(lines: Iterable[str], target: Target) -> Iterator[UpdateItem]:
    """Yield the items of a manifest that apply to the target, in line order."""
    for line in lines:
        item = parse_line(line, target.level, target.version, target.arch)
        if item is not None:
            yield item


def load_local_inventory(root: Union[str, Path], manifest_name: str, target: Target) -> List[UpdateItem]:
    """Read the local manifest.

    A missing or unreadable manifest gives an empty inventory; on a
    first run there is simply no history yet.
    """
    manifest_path = Path(root) / manifest_name
    if not manifest_path.exists():
        logger.info(json.dumps({
            "event": "local_manifest_missing",
            "path": str(manifest_path)
        }))
        return []

    try:
        with manifest_path.open('r', encoding='utf-8', errors='replace') as f:
            items = list(iter_inventory(f, target))
    except OSError as e:
        logger.warning(json.dumps({
            "event": "local_manifest_unreadable",
            "path": str(manifest_path),
            "error": str(e)
        }))
        return []

    logger.info(json.dumps({
        "event": "local_manifest_loaded",
        "path": str(manifest_path),
        "items": len(items)
    }))
    return items


def load_remote_inventory(
    session: requests.Session,
    site_url: str,
    manifest_name: str,
    target: Target,
    timeout: float = 60
) -> List[UpdateItem]:
    """Fetch and parse the manifest published on the site.

    Raises:
        ManifestFetchError: on a malformed URL, network error, bad HTTP
            status or an error while reading the body
    """
    url = join_url(site_url, manifest_name)
    resp = None
    try:
        resp = session.get(url, stream=True, timeout=timeout)
        resp.raise_for_status()
        # manifests are UTF-8 whatever charset the server advertises
        resp.encoding = 'utf-8'
        items = list(iter_inventory(resp.iter_lines(decode_unicode=True), target))
    except requests.RequestException as e:
        raise ManifestFetchError(f"Failed to fetch remote manifest {url}: {e}") from e
    finally:
        if resp is not None:
            resp.close()

    logger.info(json.dumps({
        "event": "remote_manifest_loaded",
        "url": url,
        "items": len(items)
    }))
    return items


def find_missing(local: List[UpdateItem], remote: List[UpdateItem]) -> List[UpdateItem]:
    """Return the remote items that have no same item locally, in remote order."""
    known = {item.key() for item in local}
    return [item for item in remote if item.key() not in known]


def _ends_without_newline(path: Path) -> bool:
    if not path.is_file():
        return False
    with path.open('rb') as f:
        f.seek(0, os.SEEK_END)
        if f.tell() == 0:
            return False
        f.seek(-1, os.SEEK_END)
        return f.read(1) != b'\n'


def append_entries(
    root: Union[str, Path],
    manifest_name: str,
    items: Iterable[UpdateItem],
    target: Target
) -> int:
    """Append verified items to the local manifest.

    Existing lines are never rewritten. Items that aren't verified are
    skipped.

    Returns:
        Number of lines written, 0 if the manifest couldn't be opened
    """
    manifest_path = Path(root) / manifest_name
    verified = [item for item in items if item.verified]
    if not verified:
        return 0

    written = 0
    try:
        manifest_path.parent.mkdir(parents=True, exist_ok=True)
        needs_newline = _ends_without_newline(manifest_path)
        with manifest_path.open('a', encoding='utf-8', newline='\n') as f:
            if needs_newline:
                f.write('\n')
            for item in verified:
                f.write(format_line(item, target))
                written += 1
    except OSError as e:
        logger.error(json.dumps({
            "event": "manifest_update_failed",
            "path": str(manifest_path),
            "written": written,
            "error": str(e)
        }))
        return written

    logger.info(json.dumps({
        "event": "manifest_updated",
        "path": str(manifest_path),
        "added": written
    }))
    return written


def ensure_tag_file(root: Union[str, Path], tag_name: str) -> bool:
    """Create the empty tag file if it doesn't exist yet."""
    tag_path = Path(root) / tag_name
    if tag_path.exists():
        return True
    try:
        tag_path.parent.mkdir(parents=True, exist_ok=True)
        tag_path.touch()
    except OSError as e:
        logger.error(json.dumps({
            "event": "tag_file_failed",
            "path": str(tag_path),
            "error": str(e)
        }))
        return False
    logger.info(json.dumps({"event": "tag_file_created", "path": str(tag_path)}))
    return True
