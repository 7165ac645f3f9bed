import json
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

import requests
from tqdm import tqdm

from tsupdate.config import Credentials
from tsupdate.inventory import (
    append_entries,
    ensure_tag_file,
    find_missing,
    load_local_inventory,
    load_remote_inventory
)
from tsupdate.logger import get_logger
from tsupdate.models import DownloadStatus, ManifestFetchError, Target, UpdateItem
from tsupdate.utils import calculate_md5, item_path, item_url

REPORT_NAME = 'download_report.json'


class DownloadManager:
    """Synchronizes a local update folder with the files published on the site."""
    def __init__(
        self,
        credentials: Credentials,
        session: Optional[requests.Session] = None,
        timeout: float = 60,
        require_digest: bool = False,
        chunk_size: int = 1024 * 1024
    ):
        self.credentials = credentials
        self.timeout = timeout
        self.require_digest = require_digest
        self.chunk_size = chunk_size
        self.logger = get_logger()
        self.session = session or requests.Session()
        self.session.auth = credentials.auth
        self.download_results: List[DownloadStatus] = []
        self._item_status: Dict[int, DownloadStatus] = {}
        self._committed_digests: Dict[Path, Set[str]] = {}
        self.remote_manifest_error: Optional[str] = None
        self.missing_count = 0
        self.downloaded_count = 0
        self.committed_count = 0

    def load_inventories(self, root: Path, target: Target) -> List[UpdateItem]:
        """Load both manifests and return the remote items missing locally."""
        local = load_local_inventory(root, self.credentials.master_file, target)
        self._committed_digests = {}
        for item in local:
            if item.has_digest:
                self._committed_digests.setdefault(item_path(root, target, item), set()).add(item.digest)
        try:
            remote = load_remote_inventory(
                self.session,
                self.credentials.website,
                self.credentials.master_file,
                target,
                timeout=self.timeout
            )
        except ManifestFetchError as e:
            self.remote_manifest_error = str(e)
            self.logger.error(json.dumps({
                "event": "remote_manifest_failed",
                "error": str(e)
            }))
            remote = []

        missing = find_missing(local, remote)
        self.missing_count = len(missing)
        self.logger.info(json.dumps({
            "event": "reconciled",
            "local_items": len(local),
            "remote_items": len(remote),
            "missing": len(missing)
        }))
        return missing

    def download_item(self, item: UpdateItem, root: Path, target: Target) -> bool:
        """Download one item to its place under root.

        The body is streamed to a temporary file which replaces the
        destination only once fully written.
        """
        url = item_url(self.credentials.website, target, item)
        local_path = item_path(root, target, item)
        temp_path = local_path.with_name(local_path.name + '.part')
        written = 0
        resp = None

        try:
            resp = self.session.get(url, stream=True, timeout=self.timeout)
            resp.raise_for_status()

            total_size = int(resp.headers.get('content-length', 0)) or item.size
            local_path.parent.mkdir(parents=True, exist_ok=True)

            with temp_path.open('wb') as out_file, tqdm(
                desc=f"Downloading {item.filename}",
                total=total_size,
                unit='B',
                unit_scale=True,
                unit_divisor=1024,
                disable=not sys.stdout.isatty()
            ) as pbar:
                for data_chunk in resp.iter_content(chunk_size=self.chunk_size):
                    if data_chunk:
                        out_file.write(data_chunk)
                        written += len(data_chunk)
                        pbar.update(len(data_chunk))

            temp_path.replace(local_path)

        except (requests.RequestException, OSError) as e:
            self.logger.error(json.dumps({
                "event": "download_failed",
                "file": item.filename,
                "url": url,
                "path": str(local_path),
                "error": str(e)
            }))
            self._remove(temp_path)
            self._record(item, DownloadStatus(
                path=str(local_path),
                size=item.size,
                downloaded=0,
                status="failed",
                error=str(e)
            ))
            return False
        finally:
            if resp is not None:
                resp.close()

        item.downloaded = True
        self._record(item, DownloadStatus(
            path=str(local_path),
            size=item.size,
            downloaded=written,
            status="downloaded"
        ))
        self.logger.info(json.dumps({
            "event": "download_success",
            "file": item.filename,
            "path": str(local_path),
            "bytes": written
        }))
        return True

    def download_all(self, items: List[UpdateItem], root: Path, target: Target) -> int:
        """Download every item in turn; one failure doesn't stop the others."""
        count = 0
        for item in items:
            if self.download_item(item, root, target):
                count += 1
        return count

    def verify_item(
        self,
        item: UpdateItem,
        root: Path,
        target: Target,
        remove_rejected: bool = True
    ) -> bool:
        """Check a downloaded item against its declared MD5.

        A file that doesn't match is deleted so it can't be mistaken
        for a good copy later. Items without a declared digest are
        accepted as-is unless require_digest is set. With
        remove_rejected off the caller decides what happens to the file.
        """
        if not item.downloaded:
            return False

        local_path = item_path(root, target, item)
        status = self._item_status.get(id(item))

        if not item.has_digest:
            if self.require_digest:
                self.logger.warning(json.dumps({
                    "event": "digest_required",
                    "file": item.filename,
                    "path": str(local_path)
                }))
                if remove_rejected:
                    self._remove(local_path)
                self._set_status(status, "rejected", error="no digest declared")
                return False
            self.logger.warning(json.dumps({
                "event": "digest_missing",
                "file": item.filename,
                "path": str(local_path)
            }))
            item.verified = True
            self._set_status(status, "completed")
            return True

        try:
            checksum = calculate_md5(local_path, self.chunk_size)
        except OSError as e:
            self.logger.error(json.dumps({
                "event": "verify_failed",
                "file": item.filename,
                "path": str(local_path),
                "error": str(e)
            }))
            self._set_status(status, "failed", error=str(e))
            return False

        if checksum != item.digest.upper():
            self.logger.warning(json.dumps({
                "event": "checksum_mismatch",
                "file": item.filename,
                "path": str(local_path),
                "expected": item.digest,
                "actual": checksum
            }))
            if remove_rejected:
                self._remove(local_path)
            self._set_status(status, "corrupt", checksum=checksum, error="checksum mismatch")
            return False

        item.verified = True
        self._set_status(status, "completed", checksum=checksum)
        return True

    def verify_all(self, items: List[UpdateItem], root: Path, target: Target) -> int:
        """Verify every downloaded item.

        Items sharing a local path (a re-issued file whose stale line is
        still published) are checked together: the file is only removed
        when none of them accepts it and it isn't the copy already
        recorded in the local manifest.
        """
        by_path: Dict[Path, List[UpdateItem]] = {}
        for item in items:
            if item.downloaded:
                by_path.setdefault(item_path(root, target, item), []).append(item)

        count = 0
        for local_path, group in by_path.items():
            accepted = False
            for item in group:
                if self.verify_item(item, root, target, remove_rejected=False):
                    accepted = True
                    count += 1
            if accepted:
                continue
            if self._is_committed_copy(local_path):
                self.logger.info(json.dumps({
                    "event": "committed_copy_kept",
                    "path": str(local_path)
                }))
                continue
            self._remove(local_path)
        return count

    def list_missing(self, root: Union[str, Path], target: Target) -> List[UpdateItem]:
        """Log the items a sync would download, without downloading them."""
        missing = self.load_inventories(Path(root), target)
        self.logger.info(json.dumps({
            "event": "listing_missing",
            "items": [
                {"product": item.product, "filename": item.filename, "size": item.size}
                for item in missing
            ]
        }))
        return missing

    def generate_summary_report(self) -> Dict[str, Any]:
        """Generate a summary report of the sync."""
        def count(status: str) -> int:
            return sum(1 for r in self.download_results if r.status == status)

        return {
            "summary": {
                "missing": self.missing_count,
                "downloaded": self.downloaded_count,
                "verified": count("completed"),
                "committed": self.committed_count,
                "failed": count("failed"),
                "corrupt": count("corrupt"),
                "rejected": count("rejected"),
                "total_bytes_transferred": sum(r.downloaded for r in self.download_results),
                "remote_manifest_available": self.remote_manifest_error is None,
                "remote_manifest_error": self.remote_manifest_error,
                "timestamp": time.strftime("%Y-%m-%d %H:%M:%S")
            },
            "details": [r.__dict__ for r in self.download_results]
        }

    def sync(self, root: Union[str, Path], target: Target) -> Dict[str, Any]:
        """Run the whole pipeline for one target and return the summary report."""
        root_path = Path(root).resolve()
        self.download_results = []
        self._item_status = {}
        self.remote_manifest_error = None
        self.downloaded_count = 0
        self.committed_count = 0

        self.logger.info(json.dumps({
            "event": "sync_started",
            "site": self.credentials.website,
            "local_path": str(root_path),
            "version": target.version,
            "arch": target.arch.text,
            "access": target.level.text
        }))

        missing = self.load_inventories(root_path, target)
        self.downloaded_count = self.download_all(missing, root_path, target)
        self.verify_all(missing, root_path, target)
        self.committed_count = append_entries(root_path, self.credentials.master_file, missing, target)
        ensure_tag_file(root_path, self.credentials.tag_file)

        report = self.generate_summary_report()
        self.logger.info(json.dumps({"event": "sync_completed", "summary": report["summary"]}))

        report_path = root_path / REPORT_NAME
        try:
            with report_path.open('w', encoding='utf-8') as f:
                json.dump(report, f, indent=2)
        except OSError as e:
            self.logger.error(json.dumps({
                "event": "report_write_failed",
                "path": str(report_path),
                "error": str(e)
            }))
        return report

    def _record(self, item: UpdateItem, status: DownloadStatus) -> None:
        self.download_results.append(status)
        self._item_status[id(item)] = status

    def _is_committed_copy(self, local_path: Path) -> bool:
        digests = self._committed_digests.get(local_path)
        if not digests:
            return False
        try:
            return calculate_md5(local_path, self.chunk_size) in digests
        except OSError:
            return False

    @staticmethod
    def _set_status(
        status: Optional[DownloadStatus],
        value: str,
        checksum: str = "",
        error: str = ""
    ) -> None:
        if status is None:
            return
        status.status = value
        status.checksum = checksum
        status.error = error

    def _remove(self, path: Path) -> None:
        try:
            if path.exists():
                path.unlink()
        except OSError as unlink_error:
            self.logger.error(json.dumps({
                "event": "file_cleanup_error",
                "path": str(path),
                "error": str(unlink_error)
            }))
