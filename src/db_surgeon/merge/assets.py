"""Download asset files from the source site into the local assets tree.

The source serves every file at ``<base url>/<path>``; the same path
below the local assets directory is where the target expects it.
"""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from urllib.parse import quote

import requests

from db_surgeon.errors import AssetTransferError

logger = logging.getLogger(__name__)


class AssetTransfer:
    """Fetch asset bytes over HTTP and write them to disk.

    Args:
        base_url: URL the source serves asset paths under.
        directory: Local assets root.
        timeout: Per-request timeout in seconds.
        session: Optional ``requests.Session`` to reuse.
    """

    def __init__(
        self,
        base_url: str,
        directory: str | Path,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.directory = Path(directory)
        self.timeout = timeout
        self.session = session or requests.Session()

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{quote(path.lstrip('/'))}"

    def local_path(self, path: str) -> Path:
        """Where *path* lives below the assets root.

        Raises:
            AssetTransferError: If *path* escapes the assets root.
        """
        relative = PurePosixPath(path.lstrip("/"))
        if ".." in relative.parts:
            raise AssetTransferError(f"Asset path escapes the assets root: {path}")
        return self.directory.joinpath(*relative.parts)

    def fetch_bytes(self, locator: str) -> bytes:
        """Download *locator* (an asset path or an absolute URL)."""
        url = locator if "://" in locator else self.url_for(locator)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise AssetTransferError(
                f"Downloading {url} failed: HTTP {exc.response.status_code}"
            ) from exc
        except requests.RequestException as exc:
            raise AssetTransferError(f"Downloading {url} failed: {exc}") from exc
        logger.debug("Fetched %s (%d bytes)", url, len(response.content))
        return response.content

    def write_local(self, relative_path: str, data: bytes) -> Path:
        """Write *data* below the assets root, creating directories."""
        destination = self.local_path(relative_path)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(data)
        except OSError as exc:
            raise AssetTransferError(
                f"Writing {destination} failed: {exc}"
            ) from exc
        return destination

    def transfer(self, path: str) -> Path:
        """Download *path* from the source and store it locally."""
        return self.write_local(path, self.fetch_bytes(path))
