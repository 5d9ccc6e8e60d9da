"""Model artifact provisioning.

Artifacts are fetched once into ``<storage_dir>/<storage_key>/`` and reused on
every later call. Downloads stream into a ``.part`` file that is renamed into
place only once the transfer completed, so an interrupted fetch is never
mistaken for a present artifact.
"""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse

import requests

from .errors import TransferError
from .platforms import SUPPORTED_PLATFORMS, ensure_supported

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelArtifact:
    locator: str
    storage_key: str
    companions: tuple[str, ...] = ()

    @classmethod
    def from_locator(
        cls, locator: str, storage_key: str | None = None, companions: list[str] | tuple[str, ...] = ()
    ) -> "ModelArtifact":
        if not locator or not locator.strip():
            raise ValueError("Artifact locator must be a non-empty URI")
        locator = locator.strip()
        if not _filename(locator):
            raise ValueError(f"Artifact locator has no file name: {locator}")
        key = storage_key or Path(_filename(locator)).stem
        return cls(locator=locator, storage_key=key, companions=tuple(companions))

    @property
    def filename(self) -> str:
        return _filename(self.locator)

    def files(self) -> list[tuple[str, str]]:
        """(file name, source URI) pairs, the main artifact first."""
        base = self.locator.split("?")[0].rsplit("/", 1)[0]
        items = [(self.filename, self.locator)]
        for name in self.companions:
            items.append((name, f"{base}/{name}"))
        return items


def _filename(locator: str) -> str:
    return os.path.basename(urlparse(locator).path)


class Transfer(Protocol):
    def fetch(self, url: str, dest: Path) -> None:
        ...


class HttpTransfer:
    """Streams a remote file to ``dest`` with requests."""

    def __init__(
        self,
        timeout: int = 60,
        chunk_size: int = 1024 * 1024,
        session: requests.Session | None = None,
    ) -> None:
        self._timeout = timeout
        self._chunk_size = chunk_size
        self._session = session or requests.Session()

    def fetch(self, url: str, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(dest.name + ".part")
        try:
            with self._session.get(url, stream=True, timeout=self._timeout) as r:
                r.raise_for_status()
                expected = r.headers.get("Content-Length")
                written = 0
                with partial.open("wb") as f:
                    for chunk in r.iter_content(chunk_size=self._chunk_size):
                        if chunk:
                            f.write(chunk)
                            written += len(chunk)
            if expected is not None and expected.isdigit() and written != int(expected):
                raise TransferError(
                    f"Interrupted transfer of {url}: got {written} of {expected} bytes",
                    locator=url,
                )
            os.replace(partial, dest)
        except TransferError:
            partial.unlink(missing_ok=True)
            raise
        except (requests.RequestException, OSError) as exc:
            partial.unlink(missing_ok=True)
            raise TransferError(f"Failed to fetch {url}: {exc}", locator=url, cause=exc) from exc


class ArtifactProvisioner:
    def __init__(
        self,
        storage_dir: str | Path,
        transfer: Transfer | None = None,
        supported_platforms: tuple[str, ...] | list[str] = SUPPORTED_PLATFORMS,
        platform_name: str | None = None,
    ) -> None:
        self._storage_dir = Path(storage_dir)
        self._transfer = transfer or HttpTransfer()
        self._supported = tuple(supported_platforms)
        self._platform_name = platform_name
        self._locks: dict[str, asyncio.Lock] = {}

    def local_path(self, artifact: ModelArtifact) -> Path:
        return self._storage_dir / artifact.storage_key / artifact.filename

    def is_present(self, artifact: ModelArtifact) -> bool:
        folder = self._storage_dir / artifact.storage_key
        return all((folder / name).is_file() for name, _ in artifact.files())

    async def ensure(self, artifact: ModelArtifact | str) -> Path:
        """Make sure ``artifact`` is in local storage and return the main file path.

        Raises :class:`UnsupportedPlatform` before touching storage when the
        platform is outside the allow-set, and :class:`TransferError` when a
        fetch fails. Failed fetches are not retried.
        """
        if isinstance(artifact, str):
            artifact = ModelArtifact.from_locator(artifact)
        ensure_supported(self._supported, self._platform_name)

        lock = self._locks.setdefault(artifact.locator, asyncio.Lock())
        async with lock:
            folder = self._storage_dir / artifact.storage_key
            for name, url in artifact.files():
                dest = folder / name
                if dest.is_file():
                    logger.debug("Artifact file present: %s", dest)
                    continue
                logger.info("Fetching %s -> %s", url, dest)
                await asyncio.to_thread(self._transfer.fetch, url, dest)
                if not dest.is_file():
                    raise TransferError(f"Transfer of {url} produced no file", locator=url)
                logger.info("Fetched %s", dest)
        return self.local_path(artifact)
