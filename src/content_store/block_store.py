"""
Durable, digest-keyed block storage.

Blocks live one per file under ``<path>/blocks/<digest[:2]>/<multihash hex>``.
Files are written to a temporary name, fsync'd and renamed into place, so a
reader never sees a half-written block and two racing writers of the same
block leave identical bytes behind.
"""
import asyncio
import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import AsyncIterator

from content_store.chunker import hash_bytes
from content_store.cid import Multihash
from content_store.errors import CorruptionError, NotFoundError, StoreIOError

logger = logging.getLogger(__name__)

TMP_PREFIX = ".tmp-"


class BlockStore:
    root: Path
    locks: dict[str, asyncio.Lock]
    waiters: dict[str, int]

    def __init__(self, path: str | os.PathLike):
        self.root = Path(path) / "blocks"
        self.locks = {}
        self.waiters = {}
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreIOError(f"cannot create block store at {self.root}: {e}") from e
        logger.info("Block store at %s", self.root)

    def path_for(self, mh: Multihash) -> Path:
        return self.root / mh.digest.hex()[:2] / mh.hex()

    @contextlib.asynccontextmanager
    async def _locked(self, key: str):
        # One lock per digest; dropped again once nobody holds or waits on it
        lock = self.locks.get(key)
        if lock is None:
            lock = self.locks[key] = asyncio.Lock()
            self.waiters[key] = 0
        self.waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            self.waiters[key] -= 1
            if self.waiters[key] == 0:
                del self.waiters[key]
                del self.locks[key]

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except (NotFoundError, CorruptionError):
            raise
        except OSError as e:
            logger.error("Block store I/O failed: %s", e)
            raise StoreIOError(str(e)) from e

    async def put(self, mh: Multihash, data: bytes) -> bool:
        """
        Store a block under its multihash.

        Args:
            mh: Multihash the data must hash to
            data: Block contents

        Returns:
            True if the block was written, False if it was already present
        """
        data = bytes(data)
        if hash_bytes(data, mh.code) != mh:
            raise CorruptionError(f"data does not hash to {mh.hex()}")
        path = self.path_for(mh)
        async with self._locked(mh.hex()):
            existing = await self._run(_stat_size, path)
            if existing is not None:
                if existing != len(data):
                    raise CorruptionError(f"block {mh.hex()} is stored with {existing} bytes, expected {len(data)}")
                return False
            await self._run(_write_atomic, path, data)
            return True

    async def get(self, mh: Multihash) -> bytes:
        return await self._run(_read_verified, self.path_for(mh), mh)

    async def has(self, mh: Multihash) -> bool:
        return await self._run(_stat_size, self.path_for(mh)) is not None

    async def size(self, mh: Multihash) -> int:
        size = await self._run(_stat_size, self.path_for(mh))
        if size is None:
            raise NotFoundError(f"block {mh.hex()} not found")
        return size

    async def delete(self, mh: Multihash) -> bool:
        path = self.path_for(mh)
        async with self._locked(mh.hex()):
            return await self._run(_unlink, path)

    async def count(self) -> int:
        return len(await self._run(self._scan))

    async def total_bytes(self) -> int:
        return (await self.usage())[1]

    async def usage(self) -> tuple[int, int]:
        """Block count and total bytes from one directory scan."""
        found = await self._run(self._scan)
        return len(found), sum(size for _, size in found)

    async def __aiter__(self) -> AsyncIterator[Multihash]:
        for path, _ in await self._run(self._scan):
            try:
                yield Multihash.from_bytes(bytes.fromhex(path.name))
            except ValueError:
                logger.warning("Skipping stray file %s in block store", path)

    def _scan(self) -> list[tuple[Path, int]]:
        found = []
        for shard in sorted(self.root.iterdir()):
            if not shard.is_dir():
                continue
            for entry in sorted(shard.iterdir()):
                if entry.name.startswith(TMP_PREFIX):
                    continue
                found.append((entry, entry.stat().st_size))
        return found


def _stat_size(path: Path) -> int | None:
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return None


def _write_atomic(path: Path, data: bytes):
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=TMP_PREFIX)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise


def _read_verified(path: Path, mh: Multihash) -> bytes:
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        raise NotFoundError(f"block {mh.hex()} not found") from None
    if hash_bytes(data, mh.code) != mh:
        raise CorruptionError(f"block {mh.hex()} failed its digest check")
    return data


def _unlink(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
