"""
The content store: add bytes, get a CID back; hand a CID over, get the bytes.
"""
import logging
import os
from typing import Any, AsyncIterator

from content_store.block_store import BlockStore
from content_store.chunker import DEFAULT_CHUNK_SIZE, Chunker
from content_store.cid import Cid, HashCode
from content_store.dag_builder import DEFAULT_MAX_LINKS, DagBuilder
from content_store.errors import ContentStoreError, StoreIOError
from content_store.retrieval import ObjectStat, RetrievalEngine
from content_store.stats import StatsCollector

logger = logging.getLogger(__name__)


class ContentStore:
    """
    Single-node content-addressed blob store.

    add_bytes only returns a CID once every block under it is on disk; a
    failed add may leave orphan blocks behind but never a root that points at
    missing data.
    """
    block_store: BlockStore
    builder: DagBuilder
    engine: RetrievalEngine
    stats: StatsCollector | None
    max_chunk_size: int
    closed: bool

    def __init__(self, path: str | os.PathLike, max_chunk_size: int = DEFAULT_CHUNK_SIZE,
                 max_links: int = DEFAULT_MAX_LINKS, hash_code: HashCode = HashCode.SHA2_256,
                 stats: StatsCollector | None = None):
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        self.block_store = BlockStore(path)
        self.builder = DagBuilder(self.block_store, max_links, hash_code)
        self.engine = RetrievalEngine(self.block_store)
        self.stats = stats
        self.max_chunk_size = max_chunk_size
        self.closed = False

    def _check_open(self):
        if self.closed:
            raise StoreIOError("content store is closed")

    async def add_bytes(self, source: Any) -> str:
        """
        Store data and return its CID.

        Args:
            source: bytes, str, a (sync or async) file object, or an iterable
                of byte pieces

        Returns:
            The canonical CID string of the stored object
        """
        self._check_open()
        try:
            cid, size = await self.builder.build(Chunker(source, self.max_chunk_size))
        except ContentStoreError as e:
            logger.warning("Add failed: %s", e)
            raise
        text = cid.encode()
        if self.stats is not None:
            self.stats.record_cid(text)
        logger.info("Stored %d bytes -> %s", size, text)
        return text

    def cat(self, cid: Cid | str, offset: int = 0, length: int | None = None) -> AsyncIterator[bytes]:
        self._check_open()
        return self.engine.cat(cid, offset, length)

    async def cat_bytes(self, cid: Cid | str, offset: int = 0, length: int | None = None) -> bytes:
        return b"".join([piece async for piece in self.cat(cid, offset, length)])

    async def stat(self, cid: Cid | str) -> ObjectStat:
        self._check_open()
        return await self.engine.stat(cid)

    async def has(self, cid: Cid | str) -> bool:
        self._check_open()
        root = cid if isinstance(cid, Cid) else Cid.parse(cid)
        return await self.block_store.has(root.multihash)

    def close(self):
        if not self.closed:
            self.closed = True
            logger.info("Content store at %s closed", self.block_store.root)
