"""
Balanced DAG construction over a chunk stream.
"""
import logging
import math
from typing import AsyncIterable, TypeVar

from content_store.block_store import BlockStore
from content_store.chunker import hash_bytes
from content_store.cid import Cid, Codec, HashCode
from content_store.dag_node import DagNode, Link

logger = logging.getLogger(__name__)

DEFAULT_MAX_LINKS = 174

T = TypeVar("T")


def split_evenly(items: list[T], max_links: int) -> list[list[T]]:
    """
    Split items into the fewest groups of at most max_links, keeping order.

    Group sizes differ by at most one; the larger groups come first.
    """
    groups = math.ceil(len(items) / max_links)
    base, extra = divmod(len(items), groups)
    out = []
    start = 0
    for i in range(groups):
        n = base + (1 if i < extra else 0)
        out.append(items[start:start + n])
        start += n
    return out


class DagBuilder:
    """
    Stores chunks as raw leaves and links them into a balanced tree.

    A single chunk is its own root. Otherwise leaves are grouped level by level
    under internal nodes of at most max_links links until one node holds the
    whole level. Every block is stored before anything refers to it.
    """
    block_store: BlockStore
    max_links: int
    hash_code: HashCode

    def __init__(self, block_store: BlockStore, max_links: int = DEFAULT_MAX_LINKS,
                 hash_code: HashCode = HashCode.SHA2_256):
        if max_links < 2:
            raise ValueError("max_links must be at least 2")
        self.block_store = block_store
        self.max_links = max_links
        self.hash_code = hash_code

    async def put_leaf(self, chunk: bytes) -> Link:
        mh = hash_bytes(chunk, self.hash_code)
        await self.block_store.put(mh, chunk)
        return Link(Cid(Codec.RAW, mh).encode(), len(chunk))

    async def put_node(self, links: list[Link]) -> Link:
        node = DagNode(links)
        data = node.encode()
        mh = hash_bytes(data, self.hash_code)
        await self.block_store.put(mh, data)
        return Link(Cid(Codec.DAG_MSGPACK, mh).encode(), node.size)

    async def build(self, chunks: AsyncIterable[bytes]) -> tuple[Cid, int]:
        """
        Store every chunk and the nodes above them.

        Args:
            chunks: Chunks in stream order

        Returns:
            The root CID and the total content length
        """
        level: list[Link] = []
        it = aiter(chunks)
        try:
            async for chunk in it:
                level.append(await self.put_leaf(chunk))
        finally:
            if hasattr(it, "aclose"):
                await it.aclose()
        if not level:
            # an empty iterable still names the empty object
            level.append(await self.put_leaf(b""))

        depth = 0
        while len(level) > self.max_links:
            level = [await self.put_node(group) for group in split_evenly(level, self.max_links)]
            depth += 1
        root = level[0] if len(level) == 1 else await self.put_node(level)
        if len(level) > 1:
            depth += 1
        logger.debug("Built DAG %s: %d bytes, depth %d", root.cid, root.size, depth)
        return Cid.parse(root.cid), root.size
