"""
Reassembly of stored objects from their DAG.
"""
import logging
from typing import AsyncIterator

from serde import serde

from content_store.block_store import BlockStore
from content_store.cid import Cid, Codec
from content_store.dag_node import DagNode
from content_store.errors import CorruptionError, InvalidInputError

logger = logging.getLogger(__name__)


@serde
class ObjectStat:
    cid: str
    codec: str
    size: int
    blocks: int
    links: int


def as_cid(cid: Cid | str) -> Cid:
    return cid if isinstance(cid, Cid) else Cid.parse(cid)


class RetrievalEngine:
    block_store: BlockStore

    def __init__(self, block_store: BlockStore):
        self.block_store = block_store

    async def cat(self, cid: Cid | str, offset: int = 0, length: int | None = None) -> AsyncIterator[bytes]:
        """
        Stream an object's bytes in order.

        Walks the DAG depth first, left to right, with an explicit stack.
        Subtrees entirely outside [offset, offset + length) are never fetched.
        A missing or damaged block raises out of the iterator.

        Args:
            cid: Root of the object
            offset: First byte to return
            length: Number of bytes to return, None for everything after offset
        """
        root = as_cid(cid)
        if offset < 0 or (length is not None and length < 0):
            raise InvalidInputError("offset and length must be non-negative")
        end = None if length is None else offset + length

        # (block, position of its first byte in the object, size the parent promised)
        stack: list[tuple[Cid, int, int | None]] = [(root, 0, None)]
        while stack:
            cur, start, expected = stack.pop()
            data = await self.block_store.get(cur.multihash)

            if cur.codec == Codec.RAW:
                if expected is not None and len(data) != expected:
                    raise CorruptionError(f"leaf {cur} holds {len(data)} bytes, parent says {expected}")
                lo = max(offset - start, 0)
                hi = len(data) if end is None else min(len(data), end - start)
                if lo < hi:
                    yield data[lo:hi]
                continue

            node = DagNode.decode(data)
            if expected is not None and node.size != expected:
                raise CorruptionError(f"node {cur} covers {node.size} bytes, parent says {expected}")
            children = []
            pos = start
            for link, child in zip(node.links, node.child_cids()):
                child_end = pos + link.size
                if child_end > offset and (end is None or pos < end):
                    children.append((child, pos, link.size))
                pos = child_end
            # reversed so the leftmost child is popped first
            stack.extend(reversed(children))

    async def stat(self, cid: Cid | str) -> ObjectStat:
        root = as_cid(cid)
        data = await self.block_store.get(root.multihash)
        if root.codec == Codec.RAW:
            return ObjectStat(root.encode(), root.codec.name.lower(), len(data), 1, 0)

        node = DagNode.decode(data)
        blocks = 1
        pending = [node]
        while pending:
            cur = pending.pop()
            for link, child in zip(cur.links, cur.child_cids()):
                if child.codec == Codec.RAW:
                    size = await self.block_store.size(child.multihash)
                else:
                    sub = DagNode.decode(await self.block_store.get(child.multihash))
                    size = sub.size
                    pending.append(sub)
                if size != link.size:
                    raise CorruptionError(f"block {child} covers {size} bytes, parent says {link.size}")
                blocks += 1
        return ObjectStat(root.encode(), root.codec.name.lower(), node.size, blocks, len(node.links))
