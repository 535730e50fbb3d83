"""
Internal DAG node model.

Leaves are raw blocks and carry no wrapper. Internal nodes hold an ordered list
of links; every link records the CID of a child and the number of content
bytes reachable under it, so an object's length is known from its root alone.
"""
from serde import SerdeError, serde
from serde.msgpack import from_msgpack, to_msgpack

from content_store.cid import Cid
from content_store.errors import CorruptionError, InvalidCIDError


@serde
class Link:
    cid: str
    size: int


@serde
class DagNode:
    links: list[Link]

    @property
    def size(self) -> int:
        return sum(link.size for link in self.links)

    def encode(self) -> bytes:
        # named fields in declaration order, so the encoding is deterministic
        return to_msgpack(self)

    @classmethod
    def decode(cls, data: bytes) -> "DagNode":
        try:
            node = from_msgpack(DagNode, data)
        except (SerdeError, ValueError, TypeError, KeyError, AttributeError) as e:
            raise CorruptionError(f"undecodable DAG node: {e}") from e
        if not node.links:
            raise CorruptionError("DAG node has no links")
        for link in node.links:
            if not isinstance(link.size, int) or link.size < 0:
                raise CorruptionError("DAG link with invalid size")
            try:
                Cid.parse(link.cid)
            except InvalidCIDError as e:
                raise CorruptionError(f"DAG link with bad CID: {e}") from e
        return node

    def child_cids(self) -> list[Cid]:
        return [Cid.parse(link.cid) for link in self.links]
