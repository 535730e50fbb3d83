"""
Content-addressed blob store.
Data is split into fixed-size chunks, stored as digest-keyed blocks, linked
into a balanced DAG and addressed by the CID of the DAG's root.
"""

from .block_store import BlockStore
from .chunker import Chunker, hash_bytes
from .cid import Cid, Codec, HashCode, Multihash, decode_cid, encode_cid
from .dag_builder import DagBuilder
from .dag_node import DagNode, Link
from .errors import (ContentStoreError, CorruptionError, InvalidCIDError, InvalidInputError, NotFoundError,
                     StoreIOError)
from .retrieval import ObjectStat, RetrievalEngine
from .stats import StatsCollector
from .store import ContentStore

__all__ = ['BlockStore', 'Chunker', 'hash_bytes', 'Cid', 'Codec', 'HashCode', 'Multihash', 'decode_cid',
           'encode_cid', 'DagBuilder', 'DagNode', 'Link', 'ContentStoreError', 'CorruptionError',
           'InvalidCIDError', 'InvalidInputError', 'NotFoundError', 'StoreIOError', 'ObjectStat',
           'RetrievalEngine', 'StatsCollector', 'ContentStore']
