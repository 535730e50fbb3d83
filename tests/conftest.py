import asyncio
import random

import pytest

from content_store.block_store import BlockStore
from content_store.stats import StatsCollector
from content_store.store import ContentStore


def run(coro):
    return asyncio.run(coro)


def random_bytes(n: int, seed: int = 0) -> bytes:
    return random.Random(seed).randbytes(n)


@pytest.fixture
def block_store(tmp_path):
    return BlockStore(tmp_path)


@pytest.fixture
def stats():
    return StatsCollector()


@pytest.fixture
def store(tmp_path, stats):
    return ContentStore(tmp_path, stats=stats)


@pytest.fixture
def small_store(tmp_path):
    # tiny chunks and fan-out so multi-level DAGs show up with little data
    return ContentStore(tmp_path, max_chunk_size=16, max_links=4)
