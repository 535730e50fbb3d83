import hashlib
import io

import pytest

from conftest import run
from content_store.chunker import Chunker, hash_bytes
from content_store.cid import HashCode
from content_store.errors import InvalidInputError, StoreIOError


async def collect(chunker):
    return [c async for c in chunker]


async def pieces(*parts):
    for part in parts:
        yield part


class BrokenFile:
    def read(self, n):
        raise OSError("disk went away")


def test_fixed_size_chunks():
    assert run(collect(Chunker(b"0123456789", 4))) == [b"0123", b"4567", b"89"]


def test_exact_multiple_has_no_trailing_empty_chunk():
    assert run(collect(Chunker(b"01234567", 4))) == [b"0123", b"4567"]


def test_empty_input_yields_one_empty_chunk():
    assert run(collect(Chunker(b"", 4))) == [b""]
    assert run(collect(Chunker(pieces(), 4))) == [b""]


def test_str_is_utf8():
    assert run(collect(Chunker("héllo", 64))) == ["héllo".encode("utf-8")]


def test_restartable_from_bytes_and_files():
    chunker = Chunker(b"abcdefghij", 3)
    assert run(collect(chunker)) == run(collect(chunker))

    f = io.BytesIO(b"abcdefghij")
    chunker = Chunker(f, 3)
    first = run(collect(chunker))
    assert first == [b"abc", b"def", b"ghi", b"j"]
    assert run(collect(chunker)) == first


def test_uneven_pieces_are_rebuffered():
    chunker = Chunker(pieces(b"ab", b"cde", b"f"), 4)
    assert run(collect(chunker)) == [b"abcd", b"ef"]


def test_sync_iterable():
    assert run(collect(Chunker([b"abc", b"def"], 2))) == [b"ab", b"cd", b"ef"]


def test_read_error_is_store_io_error():
    with pytest.raises(StoreIOError, match="disk went away"):
        run(collect(Chunker(BrokenFile(), 4)))


def test_non_bytes_piece_rejected():
    with pytest.raises(InvalidInputError):
        run(collect(Chunker([b"ok", 5], 4)))


def test_chunk_size_must_be_positive():
    with pytest.raises(ValueError):
        Chunker(b"abc", 0)


def test_hash_bytes():
    mh = hash_bytes(b"hello")
    assert mh.code == HashCode.SHA2_256
    assert mh.digest == hashlib.sha256(b"hello").digest()
    assert hash_bytes(b"hello") == mh
    other = hash_bytes(b"hello", HashCode.BLAKE2B_256)
    assert other.digest == hashlib.blake2b(b"hello", digest_size=32).digest()
    assert other != mh
