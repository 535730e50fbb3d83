"""
Fixed-size chunking and block hashing.

The chunker turns whatever the caller hands us (bytes, a file object, an
upload, an iterator of byte pieces) into an ordered stream of chunks, each at
most ``max_chunk_size`` bytes long.
"""
import hashlib
import inspect
import logging
from typing import Any, AsyncIterator

from content_store.cid import HashCode, Multihash
from content_store.errors import InvalidInputError, StoreIOError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 256 * 1024
# how much to ask a stream for at a time when it is not bytes already
READ_SIZE = 64 * 1024


def hash_bytes(data: bytes, code: HashCode = HashCode.SHA2_256) -> Multihash:
    """
    Hash a block.

    Args:
        data: Block contents
        code: Hash function to use

    Returns:
        The multihash of the data
    """
    if code == HashCode.SHA2_256:
        digest = hashlib.sha256(data).digest()
    elif code == HashCode.BLAKE2B_256:
        digest = hashlib.blake2b(data, digest_size=32).digest()
    else:
        raise ValueError(f"unsupported hash function {code!r}")
    return Multihash(code, digest)


class Chunker:
    """
    Async iterable of chunks over a byte source.

    Iterating again starts over from the beginning when the source allows it
    (bytes, seekable files, uploads). Plain iterators can only be walked once.
    Empty input always produces exactly one empty chunk.
    """
    source: Any
    max_chunk_size: int

    def __init__(self, source: Any, max_chunk_size: int = DEFAULT_CHUNK_SIZE):
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        if isinstance(source, str):
            source = source.encode("utf-8")
        if source is None:
            raise InvalidInputError("no data given")
        self.source = source
        self.max_chunk_size = max_chunk_size

    def __aiter__(self) -> AsyncIterator[bytes]:
        if isinstance(self.source, (bytes, bytearray, memoryview)):
            return self._slice(memoryview(self.source))
        return self._rebuffer(self._pieces())

    async def _slice(self, view: memoryview) -> AsyncIterator[bytes]:
        if len(view) == 0:
            yield b""
            return
        for start in range(0, len(view), self.max_chunk_size):
            yield bytes(view[start:start + self.max_chunk_size])

    async def _rebuffer(self, pieces: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        buf = bytearray()
        emitted = False
        async for piece in pieces:
            buf.extend(piece)
            while len(buf) >= self.max_chunk_size:
                yield bytes(buf[:self.max_chunk_size])
                del buf[:self.max_chunk_size]
                emitted = True
        if buf or not emitted:
            yield bytes(buf)

    async def _pieces(self) -> AsyncIterator[bytes]:
        source = self.source
        read = getattr(source, "read", None)
        try:
            if read is not None and inspect.iscoroutinefunction(read):
                # starlette UploadFile and friends
                seek = getattr(source, "seek", None)
                if seek is not None:
                    await seek(0)
                while piece := await read(READ_SIZE):
                    yield _as_bytes(piece)
            elif read is not None:
                if getattr(source, "seekable", lambda: False)():
                    source.seek(0)
                while piece := read(READ_SIZE):
                    yield _as_bytes(piece)
            elif hasattr(source, "__aiter__"):
                async for piece in source:
                    yield _as_bytes(piece)
            elif hasattr(source, "__iter__"):
                for piece in source:
                    yield _as_bytes(piece)
            else:
                raise InvalidInputError(f"cannot read bytes from {type(source).__name__}")
        except OSError as e:
            logger.warning("Read failed while chunking: %s", e)
            raise StoreIOError(f"failed to read input: {e}") from e


def _as_bytes(piece: Any) -> bytes:
    if isinstance(piece, str):
        return piece.encode("utf-8")
    if isinstance(piece, (bytes, bytearray, memoryview)):
        return bytes(piece)
    raise InvalidInputError(f"expected bytes, got {type(piece).__name__}")
