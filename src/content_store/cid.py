"""
Self-describing content identifiers.

A CID wraps a multihash (hash function code + digest) together with the codec
of the block it points at. The binary form is

    varint(version) varint(codec) varint(hash code) varint(digest length) digest

and the text form is that binary prefixed with a multibase character. We always
emit lowercase base32 (``b``) and also accept lowercase base16 (``f``).
"""
import base64
import binascii
from dataclasses import dataclass
from enum import IntEnum

from content_store.errors import InvalidCIDError

CID_VERSION = 1
BASE32_PREFIX = "b"
BASE16_PREFIX = "f"
# multiformats caps varints at 63 bits, which needs 9 bytes
MAX_VARINT_LEN = 9

_BASE32_ALPHABET = frozenset("abcdefghijklmnopqrstuvwxyz234567")
_BASE16_ALPHABET = frozenset("0123456789abcdef")


class Codec(IntEnum):
    RAW = 0x55
    # private-use multicodec range, msgpack-encoded DagNode
    DAG_MSGPACK = 0x300001


class HashCode(IntEnum):
    SHA2_256 = 0x12
    BLAKE2B_256 = 0xB220

    @property
    def digest_size(self) -> int:
        return 32


def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer as an unsigned LEB128 varint."""
    if value < 0:
        raise ValueError("varint value must be non-negative")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """
    Decode an unsigned LEB128 varint.

    Args:
        data: Buffer holding the varint
        offset: Position of the first varint byte

    Returns:
        The decoded value and the offset just past it
    """
    value = 0
    shift = 0
    for i in range(MAX_VARINT_LEN):
        pos = offset + i
        if pos >= len(data):
            raise ValueError("truncated varint")
        byte = data[pos]
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            if byte == 0 and i > 0:
                raise ValueError("varint is not minimally encoded")
            return value, pos + 1
        shift += 7
    raise ValueError("varint too long")


@dataclass(frozen=True)
class Multihash:
    code: HashCode
    digest: bytes

    def __post_init__(self):
        if len(self.digest) != self.code.digest_size:
            raise ValueError(f"{self.code.name} digest must be {self.code.digest_size} bytes, got {len(self.digest)}")

    def to_bytes(self) -> bytes:
        return encode_varint(self.code) + encode_varint(len(self.digest)) + self.digest

    def hex(self) -> str:
        return self.to_bytes().hex()

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Multihash":
        code, pos = decode_varint(raw)
        length, pos = decode_varint(raw, pos)
        if len(raw) - pos != length:
            raise ValueError("multihash length mismatch")
        return cls(HashCode(code), raw[pos:])


@dataclass(frozen=True)
class Cid:
    codec: Codec
    multihash: Multihash
    version: int = CID_VERSION

    @property
    def digest(self) -> bytes:
        return self.multihash.digest

    @property
    def hash_code(self) -> HashCode:
        return self.multihash.code

    def to_bytes(self) -> bytes:
        return encode_varint(self.version) + encode_varint(self.codec) + self.multihash.to_bytes()

    def encode(self) -> str:
        b32 = base64.b32encode(self.to_bytes()).decode("ascii")
        return BASE32_PREFIX + b32.rstrip("=").lower()

    def __str__(self) -> str:
        return self.encode()

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Cid":
        try:
            version, pos = decode_varint(raw)
            codec_tag, pos = decode_varint(raw, pos)
            hash_tag, pos = decode_varint(raw, pos)
            digest_len, pos = decode_varint(raw, pos)
        except ValueError as e:
            raise InvalidCIDError(f"malformed CID header: {e}") from e
        if version != CID_VERSION:
            raise InvalidCIDError(f"unsupported CID version {version}")
        try:
            codec = Codec(codec_tag)
        except ValueError:
            raise InvalidCIDError(f"unknown codec 0x{codec_tag:x}") from None
        try:
            hash_code = HashCode(hash_tag)
        except ValueError:
            raise InvalidCIDError(f"unknown hash function 0x{hash_tag:x}") from None
        digest = raw[pos:]
        if digest_len != hash_code.digest_size or len(digest) != digest_len:
            raise InvalidCIDError(f"digest length mismatch for {hash_code.name}")
        return cls(codec, Multihash(hash_code, digest), version)

    @classmethod
    def parse(cls, text: str) -> "Cid":
        if not isinstance(text, str):
            raise InvalidCIDError("CID must be a string")
        text = text.strip().lower()
        if len(text) < 2:
            raise InvalidCIDError("CID is too short")
        prefix, body = text[0], text[1:]
        if prefix == BASE32_PREFIX:
            if not set(body) <= _BASE32_ALPHABET:
                raise InvalidCIDError("invalid base32 character in CID")
            padded = body.upper() + "=" * (-len(body) % 8)
            try:
                raw = base64.b32decode(padded)
            except binascii.Error as e:
                raise InvalidCIDError(f"invalid base32 CID: {e}") from e
            # unused trailing bits must be zero, one string per CID
            if base64.b32encode(raw).decode("ascii").rstrip("=").lower() != body:
                raise InvalidCIDError("non-canonical base32 CID")
        elif prefix == BASE16_PREFIX:
            if not set(body) <= _BASE16_ALPHABET or len(body) % 2:
                raise InvalidCIDError("invalid base16 CID")
            raw = bytes.fromhex(body)
        else:
            raise InvalidCIDError(f"unsupported multibase prefix {prefix!r}")
        return cls.from_bytes(raw)


def encode_cid(digest: bytes, codec: Codec, hash_code: HashCode) -> str:
    """Build the canonical CID string for a digest."""
    try:
        return Cid(Codec(codec), Multihash(HashCode(hash_code), digest)).encode()
    except ValueError as e:
        raise InvalidCIDError(str(e)) from e


def decode_cid(text: str) -> Cid:
    """Parse a CID string (case-insensitive) into its components."""
    return Cid.parse(text)


def normalize_cid(text: str) -> str:
    """Return the canonical lowercase base32 form of any accepted CID string."""
    return Cid.parse(text).encode()
