"""Snapshot envelope codec

Turns a mapping of relative path -> text content into a single binary
envelope and back:

    [4-byte big-endian header length][header JSON][payload]

The payload is the snapshot as a compact JSON object, optionally gzip or
zstd compressed. The header carries a checksum of the payload bytes as
stored, which is verified before anything is decompressed.
"""

import gzip
import json
import struct
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List, Mapping

import aiofiles
import aiofiles.os
import zstandard as zstd

from ..utils.logging import get_logger
from ..utils.errors import (
    EncodeError,
    EncodeReason,
    DecodeError,
    DecodeReason,
    StorageError,
    ValidationError,
)

logger = get_logger(__name__)

FORMAT_VERSION = "1.0.0"
HEADER_LENGTH_STRUCT = struct.Struct(">I")
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB


class CompressionKind(Enum):
    """Payload compression recorded in the envelope header."""
    NONE = "none"
    GZIP = "gzip"
    ZSTD = "zstd"

    @property
    def extension(self) -> str:
        """File extension for an envelope using this compression."""
        return {
            CompressionKind.NONE: "json",
            CompressionKind.GZIP: "json.gz",
            CompressionKind.ZSTD: "json.zst",
        }[self]


class EnvelopeFormat(Enum):
    """Layout a caller expects when decoding.

    ``FRAMED`` envelopes carry the integrity header and describe their own
    compression. The headerless variants have no checksum to verify.
    """
    FRAMED = "framed"
    GZIP = "gzip"
    ZSTD = "zstd"
    PLAIN = "plain"


@dataclass
class EncodeOptions:
    """Options for encoding a snapshot"""
    compress: bool = True
    include_header: bool = True
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    compression: CompressionKind = CompressionKind.GZIP
    compression_level: int = 6

    @property
    def effective_compression(self) -> CompressionKind:
        return self.compression if self.compress else CompressionKind.NONE

    @property
    def envelope_format(self) -> EnvelopeFormat:
        """Format to pass to ``decode`` for envelopes written with these options."""
        if self.include_header:
            return EnvelopeFormat.FRAMED
        return {
            CompressionKind.NONE: EnvelopeFormat.PLAIN,
            CompressionKind.GZIP: EnvelopeFormat.GZIP,
            CompressionKind.ZSTD: EnvelopeFormat.ZSTD,
        }[self.effective_compression]


@dataclass
class EnvelopeMetadata:
    """Header contents of an envelope"""
    version: str
    created_at: datetime
    file_count: int
    total_size: int
    compressed_size: int
    compression: CompressionKind
    checksum: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "file_count": self.file_count,
            "total_size": self.total_size,
            "compressed_size": self.compressed_size,
            "compression": self.compression.value,
            "checksum": self.checksum
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EnvelopeMetadata':
        """Create from dictionary"""
        return cls(
            version=str(data["version"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            file_count=int(data["file_count"]),
            total_size=int(data["total_size"]),
            compressed_size=int(data["compressed_size"]),
            compression=CompressionKind(data["compression"]),
            checksum=str(data["checksum"])
        )


@dataclass
class EncodeResult:
    """Finished envelope plus a copy of its header"""
    data: bytes
    metadata: EnvelopeMetadata
    excluded: List[str] = field(default_factory=list)


@dataclass
class DecodeResult:
    """Decoded snapshot"""
    files: Dict[str, str]
    metadata: Optional[EnvelopeMetadata] = None


@dataclass
class CompressionStats:
    ratio: float
    percentage: str


def checksum(data: bytes) -> str:
    """32-bit rolling hash of ``data`` as 8 hex digits.

    Detects corruption, not tampering. Every single-byte change alters the
    result because 31 is invertible modulo 2**32.
    """
    h = 0
    for byte in data:
        h = (h * 31 + byte) & 0xFFFFFFFF
    return f"{h:08x}"


class StateSerializer:
    """Encodes and decodes snapshot envelopes

    Stateless apart from the format version it stamps; safe to share.
    """

    def __init__(self, version: str = FORMAT_VERSION):
        self.version = version

    def encode(
        self,
        file_contents: Mapping[str, str],
        options: Optional[EncodeOptions] = None
    ) -> EncodeResult:
        """Encode a snapshot

        Args:
            file_contents: Relative path -> text content, in snapshot order
            options: Encoding options (defaults: gzip + header, 10MB ceiling)

        Returns:
            Envelope bytes and header metadata

        Raises:
            EncodeError: every file exceeded the size ceiling, or compression failed
        """
        options = options or EncodeOptions()

        included: Dict[str, str] = {}
        excluded: List[str] = []
        total_size = 0

        for path, content in file_contents.items():
            if not isinstance(content, str):
                raise ValidationError("file_contents", path, "content must be text")
            size = len(content.encode("utf-8", "surrogatepass"))
            if size > options.max_file_size:
                excluded.append(path)
                logger.debug(
                    "snapshot_file_excluded",
                    path=path,
                    size=size,
                    max_file_size=options.max_file_size
                )
                continue
            included[path] = content
            total_size += size

        if file_contents and not included:
            raise EncodeError(
                EncodeReason.ALL_FILES_EXCLUDED,
                f"All {len(excluded)} files exceed the {options.max_file_size} byte limit"
            )

        serialized = json.dumps(included, separators=(",", ":")).encode("ascii")
        compression = options.effective_compression
        payload = self._compress(serialized, compression, options.compression_level)

        metadata = EnvelopeMetadata(
            version=self.version,
            created_at=datetime.now(timezone.utc),
            file_count=len(included),
            total_size=total_size,
            compressed_size=len(payload),
            compression=compression,
            checksum=checksum(payload)
        )

        if options.include_header:
            header = json.dumps(metadata.to_dict(), separators=(",", ":")).encode("utf-8")
            data = HEADER_LENGTH_STRUCT.pack(len(header)) + header + payload
        else:
            data = payload

        logger.debug(
            "snapshot_encoded",
            files=metadata.file_count,
            excluded=len(excluded),
            total_size=total_size,
            compressed_size=len(payload),
            compression=compression.value
        )

        return EncodeResult(data=data, metadata=metadata, excluded=excluded)

    def decode(
        self,
        data: bytes,
        expected_format: EnvelopeFormat = EnvelopeFormat.FRAMED
    ) -> DecodeResult:
        """Decode an envelope

        Args:
            data: Envelope bytes
            expected_format: Layout the envelope was written with

        Returns:
            The snapshot mapping and, for framed envelopes, its header

        Raises:
            DecodeError: corrupt header, checksum mismatch or malformed payload
        """
        if expected_format is not EnvelopeFormat.FRAMED:
            compression = {
                EnvelopeFormat.PLAIN: CompressionKind.NONE,
                EnvelopeFormat.GZIP: CompressionKind.GZIP,
                EnvelopeFormat.ZSTD: CompressionKind.ZSTD,
            }[expected_format]
            files = self._parse_payload(self._decompress(data, compression))
            return DecodeResult(files=files)

        metadata, payload = self._read_header(data)

        # Integrity gate: nothing is decompressed or parsed past this point
        # unless the stored payload is intact.
        actual = checksum(payload)
        if actual != metadata.checksum:
            raise DecodeError(
                DecodeReason.CHECKSUM_MISMATCH,
                f"Checksum mismatch: expected {metadata.checksum}, got {actual}"
            )

        files = self._parse_payload(self._decompress(payload, metadata.compression))

        if len(files) != metadata.file_count:
            raise DecodeError(
                DecodeReason.MALFORMED_PAYLOAD,
                f"Header declares {metadata.file_count} files, payload holds {len(files)}"
            )

        return DecodeResult(files=files, metadata=metadata)

    async def encode_to_file(
        self,
        file_contents: Mapping[str, str],
        path: Path,
        options: Optional[EncodeOptions] = None
    ) -> EncodeResult:
        """Encode a snapshot and write it to ``path``, creating parent directories"""
        result = self.encode(file_contents, options)
        path = Path(path)

        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(path, 'wb') as f:
            await f.write(result.data)

        return result

    async def decode_from_file(
        self,
        path: Path,
        expected_format: EnvelopeFormat = EnvelopeFormat.FRAMED
    ) -> DecodeResult:
        """Read and decode an envelope file

        Raises:
            StorageError: the file does not exist
            DecodeError: the envelope is corrupt
        """
        path = Path(path)
        try:
            async with aiofiles.open(path, 'rb') as f:
                data = await f.read()
        except FileNotFoundError as e:
            raise StorageError(f"Envelope not found: {path}", cause=e) from e

        return self.decode(data, expected_format)

    @staticmethod
    def compression_stats(original_size: int, compressed_size: int) -> CompressionStats:
        """Compression ratio and space saved"""
        if original_size == 0:
            return CompressionStats(ratio=1.0, percentage="0%")
        ratio = compressed_size / original_size
        return CompressionStats(ratio=ratio, percentage=f"{(1 - ratio) * 100:.1f}%")

    def _read_header(self, data: bytes):
        """Split a framed envelope into header metadata and payload"""
        if len(data) < HEADER_LENGTH_STRUCT.size:
            raise DecodeError(DecodeReason.CORRUPT_HEADER, "Envelope too short for a header")

        (header_length,) = HEADER_LENGTH_STRUCT.unpack_from(data, 0)
        header_end = HEADER_LENGTH_STRUCT.size + header_length
        if header_end > len(data):
            raise DecodeError(
                DecodeReason.CORRUPT_HEADER,
                f"Header length {header_length} exceeds envelope size {len(data)}"
            )

        try:
            header = json.loads(data[HEADER_LENGTH_STRUCT.size:header_end].decode("utf-8"))
            metadata = EnvelopeMetadata.from_dict(header)
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise DecodeError(
                DecodeReason.CORRUPT_HEADER,
                f"Unreadable envelope header: {e}",
                cause=e
            ) from e

        if metadata.version.split(".")[0] != self.version.split(".")[0]:
            raise DecodeError(
                DecodeReason.CORRUPT_HEADER,
                f"Unsupported envelope version {metadata.version}"
            )

        return metadata, data[header_end:]

    def _compress(self, data: bytes, compression: CompressionKind, level: int) -> bytes:
        try:
            if compression is CompressionKind.GZIP:
                return gzip.compress(data, compresslevel=level, mtime=0)
            if compression is CompressionKind.ZSTD:
                return zstd.ZstdCompressor(level=level).compress(data)
            return data
        except (zlib.error, zstd.ZstdError, ValueError) as e:
            raise EncodeError(
                EncodeReason.COMPRESSION_FAILED,
                f"{compression.value} compression failed: {e}",
                cause=e
            ) from e

    def _decompress(self, data: bytes, compression: CompressionKind) -> bytes:
        try:
            if compression is CompressionKind.GZIP:
                return gzip.decompress(data)
            if compression is CompressionKind.ZSTD:
                return zstd.ZstdDecompressor().decompress(data)
            return data
        except (OSError, EOFError, zlib.error, zstd.ZstdError) as e:
            raise DecodeError(
                DecodeReason.MALFORMED_PAYLOAD,
                f"{compression.value} decompression failed: {e}",
                cause=e
            ) from e

    def _parse_payload(self, data: bytes) -> Dict[str, str]:
        try:
            files = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise DecodeError(
                DecodeReason.MALFORMED_PAYLOAD,
                f"Payload is not valid JSON: {e}",
                cause=e
            ) from e

        if not isinstance(files, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in files.items()
        ):
            raise DecodeError(
                DecodeReason.MALFORMED_PAYLOAD,
                "Payload is not a mapping of path to text"
            )

        return files
