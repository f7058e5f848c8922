"""
Per-connection text encoding detection for controller bytes.

Controllers in the field answer in UTF-8, UTF-16-LE or a legacy CJK code page
depending on firmware and locale. The detector tries UTF-8 first and pins the
first encoding that yields plausible protocol text. If nothing decodes, the
connection falls into hex mode for its remaining lifetime.
"""

import codecs
import logging

from erbridge.config import LEGACY_ENCODING, TRACE
from erbridge.errors import EncodingError

logger = logging.getLogger(__name__)

UTF8 = "utf-8"
UTF16LE = "utf-16-le"
REPLACEMENT_CHAR = "\ufffd"


def hex_dump(data: bytes) -> str:
    return data.hex(" ").upper()


def _looks_valid(text: str) -> bool:
    return REPLACEMENT_CHAR not in text and "\x00" not in text


class EncodingDetector:
    """Converts raw chunks into text, carrying split multibyte sequences."""

    def __init__(self, legacy_encoding: str = LEGACY_ENCODING):
        self._legacy = legacy_encoding
        self._encoding: str | None = None
        self._hex_mode = False
        self._decoder: codecs.IncrementalDecoder | None = None
        # Bytes held back while the encoding is still undecided
        self._carry = b""

    @property
    def encoding(self) -> str | None:
        """Pinned codec name, or None while undecided."""
        return self._encoding

    @property
    def hex_mode(self) -> bool:
        return self._hex_mode

    def reset(self) -> None:
        """Forget the pinned encoding (call on disconnect)."""
        self._encoding = None
        self._hex_mode = False
        self._decoder = None
        self._carry = b""

    def _pin(self, name: str, decoder: codecs.IncrementalDecoder) -> None:
        self._encoding = name
        self._decoder = decoder
        logger.info(f"Controller encoding detected: {name}")

    def decode(self, chunk: bytes) -> str:
        """Decode one chunk.

        Raises:
            EncodingError: in hex mode, carrying a hex dump of ``chunk``
        """
        if self._hex_mode:
            raise EncodingError(hex_dump(chunk))

        if self._decoder is not None:
            try:
                return self._decoder.decode(chunk)
            except UnicodeDecodeError:
                self._decoder.reset()
                logger.warning(f"Chunk not valid {self._encoding}; dropping it")
                raise EncodingError(hex_dump(chunk)) from None

        data = self._carry + chunk
        self._carry = b""
        return self._detect(data)

    def _detect(self, data: bytes) -> str:
        # UTF-8; the incremental decoder holds back a truncated tail
        dec = codecs.getincrementaldecoder(UTF8)(errors="strict")
        try:
            text = dec.decode(data)
        except UnicodeDecodeError:
            text = None
        if text is not None and _looks_valid(text):
            if not text.isascii():
                self._pin(UTF8, dec)
            else:
                self._carry, _ = dec.getstate()
                if logger.isEnabledFor(TRACE):
                    logger.trace(f"ASCII chunk, encoding still open ({len(data)} bytes)")  # type: ignore[attr-defined]
            return text

        # UTF-16-LE needs protocol punctuation to be believed
        dec = codecs.getincrementaldecoder(UTF16LE)(errors="strict")
        try:
            text = dec.decode(data)
        except UnicodeDecodeError:
            text = None
        if text is not None and _looks_valid(text) and "[" in text and ";" in text:
            self._pin(UTF16LE, dec)
            return text

        # Same decoder instance is pinned so a split multibyte tail carries over
        try:
            dec = codecs.getincrementaldecoder(self._legacy)(errors="strict")
            text = dec.decode(data)
        except (UnicodeDecodeError, LookupError):
            text = None
        if text is not None and _looks_valid(text):
            self._pin(self._legacy, dec)
            return text

        self._hex_mode = True
        dump = hex_dump(data)
        logger.error(f"Controller data undecodable; switching to hex mode: {dump}")
        raise EncodingError(dump)
