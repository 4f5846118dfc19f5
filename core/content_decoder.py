"""
Undo ``Content-Encoding`` so the policy can see compressed bodies.

Only used for inspection: the bytes that get forwarded are always the
original ones.  Every coding is undone in bounded steps, so a small
compressed body can never expand past *max_size* in memory.
"""

import logging
import zlib

import brotli

from config.settings import Settings
from utils.errors    import BodyTooLarge

logger = logging.getLogger("FilterProxy.Decoder")

# largest piece of output produced by a single decompressor call
_STEP = 64 * 1024

_GZIP_WBITS = 16 + zlib.MAX_WBITS


def _check_size(out: bytearray, max_size: int, coding: str):
    if len(out) > max_size:
        raise BodyTooLarge(
            f"{coding} body expands past {max_size} bytes"
        )


def _zlib_stream(body: bytes, wbits: int, max_size: int, coding: str,
                 multi_member: bool = False) -> bytes:
    out  = bytearray()
    data = body
    while True:
        decomp = zlib.decompressobj(wbits)
        while True:
            chunk = decomp.decompress(data, _STEP)
            data  = decomp.unconsumed_tail
            out  += chunk
            _check_size(out, max_size, coding)
            if not chunk and not data:
                break
        if not decomp.eof:
            raise EOFError(f"truncated {coding} stream")
        data = decomp.unused_data
        # gzip allows several members back to back
        if not (multi_member and data.strip(b"\0")):
            return bytes(out)


def _gunzip(body: bytes, max_size: int) -> bytes:
    return _zlib_stream(body, _GZIP_WBITS, max_size, "gzip",
                        multi_member=True)


def _inflate(body: bytes, max_size: int) -> bytes:
    # servers disagree on whether "deflate" carries the zlib wrapper
    try:
        return _zlib_stream(body, zlib.MAX_WBITS, max_size, "deflate")
    except zlib.error:
        return _zlib_stream(body, -zlib.MAX_WBITS, max_size, "deflate")


def _unbrotli(body: bytes, max_size: int) -> bytes:
    decomp = brotli.Decompressor()
    out    = bytearray(decomp.process(body, output_buffer_limit=_STEP))
    _check_size(out, max_size, "br")
    while not decomp.is_finished() and not decomp.can_accept_more_data():
        out += decomp.process(b"", output_buffer_limit=_STEP)
        _check_size(out, max_size, "br")
    if not decomp.is_finished():
        raise EOFError("truncated br stream")
    return bytes(out)


_DECODERS = {
    "gzip":    _gunzip,
    "x-gzip":  _gunzip,
    "deflate": _inflate,
    "br":      _unbrotli,
}


def decode_for_inspection(body: bytes, content_encoding: str | None,
                          max_size: int = Settings.MAX_BODY_SIZE
                          ) -> bytes | None:
    """
    Return *body* with every listed content coding removed.

    Codings are undone last-applied first.  Returns ``None`` when a
    coding is unknown or the data does not decompress.

    Raises
    ------
    BodyTooLarge
        Some decoding step produced more than *max_size* bytes.
    """
    if not content_encoding:
        return body

    codings = [
        c.strip().lower() for c in content_encoding.split(",") if c.strip()
    ]
    data = body
    for coding in reversed(codings):
        if coding == "identity":
            continue
        decoder = _DECODERS.get(coding)
        if decoder is None:
            logger.debug("No decoder for content coding %r", coding)
            return None
        try:
            data = decoder(data, max_size)
        except (EOFError, zlib.error, brotli.error) as exc:
            logger.debug("Could not undo %s coding: %s", coding, exc)
            return None
    return data


def is_encoded(content_encoding: str | None) -> bool:
    if not content_encoding:
        return False
    return any(
        c.strip().lower() not in ("", "identity")
        for c in content_encoding.split(",")
    )
