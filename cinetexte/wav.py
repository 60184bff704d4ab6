"""
cinetexte/wav.py  ·  raw 24 kHz mono PCM -> playable WAV handle
"""
from __future__ import annotations
import base64, struct

SAMPLE_RATE     = 24000
CHANNELS        = 1
BITS_PER_SAMPLE = 16
BLOCK_ALIGN     = CHANNELS * BITS_PER_SAMPLE // 8
BYTE_RATE       = SAMPLE_RATE * BLOCK_ALIGN
HEADER_SIZE     = 44

# RIFF size, "WAVE", "fmt " chunk (16 bytes, PCM), "data" size; all little-endian
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


def wav_header(data_size: int) -> bytes:
    return _HEADER.pack(
        b"RIFF", 36 + data_size, b"WAVE",
        b"fmt ", 16, 1, CHANNELS, SAMPLE_RATE, BYTE_RATE, BLOCK_ALIGN, BITS_PER_SAMPLE,
        b"data", data_size,
    )


def pcm_to_wav(pcm: bytes) -> bytes:
    return wav_header(len(pcm)) + pcm


def decode_pcm(data: bytes | str) -> bytes:
    """The REST payload carries base64 text; the Python SDK hands back decoded bytes."""
    if isinstance(data, str):
        return base64.b64decode(data)
    return bytes(data)


def wav_data_url(pcm: bytes | str) -> str:
    wav = pcm_to_wav(decode_pcm(pcm))
    return "data:audio/wav;base64," + base64.b64encode(wav).decode("ascii")
