"""
Bitfield codec: piece-ownership bitmap <-> hex (tracker) and packed bytes (peer wire)

Bits are packed MSB-first: byte i carries pieces 8i..8i+7, piece 8i in the
highest bit.
"""
from typing import List, Sequence


def encode_binary(bitmap: Sequence[bool]) -> bytes:
    """Packs a bitmap into ceil(len/8) bytes"""
    packed = bytearray((len(bitmap) + 7) // 8)
    for index, owned in enumerate(bitmap):
        if owned:
            packed[index // 8] |= 1 << (7 - index % 8)
    return bytes(packed)


def decode_binary(data: bytes, piece_count: int) -> List[bool]:
    """
    Unpacks a binary bitfield

    Args:
        data: Packed bytes as received on the wire
        piece_count: Number of pieces of the file

    Returns:
        List of length piece_count; pieces beyond the supplied bytes are False
    """
    bitmap = [False] * piece_count
    for index in range(min(piece_count, len(data) * 8)):
        if data[index // 8] & (1 << (7 - index % 8)):
            bitmap[index] = True
    return bitmap


def encode_hex(bitmap: Sequence[bool]) -> str:
    """Uppercase hex rendering of encode_binary, two digits per byte"""
    return encode_binary(bitmap).hex().upper()


def decode_hex(text: str, piece_count: int) -> List[bool]:
    """
    Inverse of encode_hex

    A trailing odd digit is ignored and a malformed byte reads as zero, so
    a damaged string never raises; it just advertises fewer pieces.
    """
    text = text.strip()
    data = bytearray()
    for pos in range(0, len(text) - 1, 2):
        try:
            data.append(int(text[pos:pos + 2], 16))
        except ValueError:
            data.append(0)
    return decode_binary(bytes(data), piece_count)


def count_set(bitmap: Sequence[bool]) -> int:
    return sum(1 for owned in bitmap if owned)
