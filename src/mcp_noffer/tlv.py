"""Tag-length-value encoding used inside pointer strings.

Each entry on the wire is:
- Tag (1 byte)
- Length (1 byte): number of value bytes, at most 255
- Value (variable)

Several entries may share a tag. Tags are emitted in the order they were
first inserted, never sorted, so that re-encoding a decoded buffer
reproduces the original bytes.
"""

from mcp_noffer.errors import EncodingError, TruncatedEntry, ValueTooLong


MAX_VALUE_LENGTH = 255

TLV = dict[int, list[bytes]]


def encode_tlv(structure: TLV) -> bytes:
    """Encode a TLV structure into a flat byte buffer.

    Args:
        structure: Mapping of tag to the ordered values stored under it

    Returns:
        Encoded entries, tags in insertion order

    Raises:
        ValueTooLong: If a value exceeds 255 bytes or a tag is out of range
        EncodingError: If a tag has no values, which would not survive decoding
    """
    out = bytearray()
    for tag, values in structure.items():
        if not 0 <= tag <= 0xFF:
            raise ValueTooLong(f"TLV tag out of range: {tag}")
        if not values:
            raise EncodingError(f"TLV tag {tag} has no values")
        for value in values:
            if len(value) > MAX_VALUE_LENGTH:
                raise ValueTooLong(
                    f"TLV value for tag {tag} is {len(value)} bytes "
                    f"(maximum {MAX_VALUE_LENGTH})"
                )
            out.append(tag)
            out.append(len(value))
            out.extend(value)
    return bytes(out)


def decode_tlv(data: bytes) -> TLV:
    """Decode a flat byte buffer into a TLV structure.

    Args:
        data: Encoded TLV entries

    Returns:
        Mapping of tag to values, tags in first-seen order

    Raises:
        TruncatedEntry: If the buffer ends inside an entry
    """
    result: TLV = {}
    pos = 0
    while pos < len(data):
        if pos + 2 > len(data):
            raise TruncatedEntry(f"Truncated TLV header at offset {pos}")
        tag = data[pos]
        length = data[pos + 1]
        pos += 2

        if pos + length > len(data):
            raise TruncatedEntry(
                f"TLV entry {tag} truncated: expected {length} bytes, "
                f"got {len(data) - pos}"
            )
        result.setdefault(tag, []).append(bytes(data[pos:pos + length]))
        pos += length
    return result
