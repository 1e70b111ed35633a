def xor(a: bytes, b: bytes) -> bytes:
    return bytes([x ^ y for x, y in zip(a, b)])

def split_blocks(data: bytes, block_size: int) -> list[bytes]:
    return [bytes(data[i : i + block_size]) for i in range(0, len(data), block_size)]

def join_blocks(blocks: list[bytes]) -> bytes:
    return b"".join(blocks)
