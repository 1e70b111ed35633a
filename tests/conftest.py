import pytest
from Crypto.Util.Padding import pad, unpad

from padoracle.blocks import join_blocks, split_blocks, xor
from padoracle.oracle import CbcOracle

KEY = bytes.fromhex("603deb1015ca71be2b73aef0857d77811f352c073b6108d72d9810a30914dff4")
IV = bytes.fromhex("000102030405060708090a0b0c0d0e0f")


class XorCipherOracle:
    """
    CBC over a block "cipher" that just XORs with the key, so D(C) = C ^ key can be worked out by
    hand. Only useful for building exact padding situations in tests.
    """

    def __init__(self, key: bytes, iv: bytes | None = None):
        self.key = key
        self.block_size = len(key)
        self.iv = iv if iv is not None else bytes(self.block_size)
        self.queries = 0

    def encrypt_blocks(self, plaintext: bytes) -> bytes:
        prev = self.iv
        res = []
        for block in split_blocks(plaintext, self.block_size):
            prev = xor(xor(block, prev), self.key)
            res.append(prev)
        return join_blocks(res)

    def encrypt(self, message: bytes) -> bytes:
        return self.encrypt_blocks(pad(message, self.block_size))

    def try_decrypt(self, probe: bytes) -> bool:
        self.queries += 1
        prev = self.iv
        res = []
        for block in split_blocks(probe, self.block_size):
            res.append(xor(xor(block, self.key), prev))
            prev = block
        try:
            unpad(join_blocks(res), self.block_size)
        except ValueError:
            return False
        return True


class CountingOracle:
    def __init__(self, oracle):
        self.oracle = oracle
        self.block_size = oracle.block_size
        self.queries = 0

    def try_decrypt(self, probe: bytes) -> bool:
        self.queries += 1
        return self.oracle.try_decrypt(probe)


@pytest.fixture
def aes_oracle():
    return CbcOracle(key=KEY, iv=IV)


@pytest.fixture
def counting_oracle(aes_oracle):
    return CountingOracle(aes_oracle)
