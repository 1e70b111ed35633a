import pytest
from Crypto.Cipher import DES3
from Crypto.Util.Padding import pad

from padoracle import PaddingOracleAttack, recover_plaintext
from padoracle.blocks import xor
from padoracle.errors import InvalidInputError, OracleInconsistencyError, OraclePaddingInvalid
from padoracle.oracle import CbcOracle

from conftest import CountingOracle, XorCipherOracle

MESSAGE = b"HelloPaddingOracleWorld!"


def test_hello_world(aes_oracle):
    ciphertext = aes_oracle.encrypt(MESSAGE)
    recovered = recover_plaintext(ciphertext, aes_oracle, 16, strict=True)
    assert len(recovered) == len(ciphertext)
    assert recovered[:16] == bytes(16)
    assert recovered[16:] == pad(MESSAGE, 16)[16:]


@pytest.mark.parametrize("length", [16, 31, 40, 63])
def test_round_trip(length):
    oracle = CbcOracle()
    message = bytes((i * 37 + 11) % 256 for i in range(length))
    ciphertext = oracle.encrypt(message)
    recovered = PaddingOracleAttack(oracle, strict=True).recover(ciphertext)
    assert recovered[:16] == bytes(16)
    assert recovered[16:] == pad(message, 16)[16:]


def test_round_trip_des3():
    oracle = CbcOracle(cipher=DES3)
    message = b"DES3 has 8 byte blocks"
    ciphertext = oracle.encrypt(message)
    recovered = recover_plaintext(ciphertext, oracle, 8, strict=True)
    assert recovered[:8] == bytes(8)
    assert recovered[8:] == pad(message, 8)[8:]


def test_block_ending_in_two_twos(aes_oracle):
    # 30 bytes of message leaves 02 02 padding at the end of the last block
    message = b"A" * 30
    ciphertext = aes_oracle.encrypt(message)
    recovered = PaddingOracleAttack(aes_oracle, strict=True).recover(ciphertext)
    assert recovered[16:] == pad(message, 16)[16:]
    assert recovered[-2:] == b"\x02\x02"


def test_deterministic(counting_oracle, aes_oracle):
    ciphertext = aes_oracle.encrypt(MESSAGE)
    attack = PaddingOracleAttack(counting_oracle, strict=True)
    first = attack.recover(ciphertext)
    first_queries = counting_oracle.queries
    second = attack.recover(ciphertext)
    assert first == second
    assert counting_oracle.queries == 2 * first_queries
    assert attack.queries == counting_oracle.queries


def test_minimum_size(aes_oracle):
    ciphertext = aes_oracle.encrypt(b"B" * 20)
    assert len(ciphertext) == 32
    recovered = recover_plaintext(ciphertext, aes_oracle, strict=True)
    assert len(recovered) == 32
    assert recovered[16:] == pad(b"B" * 20, 16)[16:]


def test_single_block_needs_no_queries(counting_oracle):
    recovered = recover_plaintext(bytes(range(16)), counting_oracle)
    assert recovered == bytes(16)
    assert counting_oracle.queries == 0


@pytest.mark.parametrize("length", [17, 15, 1, 0])
def test_invalid_length(counting_oracle, length):
    with pytest.raises(InvalidInputError):
        recover_plaintext(bytes(length), counting_oracle)
    assert counting_oracle.queries == 0


def test_invalid_length_is_value_error(counting_oracle):
    with pytest.raises(ValueError):
        recover_plaintext(bytes(33), counting_oracle)


@pytest.mark.parametrize("block_size", [0, -16, 256])
def test_invalid_block_size(block_size):
    with pytest.raises(InvalidInputError):
        PaddingOracleAttack(object(), block_size)


def test_block_size_must_match_oracle(aes_oracle):
    with pytest.raises(InvalidInputError):
        PaddingOracleAttack(aes_oracle, 8)


def test_oracle_without_block_size():
    class Bare:
        def __init__(self, oracle):
            self.oracle = oracle

        def try_decrypt(self, probe):
            return self.oracle.try_decrypt(probe)

    toy = XorCipherOracle(bytes.fromhex("0badc0de"))
    ciphertext = toy.encrypt(b"no block size attr")
    recovered = recover_plaintext(ciphertext, Bare(toy), 4, strict=True)
    assert recovered[4:] == pad(b"no block size attr", 4)[4:]


def test_oracle_raising_on_bad_padding(aes_oracle):
    class Raising:
        block_size = 16

        def try_decrypt(self, probe):
            if not aes_oracle.try_decrypt(probe):
                raise OraclePaddingInvalid()
            return True

    ciphertext = aes_oracle.encrypt(MESSAGE)
    recovered = recover_plaintext(ciphertext, Raising(), strict=True)
    assert recovered[16:] == pad(MESSAGE, 16)[16:]


def test_never_valid_oracle():
    class Never:
        block_size = 16

        def __init__(self):
            self.queries = 0

        def try_decrypt(self, probe):
            self.queries += 1
            return False

    oracle = Never()
    with pytest.raises(OracleInconsistencyError) as e:
        recover_plaintext(bytes(32), oracle)
    assert e.value.pad_len == 1
    assert e.value.block == bytes(16)
    assert oracle.queries == 256


def test_best_case_query_count():
    oracle = XorCipherOracle(bytes.fromhex("00112233445566778899aabbccddeeff"))
    # D(target)[pos] == pad_len makes candidate 0 the right answer in every round
    intermediate = bytes(range(16, 0, -1))
    target = xor(intermediate, oracle.key)
    previous = bytes(16)
    counting = CountingOracle(oracle)
    plaintext = PaddingOracleAttack(counting, 16).decrypt_block_pair(previous, target)
    assert plaintext == intermediate
    assert counting.queries == 16


def test_worst_case_query_count():
    oracle = XorCipherOracle(bytes.fromhex("00112233445566778899aabbccddeeff"))
    # Only candidate 0xff gives valid padding, in every round
    intermediate = bytes(pad_len ^ 0xFF for pad_len in range(16, 0, -1))
    target = xor(intermediate, oracle.key)
    previous = bytes(16)
    counting = CountingOracle(oracle)
    plaintext = PaddingOracleAttack(counting, 16).decrypt_block_pair(previous, target)
    assert plaintext == intermediate
    assert counting.queries == 16 * 256


def test_query_bound_per_block(counting_oracle, aes_oracle):
    message = b"C" * 40
    ciphertext = aes_oracle.encrypt(message)
    recovered = recover_plaintext(ciphertext, counting_oracle, strict=True)
    assert recovered[16:] == pad(message, 16)[16:]
    blocks = len(ciphertext) // 16 - 1
    # Strict mode spends at most two extra queries confirming the last byte
    assert 16 * blocks <= counting_oracle.queries <= (16 * 256 + 2) * blocks


class TestPaddingAmbiguity:
    """
    A plaintext block ending in 02 02. While looking for padding 01, the candidate that turns the
    last byte into 02 also gives valid padding. The intermediate byte is chosen so that wrong
    candidate (0x00) comes before the right one (0x03).
    """

    key = bytes.fromhex("a1b2c3d4")
    intermediate = bytes.fromhex("10203002")
    plaintext = b"AB\x02\x02"

    def setup_method(self):
        self.oracle = XorCipherOracle(self.key)
        self.target = xor(self.intermediate, self.key)
        self.previous = xor(self.intermediate, self.plaintext)

    def test_first_valid_candidate_is_taken_by_default(self):
        attack = PaddingOracleAttack(self.oracle, 4)
        # Taking 0x00 makes the pad 3 round look for a byte that decrypts to 00
        with pytest.raises(OracleInconsistencyError) as e:
            attack.decrypt_block_pair(self.previous, self.target)
        assert e.value.pad_len == 3

    def test_strict_mode_recovers_block(self):
        attack = PaddingOracleAttack(self.oracle, 4, strict=True)
        assert attack.decrypt_block_pair(self.previous, self.target) == self.plaintext

    def test_strict_recover(self):
        recovered = recover_plaintext(self.previous + self.target, self.oracle, 4, strict=True)
        assert recovered == bytes(4) + self.plaintext

    def test_strict_query_count(self):
        counting = CountingOracle(self.oracle)
        PaddingOracleAttack(counting, 4, strict=True).decrypt_block_pair(self.previous, self.target)
        # pad 1: 0x00 valid then rejected, 0x01 and 0x02 invalid, 0x03 valid and confirmed
        pad_1_queries = 6
        # pad 2..4: candidates up to pad_len ^ D(target)[pos], inclusive
        later_queries = (2 ^ 0x30) + 1 + (3 ^ 0x20) + 1 + (4 ^ 0x10) + 1
        assert counting.queries == pad_1_queries + later_queries
