"""
Padding oracles and the adapter the attack queries them through.

An oracle is anything with a try_decrypt(probe) method that answers whether the probe decrypts to
validly PKCS#7 padded plaintext. It may also expose a block_size attribute, which the attack checks
against its own. An oracle with a true cancellable attribute also takes a cancelled
keyword, a threading.Event set when the recovery is cancelled or times out.
"""

import threading
import time
from typing import Protocol

from Crypto.Cipher import AES, DES3
from Crypto.Random import get_random_bytes
from Crypto.Util.Padding import pad, unpad

from .errors import AttackCancelledError, InvalidInputError, OraclePaddingInvalid


class PaddingOracle(Protocol):
    def try_decrypt(self, probe: bytes) -> bool:
        ...


def random_key(cipher) -> bytes:
    if cipher is DES3:
        # Retry until the key is not degenerate (K1 == K2 or K2 == K3)
        while True:
            try:
                return DES3.adjust_key_parity(get_random_bytes(24))
            except ValueError:
                continue
    return get_random_bytes(cipher.key_size[-1])


class CbcOracle:
    """
    A vulnerable decryption service running locally. The key and IV stay inside; callers only
    learn whether the padding of a decrypted ciphertext was correct.

    cipher is a pycryptodome block cipher module with CBC support, AES by default.
    """

    def __init__(self, key: bytes | None = None, iv: bytes | None = None, cipher=AES):
        self.cipher = cipher
        self.block_size = cipher.block_size
        self.key = key if key is not None else random_key(cipher)
        self.iv = iv if iv is not None else get_random_bytes(cipher.block_size)

    def _new(self):
        return self.cipher.new(self.key, self.cipher.MODE_CBC, iv=self.iv)

    def encrypt(self, message: str | bytes) -> bytes:
        if isinstance(message, str):
            message = message.encode()
        return self._new().encrypt(pad(message, self.block_size))

    def decrypt(self, ciphertext: bytes) -> bytes:
        res = self._new().decrypt(ciphertext)
        res = unpad(res, self.block_size)
        return res

    def try_decrypt(self, probe: bytes) -> bool:
        if not probe or len(probe) % self.block_size != 0:
            raise InvalidInputError(f"Probe of length {len(probe)} is not a multiple of {self.block_size}")
        try:
            self.decrypt(probe)
        except ValueError:
            return False
        return True


class OracleAdapter:
    """
    Wraps an oracle for the duration of one recovery. Every query goes through here so it can be
    counted, checked for the right length and aborted when the recovery is cancelled.
    """

    def __init__(self, oracle: PaddingOracle, block_size: int, timeout: float | None = None):
        self.oracle = oracle
        self.block_size = block_size
        self.queries = 0
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._deadline = None
        self._timer = None
        if timeout is not None:
            self._deadline = time.monotonic() + timeout
            # Wakes up remote oracles waiting out a retry when the deadline passes
            self._timer = threading.Timer(timeout, self._cancelled.set)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self):
        self._cancelled.set()

    def close(self):
        if self._timer is not None:
            self._timer.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def query(self, probe: bytes) -> bool:
        if len(probe) != 2 * self.block_size:
            raise InvalidInputError(f"Probe must be {2 * self.block_size} bytes, got {len(probe)}")
        if self._deadline is not None and time.monotonic() > self._deadline:
            self._cancelled.set()
            raise AttackCancelledError("Recovery timed out")
        if self._cancelled.is_set():
            raise AttackCancelledError("Recovery cancelled")

        with self._lock:
            self.queries += 1
        try:
            if getattr(self.oracle, "cancellable", False):
                return bool(self.oracle.try_decrypt(probe, cancelled=self._cancelled))
            return bool(self.oracle.try_decrypt(probe))
        except OraclePaddingInvalid:
            return False
