"""
Byte-at-a-time CBC padding oracle attack.

Under CBC, plaintext block P_i = D(C_i) ^ C_{i-1}. Replacing C_{i-1} with a forged block and asking
the oracle whether C'_{i-1} || C_i has valid padding reveals D(C_i) one byte at a time, starting at
the last byte. XORing D(C_i) with the real C_{i-1} then gives P_i. The first block is chained to
the IV, which we never see, so it comes back as zero bytes.
"""

import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait

from . import config
from .blocks import join_blocks, split_blocks, xor
from .errors import AttackCancelledError, InvalidInputError, OracleInconsistencyError
from .oracle import OracleAdapter, PaddingOracle

log = logging.getLogger(__name__)


class PaddingOracleAttack:
    """
    Recovers plaintext from CBC ciphertext using only a padding oracle.

    workers: number of blocks attacked at the same time.
    probe_workers: number of candidate bytes queried at the same time within one round.
    strict: confirm a valid padding found for the last byte by changing the byte before it, so a
        plaintext ending in 02 02 (or 03 03 03, ...) is not mistaken for one ending in 01. Off by
        default, which accepts the first candidate the oracle calls valid.
    """

    def __init__(
        self,
        oracle: PaddingOracle,
        block_size: int = config.BLOCK_SIZE,
        workers: int = 1,
        probe_workers: int = 1,
        strict: bool = False,
    ):
        if not 1 <= block_size <= 255:
            raise InvalidInputError(f"PKCS#7 cannot pad to a block size of {block_size}")
        oracle_block_size = getattr(oracle, "block_size", None)
        if oracle_block_size is not None and oracle_block_size != block_size:
            raise InvalidInputError(f"Oracle uses {oracle_block_size} byte blocks, not {block_size}")
        if workers < 1 or probe_workers < 1:
            raise ValueError("Worker counts must be at least 1")

        self.oracle = oracle
        self.block_size = block_size
        self.workers = workers
        self.probe_workers = probe_workers
        self.strict = strict
        self.queries = 0
        self._active: set[OracleAdapter] = set()
        self._lock = threading.Lock()

    def cancel(self):
        """Abort every recovery currently running on this attack."""
        with self._lock:
            for adapter in self._active:
                adapter.cancel()

    def recover(self, ciphertext: bytes, timeout: float | None = None) -> bytes:
        if not ciphertext or len(ciphertext) % self.block_size != 0:
            raise InvalidInputError(
                f"Ciphertext length {len(ciphertext)} is not a positive multiple of {self.block_size}"
            )

        blocks = split_blocks(ciphertext, self.block_size)
        adapter = OracleAdapter(self.oracle, self.block_size, timeout)
        with self._lock:
            self._active.add(adapter)
        try:
            recovered = self._recover_blocks(blocks, adapter)
        finally:
            adapter.close()
            with self._lock:
                self._active.discard(adapter)
                self.queries += adapter.queries

        log.info("Recovered %d of %d blocks in %d queries", len(recovered), len(blocks), adapter.queries)
        # First block needs the IV
        return join_blocks([bytes(self.block_size)] + recovered)

    def _recover_blocks(self, blocks: list[bytes], adapter: OracleAdapter) -> list[bytes]:
        pairs = list(zip(blocks, blocks[1:]))
        if self.workers == 1 or len(pairs) < 2:
            return [self.decrypt_block_pair(prev, block, adapter) for prev, block in pairs]

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = [executor.submit(self.decrypt_block_pair, prev, block, adapter) for prev, block in pairs]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            if pending:
                # One block failed, stop the others
                adapter.cancel()
                wait(pending)

        errors = [f.exception() for f in futures if f.exception() is not None]
        if errors:
            # Report the failure that caused the cancellation, not the cancellation itself
            root = [e for e in errors if not isinstance(e, AttackCancelledError)]
            raise (root or errors)[0]
        return [f.result() for f in futures]

    def decrypt_block_pair(self, previous: bytes, target: bytes, adapter: OracleAdapter | None = None) -> bytes:
        """
        Recovers the plaintext of target, the block that follows previous in the ciphertext.
        """
        if adapter is None:
            adapter = OracleAdapter(self.oracle, self.block_size)
        size = self.block_size

        # D(target), filled in from the end
        intermediate = bytearray(size)
        # C'_{i-1}, the previous block we send in place of the real one
        forged = bytearray(size)

        executor = ThreadPoolExecutor(max_workers=self.probe_workers) if self.probe_workers > 1 else None
        try:
            for pad_len in range(1, size + 1):
                pos = size - pad_len

                # Bytes after pos should decrypt to pad_len
                for offset in range(1, pad_len):
                    forged[size - offset] = pad_len ^ intermediate[size - offset]

                candidate = self._find_candidate(adapter, executor, previous[:pos], bytes(forged[pos + 1 :]), target, pad_len)
                forged[pos] = candidate
                intermediate[pos] = pad_len ^ candidate
                log.debug("pad_len %d: candidate %#04x, intermediate %#04x", pad_len, candidate, intermediate[pos])
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        return xor(intermediate, previous)

    def _find_candidate(self, adapter, executor, prefix: bytes, suffix: bytes, target: bytes, pad_len: int) -> int:
        """
        Finds the smallest byte x for which prefix || x || suffix || target has valid padding.
        """

        def probe(x: int) -> bytes:
            return prefix + bytes([x]) + suffix + target

        if executor is None:
            for x in range(256):
                if adapter.query(probe(x)) and self._confirm(adapter, probe(x), pad_len):
                    return x
            raise OracleInconsistencyError(pad_len, target)

        # Query a window of candidates at once, but pick the winner in ascending order so the result
        # is the same as the sequential scan
        for start in range(0, 256, self.probe_workers):
            window = range(start, min(start + self.probe_workers, 256))
            results = list(executor.map(lambda x: adapter.query(probe(x)), window))
            for x, is_correct_padding in zip(window, results):
                if is_correct_padding and self._confirm(adapter, probe(x), pad_len):
                    return x
        raise OracleInconsistencyError(pad_len, target)

    def _confirm(self, adapter: OracleAdapter, probe: bytes, pad_len: int) -> bool:
        if not self.strict or pad_len != 1 or self.block_size < 2:
            return True

        # Valid padding 01 doesn't care about the byte before it. Longer paddings do.
        changed = bytearray(probe)
        changed[self.block_size - 2] ^= 1
        return adapter.query(bytes(changed))


def recover_plaintext(
    ciphertext: bytes,
    oracle: PaddingOracle,
    block_size: int = config.BLOCK_SIZE,
    timeout: float | None = None,
    **options,
) -> bytes:
    """
    Recovers every block of ciphertext but the first, which is returned as zero bytes.

    options are passed to PaddingOracleAttack (workers, probe_workers, strict).
    """
    return PaddingOracleAttack(oracle, block_size, **options).recover(ciphertext, timeout=timeout)
