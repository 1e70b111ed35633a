"""
Exceptions raised while attacking a padding oracle.
"""


class PaddingOracleError(Exception):
    """Base class for every failure of an attack."""


class InvalidInputError(PaddingOracleError, ValueError):
    """
    Raised when the ciphertext, a probe or the block size is malformed. Raised before any oracle
    query is made and never retried.
    """


class OracleTransportError(PaddingOracleError):
    """
    Raised when a remote oracle could not be reached after all retries. This is never the same as
    the oracle reporting bad padding.
    """


class OracleInconsistencyError(PaddingOracleError):
    """Raised when no candidate byte out of 256 produced valid padding."""

    def __init__(self, pad_len: int, block: bytes):
        self.pad_len = pad_len
        self.block = block
        super().__init__(f"No candidate gave valid padding {pad_len} for block {block.hex()}")


class AttackCancelledError(PaddingOracleError):
    """Raised when a recovery is cancelled or runs past its deadline."""


class OraclePaddingInvalid(Exception):
    """
    An oracle may raise this from try_decrypt instead of returning False. It is the negative
    answer of the oracle, not a failure, so it does not derive from PaddingOracleError.
    """
