"""
CBC padding oracle attack: recover plaintext from CBC ciphertext given only an oracle that says
whether a chosen ciphertext decrypts to correctly padded plaintext.
"""

from .attack import PaddingOracleAttack, recover_plaintext
from .errors import (
    AttackCancelledError,
    InvalidInputError,
    OracleInconsistencyError,
    OraclePaddingInvalid,
    OracleTransportError,
    PaddingOracleError,
)
from .oracle import CbcOracle, OracleAdapter, PaddingOracle

__all__ = [
    "AttackCancelledError",
    "CbcOracle",
    "InvalidInputError",
    "OracleAdapter",
    "OracleInconsistencyError",
    "OraclePaddingInvalid",
    "OracleTransportError",
    "PaddingOracle",
    "PaddingOracleAttack",
    "PaddingOracleError",
    "recover_plaintext",
]
