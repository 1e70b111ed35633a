"""
Encrypts a message, then recovers it again knowing nothing but whether the padding of chosen
ciphertexts is correct.
"""

from argparse import ArgumentParser, BooleanOptionalAction
import base64
import sys

from Crypto.Util.Padding import unpad

from . import config
from .attack import PaddingOracleAttack
from .errors import OracleInconsistencyError, PaddingOracleError
from .oracle import CbcOracle
from .remote import HttpOracle, RemoteOracle, TcpOracle


def build_oracle(args):
    if args.tcp:
        host, port = args.tcp
        return TcpOracle(host, int(port), block_size=args.block_size)
    if args.http:
        return HttpOracle(args.http, block_size=args.block_size)
    return CbcOracle()


def target_ciphertext(oracle, message: str | None) -> bytes:
    if isinstance(oracle, RemoteOracle):
        return oracle.ciphertext()

    if message is None:
        message = input(f"Your message to be encoded (has to be longer than {oracle.block_size} bytes): ")
    return oracle.encrypt(message)


def main(argv=None):
    arg_parser = ArgumentParser(description="CBC padding oracle attack demo")
    arg_parser.add_argument("-m", help="message to encrypt and recover, asked for if missing")
    target = arg_parser.add_mutually_exclusive_group()
    target.add_argument("--tcp", nargs=2, metavar=("HOST", "PORT"), help="attack a padoracle-server")
    target.add_argument("--http", metavar="URL", help="attack a padoracle-server --http")
    arg_parser.add_argument("--block-size", type=int, default=config.BLOCK_SIZE)
    arg_parser.add_argument("--workers", type=int, default=1, help="blocks attacked at once")
    arg_parser.add_argument("--probe-workers", type=int, default=1, help="candidate bytes queried at once")
    arg_parser.add_argument(
        "--strict",
        action=BooleanOptionalAction,
        default=True,
        help="double check the last byte of every block",
    )
    arg_parser.add_argument("--timeout", type=float, default=None)
    arg_parser.add_argument("--debug", action="store_true")
    args = arg_parser.parse_args(argv)

    config.configure_logging(args.debug)

    oracle = build_oracle(args)
    block_size = args.block_size
    try:
        ciphertext = target_ciphertext(oracle, args.m)
        print("-" * 62)
        print(f"Encrypted message: {base64.b64encode(ciphertext).decode()}")

        attack = PaddingOracleAttack(
            oracle,
            block_size,
            workers=args.workers,
            probe_workers=args.probe_workers,
            strict=args.strict,
        )
        recovered = attack.recover(ciphertext, timeout=args.timeout)
    except PaddingOracleError as e:
        print(f"Attack failed: {e}")
        if isinstance(e, OracleInconsistencyError) and not args.strict:
            print("A block ending in 02 02 (or 03 03 03, ...) can fool the last byte, try again with --strict")
        return 1
    finally:
        if isinstance(oracle, RemoteOracle):
            oracle.close()

    try:
        recovered = unpad(recovered, block_size)
    except ValueError:
        # Only happens if the last block came back wrong, show it as it is
        pass

    print("-" * 62)
    print(f"Decrypted message: {recovered[block_size:].decode(errors='replace')}")
    print(f"Oracle queries: {attack.queries}")
    print("=" * 62)
    print(f"First {block_size} byte block is not decrypted because the IV is unknown.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
