"""
A vulnerable decryption service to run the attack against.

It announces an encrypted secret, then decrypts whatever hex ciphertext it is sent and tells the
sender whether the decryption succeeded. That answer is the padding oracle.
"""

from socketserver import ThreadingTCPServer, StreamRequestHandler
from argparse import ArgumentParser
import logging
import os
import sys

from flask import Flask, abort

from . import config
from .oracle import CbcOracle

log = logging.getLogger(__name__)

VALID_REPLY = "Thank you for your question."
INVALID_REPLY = "Decryption error."
MALFORMED_REPLY = "Input is not properly formatted in hex."


class OracleTCPHandler(StreamRequestHandler):
    def send(self, line: str):
        self.wfile.write(line.encode() + b"\n")

    def handle(self):
        oracle = self.server.oracle

        self.send("SECRET ANNOUNCEMENT:")
        self.send(self.server.ciphertext.hex())
        self.send("")
        self.send("Please ask any questions that you have.")
        self.send("All questions must be encrypted for security and formatted in hex.")
        self.send("Enter \"exit\" to exit.")

        num_requests = 0
        while num_requests < self.server.request_limit:
            self.wfile.write(b"> ")
            line = self.rfile.readline()
            if not line:
                break
            inp = line.decode(errors="replace").strip()
            if inp == "exit":
                break
            num_requests += 1

            try:
                inp = bytes.fromhex(inp)
                is_correct_padding = oracle.try_decrypt(inp)
            except ValueError:
                # Not hex, or not a whole number of blocks
                self.send(MALFORMED_REPLY)
                continue

            self.send(VALID_REPLY if is_correct_padding else INVALID_REPLY)

        log.debug("%s disconnected after %d requests", self.client_address[0], num_requests)


class OracleTCPServer(ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True # Allow rapid server restart

    def __init__(self, address, oracle: CbcOracle, ciphertext: bytes, request_limit: int = config.REQUEST_LIMIT):
        self.oracle = oracle
        self.ciphertext = ciphertext
        self.request_limit = request_limit
        super().__init__(address, OracleTCPHandler)


def create_app(oracle: CbcOracle, ciphertext: bytes) -> Flask:
    app = Flask(__name__)

    @app.get("/ciphertext")
    def get_ciphertext():
        return ciphertext.hex()

    @app.get("/oracle/<probe>")
    def query(probe: str):
        try:
            is_correct_padding = oracle.try_decrypt(bytes.fromhex(probe))
        except ValueError:
            abort(400)
        if not is_correct_padding:
            return (INVALID_REPLY, 403)
        return VALID_REPLY

    return app


def load_oracle() -> CbcOracle:
    key = os.environ.get("ORACLE_KEY")
    return CbcOracle(key=bytes.fromhex(key) if key else None)


def main(argv=None):
    arg_parser = ArgumentParser(description="Serve a CBC padding oracle")
    arg_parser.add_argument("-a", default="0.0.0.0") # Listening address
    arg_parser.add_argument("-p", required=True, type=int) # Listening port
    arg_parser.add_argument("-m", default=os.environ.get("MESSAGE")) # Secret message
    arg_parser.add_argument("--http", action="store_true", help="serve over HTTP instead of raw TCP")
    arg_parser.add_argument("--debug", action="store_true")
    args = arg_parser.parse_args(argv)

    config.configure_logging(args.debug)

    if args.m is None:
        print("MESSAGE environment variable not set!")
        return 1

    oracle = load_oracle()
    ciphertext = oracle.encrypt(args.m)
    log.info("Serving %d byte ciphertext on %s:%d", len(ciphertext), args.a, args.p)

    if args.http:
        create_app(oracle, ciphertext).run(host=args.a, port=args.p, threaded=True)
        return 0

    server = OracleTCPServer((args.a, args.p), oracle, ciphertext)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
