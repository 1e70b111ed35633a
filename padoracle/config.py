import logging
import os

# AES block size, the width every probe is built around unless told otherwise
BLOCK_SIZE = 16

# Max oracle requests served per TCP connection
REQUEST_LIMIT = int(os.environ.get("PADORACLE_REQUEST_LIMIT", 30_000))

# Remote oracle clients
RETRIES = int(os.environ.get("PADORACLE_RETRIES", 3))
BACKOFF = float(os.environ.get("PADORACLE_BACKOFF", 0.5)) # seconds, doubled after every failure
TIMEOUT = float(os.environ.get("PADORACLE_TIMEOUT", 5))
MIN_INTERVAL = float(os.environ.get("PADORACLE_MIN_INTERVAL", 0)) # seconds between requests

LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def configure_logging(debug: bool = False):
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)
