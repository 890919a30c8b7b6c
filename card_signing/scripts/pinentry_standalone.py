#!/usr/bin/env python3
"""Pinentry replacement answering passphrase requests from the environment."""

import os
import sys

from card_signing.lib.pinentry import PASSPHRASE_ENV, PinentryServer


def main() -> int:
    """Serve the pinentry protocol on stdin/stdout.

    Returns:
        Exit code (always 0; errors are reported over the protocol)
    """
    server = PinentryServer(os.environ.get(PASSPHRASE_ENV))
    for response in server.serve(sys.stdin):
        sys.stdout.write(response + "\n")
        sys.stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
