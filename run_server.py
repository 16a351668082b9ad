"""Run the TLS server with settings from flags and ``TLSGATE_*`` variables."""

import sys

from tlsgate.cli import main


if __name__ == "__main__":
    sys.exit(main())
