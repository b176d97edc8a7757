"""Entry point for ``python -m splitledger``."""

import asyncio

from splitledger.web import run_server


def main() -> None:
    """Launch the SplitLedger HTTP API."""
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
