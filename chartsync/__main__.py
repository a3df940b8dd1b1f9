"""Entry point: python -m chartsync"""
from __future__ import annotations

import asyncio
import sys

from chartsync.main import ChartSyncService


def main() -> None:
    service = ChartSyncService()
    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        print("\nChartSync shutting down.")
        sys.exit(0)


if __name__ == "__main__":
    main()
