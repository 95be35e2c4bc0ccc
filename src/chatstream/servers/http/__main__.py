"""
Entry point for the chatstream HTTP boundary.

Usage:
    python -m chatstream.servers.http
    python -m chatstream.servers.http --config chatstream.yaml --port 8811
"""

import sys
from .server import main

if __name__ == "__main__":
    sys.exit(main())
