"""
Entry point for the chatstream terminal client.

Usage:
    python -m chatstream.client
    python -m chatstream.client --config chatstream.yaml
"""

import sys
from .terminal import main

if __name__ == "__main__":
    sys.exit(main())
