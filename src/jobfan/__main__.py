"""
Module entry point for: python -m jobfan
"""

import sys

from jobfan.cli import main

if __name__ == "__main__":
    sys.exit(main())
