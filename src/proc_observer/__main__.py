"""proc-observer entry point.

Supports: python -m proc_observer
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
