"""Allow running as: python -m eor_quotes"""

import sys

from eor_quotes.main import main

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
