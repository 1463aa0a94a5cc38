"""
Allows running with: python -m pirate_radio
"""

import sys

from pirate_radio.app.radio import main

if __name__ == "__main__":
    sys.exit(main())
