"""
Main entry point for mediashrink when run from a source checkout.

Equivalent to the installed `mediashrink` console script.
"""
import sys

from mediashrink.app import main

if __name__ == "__main__":
    sys.exit(main())
