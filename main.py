#!/usr/bin/env python3
"""
Parallax - Screen Translation Overlay
Captures the screen, recognizes text and draws translations in place.
"""

from parallax.app import main

if __name__ == "__main__":
    main()
