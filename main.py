#!/usr/bin/env python3
"""
capsize - Main Entry Point
Compress videos, audio and images so each output fits a byte-size ceiling

Usage mirrors the installed `capsize` console script, e.g.:
    python main.py compress clip.mp4 -t 8MB
    python main.py compress talk.webm -t 25MB -m segmented --detect-boundaries
"""

import sys
import os

# Force UTF-8 encoding for console output
if sys.platform.startswith('win'):
    if hasattr(sys.stdout, 'reconfigure'):
        sys.stdout.reconfigure(encoding='utf-8')
    if hasattr(sys.stderr, 'reconfigure'):
        sys.stderr.reconfigure(encoding='utf-8')

# Allow running from a source checkout without installing
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from capsize.cli import main

if __name__ == '__main__':
    main()
