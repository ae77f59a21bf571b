#!/usr/bin/env python3
"""Main entry point for git smash when run as python -m gitsmash."""

from .cli import main

if __name__ == "__main__":
    main()
