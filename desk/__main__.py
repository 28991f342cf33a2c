#!/usr/bin/env python3
"""
Entry point for the desk CLI.

Run with: python -m desk
"""

from .cli import cli

if __name__ == '__main__':
    cli()
