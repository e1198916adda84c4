#!/usr/bin/env python3
"""Entry point for running the recording bot as a module."""

from meet_recorder.main import cli

if __name__ == "__main__":
    cli()
