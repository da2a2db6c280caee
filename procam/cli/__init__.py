"""Command-line interface."""

from procam.cli.arguments import parse_arguments

__all__ = [
    "parse_arguments",
]
