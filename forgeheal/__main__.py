"""
Entry point for running forgeheal as a module.

Usage:
    python -m forgeheal [command] [args]

This is equivalent to:
    python -m forgeheal.cli.heal_cli [command] [args]
"""

import sys


def main():
    from forgeheal.cli.heal_cli import main as cli_main
    return cli_main()


if __name__ == "__main__":
    sys.exit(main())
