"""
Entry point for running the armtoolchain CLI as a module.

Usage: python -m armtoolchain [command] [options]
"""

from armtoolchain.cli.parser import main

if __name__ == "__main__":
    main()
