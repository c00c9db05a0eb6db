"""
Entry point for running the armtoolchain CLI as a module.

Usage: python -m armtoolchain.cli [command] [options]
"""

from .parser import main

if __name__ == "__main__":
    main()
