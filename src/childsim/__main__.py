"""
Run ChildSim in the terminal.

Usage:
    python -m childsim [--provider deepseek] [--no-stream] [--debug]
"""

from .interface.cli import main


if __name__ == "__main__":
    main()
