"""
Kestrel - terminal AI coding assistant

Provider configuration entry point:
    pip install -e .
    kestrel models
"""

from kestrel.cli.cli import main

if __name__ == "__main__":
    main()
