"""Entry point for python -m valu_api."""

from .cli import main

if __name__ == "__main__":
    main()
