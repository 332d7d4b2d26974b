"""Run the imgcdn command line with ``python -m imgcdn``."""

from .cli import main

if __name__ == "__main__":  # pragma: no cover
    main()
