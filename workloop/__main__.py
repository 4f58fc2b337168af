"""Allow ``python -m workloop``."""

from workloop.cli.cli import app

if __name__ == "__main__":
    app()
