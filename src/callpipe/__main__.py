"""callpipe CLI bootstrap."""

from callpipe.cli import app

if __name__ == "__main__":
    app()
