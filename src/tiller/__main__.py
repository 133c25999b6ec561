"""Allow ``python -m tiller``; also the command workers are spawned with."""

from tiller.cli import app

if __name__ == "__main__":
    app()
