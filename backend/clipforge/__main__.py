"""CLI entry point for python -m clipforge"""
from clipforge.cli.commands import app

if __name__ == "__main__":
    app()
