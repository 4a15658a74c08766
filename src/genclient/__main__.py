"""genclient CLI bootstrap."""

from __future__ import annotations

from genclient.cli import app

if __name__ == "__main__":
    app()
