"""Module entrypoint for ``python -m bepoz_toolkit``."""

from __future__ import annotations

from bepoz_toolkit.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
