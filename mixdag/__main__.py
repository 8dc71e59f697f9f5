# FILE: mixdag/__main__.py
# =============================================================================
# Package entrypoint — enables `python -m mixdag` to launch the Typer CLI.
#   python -m mixdag --help
#   python -m mixdag run -c configs/mdag.yaml --data data.csv
# =============================================================================

from __future__ import annotations

import sys


def _run() -> int:
    # Imported here so that CLI-only dependencies are not needed to import the package.
    from mixdag.cli import main as _cli_main

    _cli_main()
    return 0


if __name__ == "__main__":
    sys.exit(_run())
