from __future__ import annotations

from .cli import run


def main() -> int:
    """Entry point for running the hearing screening from the command line."""
    return run()


if __name__ == "__main__":
    raise SystemExit(main())
