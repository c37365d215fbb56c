"""``python -m cqm_cli`` and ``cqm`` console script."""

import sys


def main() -> int:
    from .main import main as cli_main

    return cli_main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(main())
