"""Local deterministic agent for CLI backend tests and demos.

Prints the content of `--response-file` when given, otherwise echoes the
prompt back.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", required=True)
    parser.add_argument("--response-file", default=None)
    parser.add_argument("--exit-code", type=int, default=0)
    args = parser.parse_args(argv)

    prompt = Path(args.prompt_file).read_text("utf-8")
    if args.exit_code:
        sys.stderr.write("echo agent: simulated failure\n")
        return args.exit_code
    if args.response_file:
        sys.stdout.write(Path(args.response_file).read_text("utf-8"))
    else:
        sys.stdout.write(prompt)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
