"""Generate a random value for the API_KEY setting."""

from __future__ import annotations

import argparse
import secrets


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate an API key for mutating requests")
    parser.add_argument(
        "--bytes",
        dest="num_bytes",
        type=int,
        default=32,
        help="Number of random bytes to encode (default: 32)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(list(argv) if argv is not None else None)
    if args.num_bytes < 16:
        print("Refusing to generate a key shorter than 16 bytes.")
        return 1

    api_key = secrets.token_urlsafe(args.num_bytes)
    print("Generated API key:")
    print(api_key)
    print("\nSet it as API_KEY for the service and send it in the x-api-key header.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
