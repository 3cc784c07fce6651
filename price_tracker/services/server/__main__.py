"""Module entrypoint for running the price tracker server."""

from price_tracker.services.server.main import main

if __name__ == "__main__":
    raise SystemExit(main())
