"""Module entrypoint for the price tracker smoke client."""

from price_tracker.services.client.main import main

if __name__ == "__main__":
    raise SystemExit(main())
