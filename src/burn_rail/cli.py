"""
Burn Rail CLI

Commands:
  serve         - Run the HTTP server with background jobs
  settle        - Run one settlement batch now
  stats         - Show ledger and settlement totals
  price         - Fetch and show the token price
  check-config  - Validate environment settings
  generate-key  - Create and store an encrypted settlement keypair
"""

import argparse
import sys
from decimal import Decimal

from .config import Settings
from .core.errors import BurnRailError
from .logging_config import configure_logging


def _runtime(settings: Settings):
    from .runtime import BurnRailRuntime

    runtime = BurnRailRuntime(settings)
    runtime.start(background_jobs=False)
    return runtime


def cmd_serve(args, settings: Settings):
    """Run the HTTP server."""
    import uvicorn
    from .api.server import create_app
    from .runtime import BurnRailRuntime

    port = args.port or settings.port
    print(f"Starting Burn Rail on {args.host}:{port}")

    uvicorn.run(create_app(BurnRailRuntime(settings)), host=args.host, port=port)


def cmd_settle(args, settings: Settings):
    """Run one settlement batch."""
    runtime = _runtime(settings)
    try:
        result = runtime.settlement.trigger_now()
    finally:
        runtime.shutdown()

    if not result.settled:
        print(f"Nothing settled: {result.reason}")
        return

    print("Settlement confirmed")
    print(f"  Records: {result.record_count}")
    print(f"  Total: {result.total_tokens}")
    print(f"  Burned: {result.burn_amount}")
    print(f"  Treasury: {result.treasury_amount}")
    print(f"  Tx: {result.tx_hash}")


def cmd_stats(args, settings: Settings):
    """Show ledger and settlement totals."""
    runtime = _runtime(settings)
    try:
        ledger = runtime.ledger.total_stats()
        settlement = runtime.settlement.stats()
    finally:
        runtime.shutdown()

    print("Burn Rail Stats")
    print("=" * 40)
    print(f"Users: {ledger['total_users']}")
    print(f"Total Deposited: {ledger['total_deposited']}")
    print(f"Total Consumed: {ledger['total_consumed']}")
    print(f"Settlements: {settlement['settlements']}")
    print(f"Total Burned: {settlement['total_burned']}")
    print(f"Total To Treasury: {settlement['total_to_treasury']}")
    print(f"Pending Settlement: {settlement['pending_settlement']}")


def cmd_price(args, settings: Settings):
    """Fetch the current token price."""
    from .pricing.feed import JupiterPriceFeed

    feed = JupiterPriceFeed(
        api_url=settings.jupiter_api_url,
        token_mint_address=settings.token_mint_address,
        api_key=settings.jupiter_api_key,
        timeout=settings.price_fetch_timeout_seconds,
    )
    try:
        price = feed.fetch_price()
    finally:
        feed.close()

    print(f"Token price: ${price}")
    if args.usd is not None:
        print(f"  ${args.usd} = {args.usd / price} tokens (before burn bounds)")


def cmd_check_config(args, settings: Settings):
    """Validate settings."""
    errors, warnings = settings.validate()

    print("Configuration")
    print("=" * 40)
    print(f"Database: {settings.database_url.split('://')[0]}")
    print(f"RPC endpoints: {len(settings.rpc_endpoints)}")
    print(f"Token mint: {settings.token_mint_address or '(not set)'}")
    print(f"Treasury: {settings.treasury_wallet_address or '(not set)'}")

    for message in errors:
        print(f"ERROR: {message}")
    for message in warnings:
        print(f"WARNING: {message}")

    if errors:
        sys.exit(1)
    print("Configuration valid")


def cmd_generate_key(args, settings: Settings):
    """Generate a settlement keypair and store it encrypted."""
    from solders.keypair import Keypair
    from .chain.keys import SettlementKeyStore

    store = SettlementKeyStore(
        storage_path=settings.key_storage_path,
        master_secret=settings.key_master_secret,
    )
    if store.key_file.exists() and not args.force:
        print(f"Error: {store.key_file} exists (use --force to replace)")
        sys.exit(1)

    keypair = Keypair()
    path = store.store_keypair(keypair)
    print(f"Settlement key stored: {path}")
    print(f"  Public key: {keypair.pubkey()}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Burn Rail - token billing and burn settlement",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the server")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=None)

    subparsers.add_parser("settle", help="Run one settlement batch")
    subparsers.add_parser("stats", help="Show ledger and settlement totals")

    # price
    price_parser = subparsers.add_parser("price", help="Fetch the token price")
    price_parser.add_argument("--usd", type=Decimal, default=None,
                              help="Convert a USD cost to tokens")

    subparsers.add_parser("check-config", help="Validate environment settings")

    # generate-key
    key_parser = subparsers.add_parser("generate-key", help="Create a settlement keypair")
    key_parser.add_argument("--force", action="store_true")

    args = parser.parse_args(argv)

    commands = {
        "serve": cmd_serve,
        "settle": cmd_settle,
        "stats": cmd_stats,
        "price": cmd_price,
        "check-config": cmd_check_config,
        "generate-key": cmd_generate_key,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return

    settings = Settings.from_env()
    configure_logging(json_logs=settings.log_json, level=settings.log_level)

    try:
        command(args, settings)
    except BurnRailError as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
