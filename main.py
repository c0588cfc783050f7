# main.py
import argparse
import asyncio
import sys
from typing import List, Optional

import config
from balances import check_all_wallets
from farmer import Farmer
from logger import get_logger
from transaction_logger import TransactionLogger
from utils import WalletFileError, get_w3_with_retry, load_wallets

logger = get_logger("Main", config.LOG_LEVEL)

ASCII_BANNER = r"""
 __  __  ___  _   _    _    ____    _____ _    ____  __  __ _____ ____
|  \/  |/ _ \| \ | |  / \  |  _ \  |  ___/ \  |  _ \|  \/  | ____|  _ \
| |\/| | | | |  \| | / _ \ | | | | | |_ / _ \ | |_) | |\/| |  _| | |_) |
| |  | | |_| | |\  |/ ___ \| |_| | |  _/ ___ \|  _ <| |  | | |___|  _ <
|_|  |_|\___/|_| \_/_/   \_\____/  |_|/_/   \_\_| \_\_|  |_|_____|_| \_\
"""

COMMANDS = ("farm", "balances", "rpc", "-h", "--help")


def print_banner() -> None:
    print(ASCII_BANNER)
    print("Monad Testnet multi-wallet executor\n")


def check_rpc() -> None:
    """Checks availability of RPC nodes and reports chain_id match"""
    print("Checking RPC connectivity...\n")
    for rpc_url in config.RPC_LIST:
        try:
            w3 = get_w3_with_retry(rpc_url, None)
            chain_id = w3.eth.chain_id if w3 else "N/A"
            status = "OK" if chain_id == config.CHAIN_ID else "FAIL"
            print(f"{rpc_url}: {status} (chain_id: {chain_id})")
        except Exception as e:
            print(f"{rpc_url}: ERROR ({e})")
    print()


def print_summary(tx_logger: TransactionLogger) -> None:
    summary = tx_logger.summary()
    print(f"\nTotal log entries: {summary.total_transactions}")
    print(f"Wallets used: {summary.wallets_used}")
    if summary.module_stats:
        print(f"{'Module':<12}{'Total':>7}{'Success':>9}{'Error':>7}{'Rate':>10}")
        for name, stats in summary.module_stats.items():
            print(f"{name:<12}{stats.total:>7}{stats.success:>9}{stats.error:>7}{stats.success_rate:>10}")
    print()


async def farm(args: argparse.Namespace) -> int:
    wallets = load_wallets(args.wallets)
    if not wallets:
        logger.error(f"No valid wallets found in {args.wallets}")
        return 1

    tx_logger = TransactionLogger(config.TX_LOG_FILE)
    farmer = Farmer(tx_logger)
    report = await farmer.run(
        wallets,
        args.modules,
        loop_count=args.loops,
        random_wallet_order=args.random_wallets,
        random_module_order=args.random_modules,
    )

    print_summary(tx_logger)
    csv_path = tx_logger.export_csv()
    if csv_path:
        logger.info(f"Transaction history exported to {csv_path}")
    return 0 if report.failed == 0 else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Monad testnet multi-wallet farmer")
    sub = parser.add_subparsers(dest="command")

    farm_parser = sub.add_parser("farm", help="run modules for every wallet (default)")
    farm_parser.add_argument("--wallets", default=config.WALLETS_FILE)
    farm_parser.add_argument("--modules", nargs="+", default=list(config.ENABLED_MODULES))
    farm_parser.add_argument("--loops", type=int, default=config.LOOP_COUNT)
    farm_parser.add_argument("--random-wallets", action="store_true", default=config.RANDOM_WALLET_ORDER)
    farm_parser.add_argument("--random-modules", action="store_true", default=config.RANDOM_MODULE_ORDER)

    balances_parser = sub.add_parser("balances", help="check wallet balances")
    balances_parser.add_argument("--wallets", default=config.WALLETS_FILE)

    sub.add_parser("rpc", help="check RPC connectivity")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] not in COMMANDS:
        argv = ["farm"] + argv
    args = build_parser().parse_args(argv)

    print_banner()
    try:
        if args.command == "rpc":
            check_rpc()
            return 0
        if args.command == "balances":
            check_all_wallets(load_wallets(args.wallets))
            return 0
        return asyncio.run(farm(args))
    except WalletFileError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting...")
        return 130


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
