# balances.py
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional, Sequence

from eth_account import Account
from web3 import Web3

import config
from logger import get_logger
from utils import WalletData, connect_to_rpc, normalize_private_key, shorten_address

logger = get_logger("Balances", config.LOG_LEVEL)


@dataclass(frozen=True)
class WalletBalance:
    index: int
    address: Optional[str]
    balance_wei: int
    has_proxy: bool
    error: Optional[str] = None

    @property
    def balance_eth(self) -> Decimal:
        return Web3.from_wei(self.balance_wei, "ether")


def get_wallet_balance(wallet: WalletData, connect: Callable[[Optional[str]], Web3] = connect_to_rpc,
                       use_proxy: bool = config.USE_PROXY) -> WalletBalance:
    try:
        address = Account.from_key(normalize_private_key(wallet.private_key)).address
    except Exception as e:
        return WalletBalance(wallet.index, None, 0, bool(wallet.proxy), f"Invalid private key: {e}")
    try:
        w3 = connect(wallet.proxy if use_proxy else None)
        balance = w3.eth.get_balance(address)
    except Exception as e:
        logger.warning(f"Wallet #{wallet.index} ({shorten_address(address)}): balance check failed: {e}")
        return WalletBalance(wallet.index, address, 0, bool(wallet.proxy), str(e))
    return WalletBalance(wallet.index, address, int(balance), bool(wallet.proxy))


def check_all_wallets(wallets: Sequence[WalletData], connect: Callable[[Optional[str]], Web3] = connect_to_rpc,
                      use_proxy: bool = config.USE_PROXY) -> List[WalletBalance]:
    """Fetches every wallet's balance and logs a report with low-balance warnings."""
    logger.info(f"Checking balances of {len(wallets)} wallets...")
    results = [get_wallet_balance(w, connect, use_proxy) for w in wallets]

    threshold = Web3.to_wei(config.LOW_BALANCE_THRESHOLD, "ether")
    total = 0
    for r in results:
        if r.error:
            logger.error(f"Wallet #{r.index}: {r.error}")
            continue
        total += r.balance_wei
        line = f"Wallet #{r.index} ({shorten_address(r.address)}): {r.balance_eth} MON{' [proxy]' if r.has_proxy else ''}"
        if r.balance_wei < threshold:
            logger.warning(f"{line} - low balance")
        else:
            logger.info(line)

    ok = [r for r in results if not r.error]
    logger.info(f"Total balance: {Web3.from_wei(total, 'ether')} MON across {len(ok)} wallets")
    return results
