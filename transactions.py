# transactions.py
import asyncio
from typing import Any, Dict, Optional, Sequence

from eth_abi import encode as abi_encode
from eth_account.signers.local import LocalAccount
from web3 import Web3

import config
from logger import get_logger
from utils import shorten_address

logger = get_logger("Transactions", config.LOG_LEVEL)


class TransactionRevertedError(RuntimeError):
    """Receipt came back with status 0.

    The hash stays out of the message: error classification matches on the
    message text and a hex hash can contain words like "fee".
    """

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__("execution reverted: transaction failed")


def _strip_selector(selector: str) -> str:
    return selector[2:] if selector.startswith("0x") else selector


def encode_call(selector: str, *uint_args: int) -> str:
    """Calldata for a function taking only uint256 arguments."""
    data = _strip_selector(selector)
    for arg in uint_args:
        data += format(int(arg), "064x")
    return "0x" + data


def encode_abi_call(selector: str, types: Sequence[str], args: Sequence[Any]) -> str:
    """Calldata for a function with arbitrary ABI argument types."""
    return "0x" + _strip_selector(selector) + abi_encode(list(types), list(args)).hex()


def scale_gas_price(gas_price: int, multiplier: float) -> int:
    return int(gas_price) * int(round(multiplier * 100)) // 100


def send_transaction(
    w3: Web3,
    account: LocalAccount,
    tx: Dict[str, Any],
    gas_multiplier: float = 1.0,
    timeout: Optional[int] = None,
) -> Dict[str, Any]:
    """Signs and sends a legacy transaction priced at gas_price * gas_multiplier.

    Blocks until the receipt arrives. Returns ``{"hash": ..., "receipt": ...}``;
    raises TransactionRevertedError if the transaction reverted.
    """
    wallet_short = shorten_address(account.address)
    txn = dict(tx)
    txn["from"] = account.address
    txn["nonce"] = w3.eth.get_transaction_count(account.address)
    txn["gasPrice"] = scale_gas_price(w3.eth.gas_price, gas_multiplier)
    txn["chainId"] = config.CHAIN_ID
    txn.pop("maxFeePerGas", None)
    txn.pop("maxPriorityFeePerGas", None)
    logger.debug(
        f"Wallet {wallet_short}: nonce={txn['nonce']}, gasPrice={txn['gasPrice']} (x{gas_multiplier:.2f})"
    )

    signed_txn = w3.eth.account.sign_transaction(txn, account.key)
    tx_hash = w3.eth.send_raw_transaction(signed_txn.raw_transaction)
    tx_hash_hex = Web3.to_hex(tx_hash)
    logger.info(f"Transaction sent ({wallet_short}), tx: {config.EXPLORER_URL}{tx_hash_hex}")

    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout or config.TX_TIMEOUT)
    if receipt.status != 1:
        logger.warning(f"Transaction reverted ({wallet_short}), tx: {tx_hash_hex}")
        raise TransactionRevertedError(tx_hash_hex)

    logger.info(f"Transaction confirmed ({wallet_short}), tx: {tx_hash_hex}")
    return {"hash": tx_hash_hex, "receipt": receipt}


async def send_transaction_async(
    w3: Web3,
    account: LocalAccount,
    tx: Dict[str, Any],
    gas_multiplier: float = 1.0,
    timeout: Optional[int] = None,
) -> Dict[str, Any]:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, send_transaction, w3, account, tx, gas_multiplier, timeout)
