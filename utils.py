# utils.py
import os
import random
from dataclasses import dataclass
from typing import List, Optional, Tuple

import pandas as pd
from requests import Session
from web3 import HTTPProvider, Web3

import config
from logger import get_logger

logger = get_logger("Utils", config.LOG_LEVEL)


class WalletFileError(ValueError):
    """Wallet file is missing or unreadable."""


class RpcConnectionError(ConnectionError):
    """No RPC endpoint could be reached."""


@dataclass(frozen=True)
class WalletData:
    private_key: str
    proxy: Optional[str]
    index: int


def shorten_address(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}"


def normalize_private_key(private_key: str) -> str:
    """Strips and 0x-prefixes a key. Raises ValueError if it is not 32 hex bytes."""
    if not isinstance(private_key, str):
        raise ValueError("Private key must be a string")
    pk = private_key.strip()
    if not pk.startswith("0x"):
        pk = "0x" + pk
    if len(pk) != 66:
        raise ValueError("Invalid private key format: must be 0x + 64 hex chars")
    if not all(c in "0123456789abcdefABCDEF" for c in pk[2:]):
        raise ValueError("Private key contains non-hex characters")
    return pk


def _parse_wallet_lines(lines: List[str]) -> List[WalletData]:
    wallets = []
    for i, raw in enumerate(lines):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split("|")
        private_key = parts[0].strip()
        proxy = parts[1].strip() if len(parts) > 1 and parts[1].strip() else None
        if private_key:
            wallets.append(WalletData(private_key=private_key, proxy=proxy, index=i + 1))
    return wallets


def _load_wallets_excel(path: str) -> List[WalletData]:
    df = pd.read_excel(path, engine="openpyxl")
    df.columns = df.columns.str.lower().str.strip()
    if "private_key" not in df.columns:
        raise WalletFileError(f"{path} must contain a private_key column")
    if "proxy" in df.columns:
        df["proxy"] = df["proxy"].astype(object).where(pd.notnull(df["proxy"]), None)

    wallets = []
    for idx, row in df.iterrows():
        pk = row["private_key"]
        if not isinstance(pk, str) or not pk.strip():
            logger.error(f"Row {idx + 2}: private_key is not a string, skipping")
            continue
        proxy = row.get("proxy", None) if "proxy" in df.columns else None
        # Empty cells come back as NaN when the whole column is empty
        proxy = proxy.strip() if isinstance(proxy, str) and proxy.strip() else None
        wallets.append(WalletData(private_key=pk.strip(), proxy=proxy, index=idx + 1))
    return wallets


def load_wallets(path: str) -> List[WalletData]:
    """Loads wallets from a text file (``privateKey|proxy`` per line) or an .xlsx sheet.

    Blank lines and ``#`` comments are skipped; ``index`` is the 1-based line number.
    """
    if not os.path.exists(path):
        raise WalletFileError(f"Wallet file not found: {path}")

    if path.lower().endswith((".xlsx", ".xls")):
        wallets = _load_wallets_excel(path)
    else:
        try:
            with open(path, encoding="utf-8") as f:
                wallets = _parse_wallet_lines(f.read().splitlines())
        except OSError as e:
            raise WalletFileError(f"Error reading wallet file {path}: {e}") from e

    logger.info(f"Loaded {len(wallets)} wallets from {path}")
    return wallets


def format_proxy(proxy: Optional[str]) -> Optional[str]:
    """``host:port`` or ``host:port:user:pass`` -> ``http://[user:pass@]host:port``."""
    if not isinstance(proxy, str) or not proxy.strip():
        return None
    proxy = proxy.strip()
    if "://" in proxy:
        return proxy
    parts = proxy.split(":")
    if len(parts) < 2:
        return None
    host, port = parts[0], parts[1]
    if len(parts) >= 4:
        return f"http://{parts[2]}:{parts[3]}@{host}:{port}"
    return f"http://{host}:{port}"


def get_w3(rpc_url: str, proxy: Optional[str] = None) -> Web3:
    """Returns Web3 connection to RPC (with optional HTTP proxy session)."""
    request_kwargs = {"timeout": config.HTTP_TIMEOUT}
    proxy_url = format_proxy(proxy)
    if proxy_url:
        session = Session()
        session.proxies = {"http": proxy_url, "https": proxy_url}
        provider = HTTPProvider(rpc_url, request_kwargs=request_kwargs, session=session)
    else:
        provider = HTTPProvider(rpc_url, request_kwargs=request_kwargs)
    return Web3(provider)


def get_w3_with_retry(rpc_url: str, proxy: Optional[str] = None) -> Optional[Web3]:
    """Returns Web3 connection with retries and verifies chain_id matches config.CHAIN_ID."""
    for attempt in range(1, config.RPC_TRY + 1):
        try:
            w3 = get_w3(rpc_url, proxy)
            chain_id = w3.eth.chain_id
            if chain_id == config.CHAIN_ID:
                return w3
            logger.warning(f"{rpc_url}: unexpected chain_id {chain_id} (expected {config.CHAIN_ID})")
            return None
        except Exception as e:
            logger.warning(f"Attempt {attempt}/{config.RPC_TRY} failed for {rpc_url}: {e}")
    logger.error(f"All attempts failed for {rpc_url}")
    return None


def connect_to_rpc(proxy: Optional[str] = None) -> Web3:
    """First RPC from config.RPC_LIST that answers with the expected chain id."""
    for rpc_url in config.RPC_LIST:
        w3 = get_w3_with_retry(rpc_url, proxy)
        if w3 is not None:
            logger.debug(f"Connected to {rpc_url}{' via proxy' if proxy else ''}")
            return w3
        logger.warning(f"Failed to connect to {rpc_url}, trying another...")
    raise RpcConnectionError("Unable to connect to any RPC endpoint")


def random_eth_amount(min_amount: float = 0.01, max_amount: float = 0.05,
                      rng: Optional[random.Random] = None) -> int:
    """Random amount in wei, rounded to 6 decimals of ether."""
    rng = rng or random
    amount = round(rng.uniform(min_amount, max_amount), 6)
    return Web3.to_wei(f"{amount:.6f}", "ether")


def random_delay(delay_range: Tuple[float, float], rng: Optional[random.Random] = None) -> float:
    rng = rng or random
    low, high = delay_range
    return rng.uniform(low, high)
