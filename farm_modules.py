# farm_modules.py
"""Farming modules. Each one runs a short sequence of transactions for one wallet.

Every transaction goes through ``FarmSession.execute``: a BackoffExecutor run
whose attempts each start a fresh GasEscalationExecutor run.
"""
import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from eth_abi import decode as abi_decode
from eth_account.signers.local import LocalAccount
from web3 import Web3

import config
from logger import get_logger
from retry_utils import (
    BackoffExecutor,
    ExecutionContext,
    GasEscalationExecutor,
    GasPolicy,
    RetryPolicy,
    Sleep,
    error_message,
)
from transaction_logger import TransactionLogger
from transactions import encode_abi_call, encode_call, send_transaction_async
from utils import random_delay, random_eth_amount

logger = get_logger("Modules", config.LOG_LEVEL)

WMON_DEPOSIT = "0xd0e30db0"
WMON_WITHDRAW = "0x2e1a7d4d"
STAKE_SELECTOR = "0xd5575982"
UNSTAKE_SELECTOR = "0x6fed1ea7"
SWAP_EXACT_ETH_FOR_TOKENS = "0x7ff36ab5"
SWAP_EXACT_TOKENS_FOR_ETH = "0x18cbafe5"
ERC20_BALANCE_OF = "0x70a08231"
ERC20_APPROVE = "0x095ea7b3"
APRIORI_STAKE = "0x6e553f65"
APRIORI_REQUEST_REDEEM = "0x7d41c86e"
SWAP_DEADLINE = 600

# Recorded MON -> CHOG route; the recipient word is filled per wallet
MONORAIL_CALLDATA = (
    "0x96f25cbe"
    "0000000000000000000000000000000000000000000000000000000000000000"
    "000000000000000000000000e0590015a873bf326bd645c3e1266d4db41c4e6b"
    "000000000000000000000000000000000000000000000000016345785d8a0000"
    "0000000000000000000000000000000000000000000000000000000000000100"
    "00000000000000000000000000000000000000000000000000000000000001a0"
    "000000000000000000000000{address}"
    "000000000000000000000000000000000000000000000000542f8f7c3d64ce47"
    "0000000000000000000000000000000000000000000000000000002885eeed34"
    "0000000000000000000000000000000000000000000000000000000000000004"
    "000000000000000000000000760afe86e5de5fa0ee542fc7b7b713e1c5425701"
    "000000000000000000000000760afe86e5de5fa0ee542fc7b7b713e1c5425701"
    "000000000000000000000000cba6b9a951749b8735c603e7ffc5151849248772"
    "000000000000000000000000760afe86e5de5fa0ee542fc7b7b713e1c5425701"
    "0000000000000000000000000000000000000000000000000000000000000004"
    "0000000000000000000000000000000000000000000000000000000000000080"
    "00000000000000000000000000000000000000000000000000000000000000c0"
    "0000000000000000000000000000000000000000000000000000000000000140"
    "0000000000000000000000000000000000000000000000000000000000000280"
    "0000000000000000000000000000000000000000000000000000000000000004"
    "d0e30db000000000000000000000000000000000000000000000000000000000"
    "0000000000000000000000000000000000000000000000000000000000000044"
    "095ea7b3000000000000000000000000cba6b9a951749b8735c603e7ffc51518"
    "4924877200000000000000000000000000000000000000000000000001634578"
    "5d8a000000000000000000000000000000000000000000000000000000000000"
    "0000000000000000000000000000000000000000000000000000000000000104"
    "38ed173900000000000000000000000000000000000000000000000001634578"
    "5d8a0000000000000000000000000000000000000000000000000000542f8f7c"
    "3d64ce4700000000000000000000000000000000000000000000000000000000"
    "000000a0000000000000000000000000c995498c22a012353fae7ecc701810d6"
    "73e2579400000000000000000000000000000000000000000000000000000028"
    "85eeed3400000000000000000000000000000000000000000000000000000000"
    "00000002000000000000000000000000760afe86e5de5fa0ee542fc7b7b713e1"
    "c5425701000000000000000000000000e0590015a873bf326bd645c3e1266d4d"
    "b41c4e6b00000000000000000000000000000000000000000000000000000000"
    "0000000000000000000000000000000000000000000000000000000000000044"
    "095ea7b3000000000000000000000000cba6b9a951749b8735c603e7ffc51518"
    "4924877200000000000000000000000000000000000000000000000000000000"
    "0000000000000000000000000000000000000000000000000000000000000000"
)

SendFn = Callable[[Web3, LocalAccount, Dict[str, Any], float], Awaitable[Dict[str, Any]]]


@dataclass
class FarmSession:
    """Everything a module needs to act for one wallet."""
    w3: Web3
    account: LocalAccount
    tx_logger: TransactionLogger
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy.from_config)
    gas_policy: GasPolicy = field(default_factory=GasPolicy.from_config)
    sleep: Sleep = asyncio.sleep
    rng: random.Random = field(default_factory=random.Random)
    send: SendFn = send_transaction_async

    @property
    def address(self) -> str:
        return self.account.address

    async def execute(self, module_name: str, action_name: str, tx: Dict[str, Any]) -> Dict[str, Any]:
        context = ExecutionContext(self.address, module_name, action_name)
        backoff = BackoffExecutor(self.tx_logger, sleep=self.sleep, rng=self.rng)
        gas = GasEscalationExecutor(self.tx_logger, sleep=self.sleep, rng=self.rng)

        async def send_with_multiplier(gas_multiplier: float = 1.0) -> Dict[str, Any]:
            return await self.send(self.w3, self.account, tx, gas_multiplier)

        async def attempt() -> Dict[str, Any]:
            return await gas.run(send_with_multiplier, context, self.gas_policy)

        return await backoff.run(attempt, self.retry_policy, context)

    async def call(self, to: str, data: str) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.w3.eth.call, {"to": to, "data": data})

    async def get_balance(self) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.w3.eth.get_balance, self.address)

    async def token_balance(self, token: str) -> int:
        raw = await self.call(token, encode_abi_call(ERC20_BALANCE_OF, ["address"], [self.address]))
        return abi_decode(["uint256"], bytes(raw))[0]

    async def wait(self, module_name: str, seconds: float, reason: str) -> None:
        self.tx_logger.log_info(self.address, module_name, "Waiting", details=f"Delaying {seconds:.0f} seconds {reason}")
        await self.sleep(seconds)


def _format_mon(wei: int) -> str:
    return f"{Web3.from_wei(wei, 'ether')}"


async def _wrap_unwrap(session: FarmSession, module: str, gas_limit: int,
                       unwrap_delay: Optional[float] = None) -> bool:
    session.tx_logger.log_info(session.address, module, "Process Started", details="Wrap and unwrap MON")
    amount = random_eth_amount(config.SWAP_AMOUNT_MIN, config.SWAP_AMOUNT_MAX, session.rng)
    try:
        wrap = await session.execute(module, "Wrap MON", {
            "to": config.WMON_ADDRESS,
            "data": WMON_DEPOSIT,
            "value": amount,
            "gas": gas_limit,
        })
        session.tx_logger.log_success(session.address, module, "Wrap MON", wrap["hash"], f"Amount: {_format_mon(amount)} MON")

        if unwrap_delay is not None:
            await session.wait(module, unwrap_delay, "before unwrapping")

        unwrap = await session.execute(module, "Unwrap WMON", {
            "to": config.WMON_ADDRESS,
            "data": encode_call(WMON_WITHDRAW, amount),
            "value": 0,
            "gas": gas_limit,
        })
        session.tx_logger.log_success(session.address, module, "Unwrap WMON", unwrap["hash"], f"Amount: {_format_mon(amount)} WMON")
    except Exception as e:
        session.tx_logger.log_error(session.address, module, "Process Failed", details=error_message(e))
        return False

    session.tx_logger.log_success(session.address, module, "Process Completed", details="Wrap and unwrap completed")
    return True


async def run_bebop(session: FarmSession) -> bool:
    """Wraps a random amount of MON into WMON, then unwraps it."""
    return await _wrap_unwrap(session, "Bebop", config.GAS_LIMIT_WRAP)


async def run_rubic(session: FarmSession) -> bool:
    return await _wrap_unwrap(
        session, "Rubic", config.GAS_LIMIT_WRAP_SLOW, random_delay(config.UNWRAP_DELAY, session.rng)
    )


async def run_izumi(session: FarmSession) -> bool:
    return await _wrap_unwrap(
        session, "Izumi", config.GAS_LIMIT_WRAP_SLOW, random_delay(config.UNWRAP_DELAY, session.rng)
    )


async def _stake_unstake(session: FarmSession, module: str, contract: str, amount: int, unstake_delay: float) -> bool:
    session.tx_logger.log_info(session.address, module, "Process Started", details="Starting staking process")
    try:
        stake = await session.execute(module, "Stake MON", {
            "to": contract,
            "data": STAKE_SELECTOR,
            "value": amount,
            "gas": config.GAS_LIMIT_STAKE,
        })
        session.tx_logger.log_success(session.address, module, "Stake MON", stake["hash"], f"Amount: {_format_mon(amount)} MON")

        await session.wait(module, unstake_delay, "before unstaking")

        unstake = await session.execute(module, "Unstake gMON", {
            "to": contract,
            "data": encode_call(UNSTAKE_SELECTOR, amount),
            "value": 0,
            "gas": config.GAS_LIMIT_UNSTAKE,
        })
        session.tx_logger.log_success(session.address, module, "Unstake gMON", unstake["hash"], f"Amount: {_format_mon(amount)} gMON")
    except Exception as e:
        session.tx_logger.log_error(session.address, module, "Process Failed", details=error_message(e))
        return False

    session.tx_logger.log_success(
        session.address, module, "Process Completed", details="Staking and unstaking completed successfully"
    )
    return True


async def run_magma(session: FarmSession) -> bool:
    """Stakes a random amount of MON for gMON, waits, then unstakes it."""
    amount = random_eth_amount(config.STAKE_AMOUNT_MIN, config.STAKE_AMOUNT_MAX, session.rng)
    return await _stake_unstake(session, "Magma", config.MAGMA_ADDRESS, amount, config.MAGMA_UNSTAKE_DELAY)


async def run_kitsu(session: FarmSession) -> bool:
    amount = Web3.to_wei(config.KITSU_STAKE_AMOUNT, "ether")
    return await _stake_unstake(session, "Kitsu", config.KITSU_ADDRESS, amount, config.KITSU_UNSTAKE_DELAY)


async def run_uniswap(session: FarmSession) -> bool:
    """Buys a random token with MON on the Uniswap V2 router, then sells the whole balance back."""
    module = "Uniswap"
    symbol = session.rng.choice(sorted(config.UNISWAP_TOKENS))
    token = Web3.to_checksum_address(config.UNISWAP_TOKENS[symbol])
    router = Web3.to_checksum_address(config.UNISWAP_ROUTER_ADDRESS)
    wmon = Web3.to_checksum_address(config.WMON_ADDRESS)
    session.tx_logger.log_info(session.address, module, "Process Started", details=f"Swap MON > {symbol} > MON")
    amount = random_eth_amount(config.SWAP_AMOUNT_MIN, config.SWAP_AMOUNT_MAX, session.rng)
    try:
        buy = await session.execute(module, f"Swap MON > {symbol}", {
            "to": router,
            "data": encode_abi_call(
                SWAP_EXACT_ETH_FOR_TOKENS,
                ["uint256", "address[]", "address", "uint256"],
                [0, [wmon, token], session.address, int(time.time()) + SWAP_DEADLINE],
            ),
            "value": amount,
            "gas": config.GAS_LIMIT_SWAP,
        })
        session.tx_logger.log_success(
            session.address, module, f"Swap MON > {symbol}", buy["hash"], f"Amount: {_format_mon(amount)} MON"
        )

        await session.wait(module, random_delay(config.UNISWAP_SWAP_BACK_DELAY, session.rng), "before swapping back")

        balance = await session.token_balance(token)
        if balance == 0:
            session.tx_logger.log_warning(session.address, module, f"Swap {symbol} > MON", details=f"No {symbol} to swap back")
            return False

        approve = await session.execute(module, f"Approve {symbol}", {
            "to": token,
            "data": encode_abi_call(ERC20_APPROVE, ["address", "uint256"], [router, balance]),
            "value": 0,
            "gas": config.GAS_LIMIT_APPROVE,
        })
        session.tx_logger.log_success(session.address, module, f"Approve {symbol}", approve["hash"])

        sell = await session.execute(module, f"Swap {symbol} > MON", {
            "to": router,
            "data": encode_abi_call(
                SWAP_EXACT_TOKENS_FOR_ETH,
                ["uint256", "uint256", "address[]", "address", "uint256"],
                [balance, 0, [token, wmon], session.address, int(time.time()) + SWAP_DEADLINE],
            ),
            "value": 0,
            "gas": config.GAS_LIMIT_SWAP,
        })
        session.tx_logger.log_success(session.address, module, f"Swap {symbol} > MON", sell["hash"], f"Amount: {balance} {symbol}")
    except Exception as e:
        session.tx_logger.log_error(session.address, module, "Process Failed", details=error_message(e))
        return False

    session.tx_logger.log_success(session.address, module, "Process Completed", details=f"Swapped MON > {symbol} > MON")
    return True


async def run_apriori(session: FarmSession) -> bool:
    """Stakes MON for aprMON, waits, then requests the redeem.

    Claiming the redeemed MON needs the explorer's unstake-request API and is left to the user.
    """
    module = "Apriori"
    session.tx_logger.log_info(session.address, module, "Process Started", details="Starting staking process")
    amount = random_eth_amount(config.STAKE_AMOUNT_MIN, config.STAKE_AMOUNT_MAX, session.rng)
    try:
        stake = await session.execute(module, "Stake MON", {
            "to": config.APRIORI_ADDRESS,
            "data": encode_abi_call(APRIORI_STAKE, ["uint256", "address"], [amount, session.address]),
            "value": amount,
            "gas": config.GAS_LIMIT_STAKE,
        })
        session.tx_logger.log_success(session.address, module, "Stake MON", stake["hash"], f"Amount: {_format_mon(amount)} MON")

        await session.wait(module, random_delay(config.APRIORI_UNSTAKE_DELAY, session.rng), "before unstaking")

        redeem = await session.execute(module, "Request Unstake", {
            "to": config.APRIORI_ADDRESS,
            "data": encode_abi_call(
                APRIORI_REQUEST_REDEEM,
                ["uint256", "address", "address"],
                [amount, session.address, session.address],
            ),
            "value": 0,
            "gas": config.GAS_LIMIT_UNSTAKE,
        })
        session.tx_logger.log_success(
            session.address, module, "Request Unstake", redeem["hash"], f"Amount: {_format_mon(amount)} aprMON"
        )
    except Exception as e:
        session.tx_logger.log_error(session.address, module, "Process Failed", details=error_message(e))
        return False

    session.tx_logger.log_success(
        session.address, module, "Process Completed", details="Staking and unstake request completed"
    )
    return True


async def run_monorail(session: FarmSession) -> bool:
    module = "Monorail"
    session.tx_logger.log_info(session.address, module, "Process Started", details="Swap MON on Monorail")
    value = Web3.to_wei(config.MONORAIL_SWAP_AMOUNT, "ether")
    try:
        balance = await session.get_balance()
        if balance < value:
            raise ValueError(
                f"Insufficient balance: {_format_mon(balance)} MON, need {config.MONORAIL_SWAP_AMOUNT} MON"
            )

        swap = await session.execute(module, "Swap MON", {
            "to": config.MONORAIL_ADDRESS,
            "data": MONORAIL_CALLDATA.format(address=session.address[2:].lower()),
            "value": value,
            "gas": config.GAS_LIMIT_MONORAIL,
        })
        session.tx_logger.log_success(session.address, module, "Swap MON", swap["hash"], f"Amount: {_format_mon(value)} MON")
    except Exception as e:
        session.tx_logger.log_error(session.address, module, "Process Failed", details=error_message(e))
        return False

    session.tx_logger.log_success(session.address, module, "Process Completed", details="Monorail swap completed")
    return True


ModuleFn = Callable[[FarmSession], Awaitable[bool]]


@dataclass(frozen=True)
class FarmModule:
    key: str
    name: str
    run: ModuleFn


MODULES: Dict[str, FarmModule] = {
    "bebop": FarmModule("bebop", "Bebop Swap", run_bebop),
    "magma": FarmModule("magma", "Magma Staking", run_magma),
    "kitsu": FarmModule("kitsu", "Kitsu Staking", run_kitsu),
    "uniswap": FarmModule("uniswap", "Uniswap Swap", run_uniswap),
    "apriori": FarmModule("apriori", "Apriori Staking", run_apriori),
    "monorail": FarmModule("monorail", "Monorail Swap", run_monorail),
    "rubic": FarmModule("rubic", "Rubic Swap", run_rubic),
    "izumi": FarmModule("izumi", "Izumi Swap", run_izumi),
}


def get_module(key: str) -> Optional[FarmModule]:
    return MODULES.get(key.lower())
