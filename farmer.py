# farmer.py
import asyncio
import random
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from eth_account import Account
from web3 import Web3

import config
from farm_modules import MODULES, FarmModule, FarmSession
from logger import get_logger
from retry_utils import GasPolicy, RetryPolicy, Sleep, error_message
from transaction_logger import TransactionLogger
from utils import WalletData, connect_to_rpc, normalize_private_key, random_delay, shorten_address

logger = get_logger("Farmer", config.LOG_LEVEL)

Connect = Callable[[Optional[str]], Web3]


@dataclass(frozen=True)
class DelaySettings:
    """(min, max) seconds."""
    between_modules: Tuple[float, float] = config.DELAY_BETWEEN_MODULES
    between_wallets: Tuple[float, float] = config.DELAY_BETWEEN_WALLETS
    between_loops: Tuple[float, float] = config.DELAY_BETWEEN_LOOPS

    def __post_init__(self) -> None:
        for name in ("between_modules", "between_wallets", "between_loops"):
            low, high = getattr(self, name)
            if low < 0 or high < low:
                raise ValueError(f"Invalid delay range for {name}: ({low}, {high})")


@dataclass(frozen=True)
class ModuleResult:
    loop: int
    wallet_index: int
    address: str
    module: str
    success: bool


@dataclass
class RunReport:
    results: List[ModuleResult] = field(default_factory=list)
    # Each wallet index at most once, however many loops skipped it
    skipped_wallets: List[int] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)


def resolve_modules(keys: Sequence[str]) -> List[FarmModule]:
    modules = []
    for key in keys:
        module = MODULES.get(key.lower())
        if module is None:
            raise ValueError(f"Unknown module: {key} (available: {', '.join(MODULES)})")
        modules.append(module)
    return modules


class Farmer:
    """Runs the selected modules for every wallet, loop after loop."""

    def __init__(
        self,
        tx_logger: TransactionLogger,
        connect: Connect = connect_to_rpc,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
        retry_policy: Optional[RetryPolicy] = None,
        gas_policy: Optional[GasPolicy] = None,
        delays: Optional[DelaySettings] = None,
        use_proxy: bool = config.USE_PROXY,
    ):
        self.tx_logger = tx_logger
        self.connect = connect
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.retry_policy = retry_policy or RetryPolicy.from_config()
        self.gas_policy = gas_policy or GasPolicy.from_config()
        self.delays = delays or DelaySettings()
        self.use_proxy = use_proxy

    async def _pause(self, delay_range: Tuple[float, float], what: str) -> None:
        seconds = random_delay(delay_range, self.rng)
        logger.info(f"Waiting {seconds:.1f} seconds before next {what}...")
        await self.sleep(seconds)

    async def _open_session(self, wallet: WalletData) -> Optional[FarmSession]:
        try:
            account = Account.from_key(normalize_private_key(wallet.private_key))
        except Exception as e:
            logger.error(f"Wallet #{wallet.index}: Invalid private key: {e}")
            return None

        proxy = wallet.proxy if self.use_proxy else None
        loop = asyncio.get_running_loop()
        try:
            w3 = await loop.run_in_executor(None, self.connect, proxy)
        except Exception as e:
            logger.error(f"Wallet #{wallet.index} ({shorten_address(account.address)}): RPC connection failed: {e}")
            return None

        return FarmSession(
            w3=w3,
            account=account,
            tx_logger=self.tx_logger,
            retry_policy=self.retry_policy,
            gas_policy=self.gas_policy,
            sleep=self.sleep,
            rng=self.rng,
        )

    async def _run_wallet(self, wallet: WalletData, modules: List[FarmModule], loop_no: int,
                          random_module_order: bool, report: RunReport) -> None:
        session = await self._open_session(wallet)
        if session is None:
            if wallet.index not in report.skipped_wallets:
                report.skipped_wallets.append(wallet.index)
            return

        wallet_short = shorten_address(session.address)
        logger.info(f"Processing wallet #{wallet.index} ({wallet_short}){' with proxy' if wallet.proxy and self.use_proxy else ''}")

        to_run = list(modules)
        if random_module_order:
            self.rng.shuffle(to_run)
            logger.info(f"Wallet #{wallet.index}: modules in random order: {', '.join(m.name for m in to_run)}")

        for i, module in enumerate(to_run):
            logger.info(f"Wallet #{wallet.index} ({wallet_short}): Running {module.name}...")
            try:
                success = await module.run(session)
            except Exception as e:
                logger.error(f"Wallet #{wallet.index} ({wallet_short}): {module.name} failed: {error_message(e)}")
                success = False

            if success:
                logger.info(f"Wallet #{wallet.index} ({wallet_short}): {module.name} completed successfully")
            else:
                logger.warning(f"Wallet #{wallet.index} ({wallet_short}): {module.name} failed")
            report.results.append(ModuleResult(loop_no, wallet.index, session.address, module.key, success))

            if i < len(to_run) - 1:
                await self._pause(self.delays.between_modules, "module")

    async def run(
        self,
        wallets: Sequence[WalletData],
        module_keys: Sequence[str],
        loop_count: int = 1,
        random_wallet_order: bool = False,
        random_module_order: bool = False,
    ) -> RunReport:
        if loop_count < 1:
            raise ValueError(f"loop_count must be >= 1, got {loop_count}")
        modules = resolve_modules(module_keys)
        if not modules:
            raise ValueError("No modules selected")

        ordered = list(wallets)
        if random_wallet_order:
            self.rng.shuffle(ordered)
            logger.info("Wallets will be processed in random order")

        logger.info(
            f"Starting execution: {len(modules)} modules for {len(ordered)} wallet(s) ({loop_count} loop(s))"
        )
        report = RunReport()
        for loop_no in range(1, loop_count + 1):
            logger.info(f"Loop {loop_no} of {loop_count}")
            for w, wallet in enumerate(ordered):
                await self._run_wallet(wallet, modules, loop_no, random_module_order, report)
                if w < len(ordered) - 1:
                    await self._pause(self.delays.between_wallets, "wallet")
            if loop_no < loop_count:
                await self._pause(self.delays.between_loops, "loop")

        logger.info(f"All loops completed: {report.succeeded} module runs succeeded, {report.failed} failed")
        return report
