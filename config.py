# config.py
# Configuration

# List of RPC endpoints (tried in order)
RPC_LIST = [
    "https://testnet-rpc.monad.xyz",
    "https://testnet-rpc.monorail.xyz",
    "https://monad-testnet.drpc.org",
]

# Chain ID for Monad Testnet (used for validation)
CHAIN_ID = 10143

EXPLORER_URL = "https://testnet.monadexplorer.com/tx/"

# Number of connection attempts per RPC entry
RPC_TRY = 3

# HTTP request timeout for RPC calls in seconds
HTTP_TIMEOUT = 30

# Transaction receipt timeout in seconds
TX_TIMEOUT = 120

# Contracts
WMON_ADDRESS = "0x760AfE86e5de5fa0Ee542fc7B7B713e1c5425701"
MAGMA_ADDRESS = "0x2c9C959516e9AAEdB2C748224a41249202ca8BE7"
KITSU_ADDRESS = "0x2c9C959516e9AAEdB2C748224a41249202ca8BE7"
UNISWAP_ROUTER_ADDRESS = "0xCa810D095e90Daae6e867c19DF6D9A8C56db2c89"
APRIORI_ADDRESS = "0xb2f82D0f38dc453D596Ad40A37799446Cc89274A"
MONORAIL_ADDRESS = "0xC995498c22a012353FAE7eCC701810D673E25794"

# Tokens the Uniswap module buys and sells back (checksummed at use)
UNISWAP_TOKENS = {
    "DAC": "0x0f0bdebf0f83cd1ee3974779bcb7315f9808c714",
    "USDT": "0x88b8e2161dedc77ef4ab7585569d2415a1c1055d",
    "WETH": "0x836047a99e11f376522b447bffb6e3495dd0637c",
    "MUK": "0x989d38aeed8408452f0273c7d4a17fef20878e62",
    "USDC": "0xf817257fed379853cDe0fa4F97AB987181B1E5Ea",
    "CHOG": "0xE0590015A873bF326bd645c3E1266d4db41C4E6B",
}

# Gas limits
GAS_LIMIT_WRAP = 210000
GAS_LIMIT_STAKE = 500000
GAS_LIMIT_UNSTAKE = 800000
GAS_LIMIT_SWAP = 210000
GAS_LIMIT_APPROVE = 100000
GAS_LIMIT_WRAP_SLOW = 500000
GAS_LIMIT_MONORAIL = 500000

# Amount ranges in MON
SWAP_AMOUNT_MIN = 0.01
SWAP_AMOUNT_MAX = 0.05
STAKE_AMOUNT_MIN = 0.01
STAKE_AMOUNT_MAX = 0.05
KITSU_STAKE_AMOUNT = 0.1
MONORAIL_SWAP_AMOUNT = 0.1

# Warn when a wallet holds less than this (MON)
LOW_BALANCE_THRESHOLD = 0.1

# Delays in seconds (min, max)
DELAY_BETWEEN_MODULES = (2, 5)
DELAY_BETWEEN_WALLETS = (10, 30)
DELAY_BETWEEN_LOOPS = (30, 60)
MAGMA_UNSTAKE_DELAY = 73.383
KITSU_UNSTAKE_DELAY = 5 * 60
APRIORI_UNSTAKE_DELAY = (60, 180)
UNISWAP_SWAP_BACK_DELAY = (30, 60)
# Rubic and Izumi wait this long between wrap and unwrap
UNWRAP_DELAY = (60, 180)

# Backoff retries for transient errors
RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_DELAY = 5.0
RETRY_MAX_DELAY = 30.0
RETRY_FACTOR = 2.0

# Gas price escalation for fee errors
GAS_MAX_RETRIES = 3
GAS_INITIAL_MULTIPLIER = 1.1
GAS_MAX_MULTIPLIER = 2.0
GAS_RETRY_DELAY = 2.0

# Wallets file: one "privateKey|proxy" per line, or .xlsx with private_key/proxy columns
WALLETS_FILE = "wallets.txt"

# Use proxies from the wallets file (True/False)
USE_PROXY = True

# How many times to run the modules for each wallet
LOOP_COUNT = 1

# Shuffle wallets once per run / modules once per wallet
RANDOM_WALLET_ORDER = False
RANDOM_MODULE_ORDER = False

# Modules to run, in order (see farm_modules.MODULES)
ENABLED_MODULES = ["bebop", "magma", "kitsu", "uniswap", "apriori", "monorail", "rubic", "izumi"]

# Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
LOG_LEVEL = "INFO"

# Log file path
LOG_FILE = "farmer_log.txt"

# Transaction log file path (None disables the file sink)
TX_LOG_FILE = "transaction-logs.txt"
