"""
================================================================================
CONSTANTS - System-Wide Configuration Values
================================================================================

Centralized repository for the hardcoded constants used throughout the
Solana classification pipeline. Organized by functional category.

Constant Categories:
    1. File Paths - Directory and file locations
    2. Chain - Native asset, wrapped-native mint, well-known programs
    3. Output - Market labels and note markers of the import format
    4. Tuning - Empirically chosen thresholds (overridable in config.json)
    5. Provider - Page sizes, page caps, cache TTLs
    6. Intent Markers - Type/program fragments used to tag transactions
    7. Venue Patterns - DEX, aggregator and bonding-curve identification

Key Constants:

    Chain:
        NATIVE_SYMBOL = 'SOL', NATIVE_DECIMALS = 9
        WSOL_MINT is always resolved to the native symbol

    Tuning:
        BRIDGE_TOLERANCE = 0.01
            Relative tolerance when matching the two halves of a routed swap
        OPERATIONAL_OUTFLOW_CEILING = 0.02
            Largest native outflow treated as an operational cost
        INCIDENTAL_INCOME_CEILING = 0.05
            Largest native gain attached to a trade as an income adjustment
        TIP_SANITY_CAP = 0.5
            Largest incidental native outflow folded into the trade fee

Usage:
    from src.utils.constants import NATIVE_SYMBOL, WSOL_MINT

Note:
    Values in this file are STATIC. For runtime-configurable settings,
    use config.json via src.utils.config module.

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

from pathlib import Path
from decimal import Decimal

# ==========================================
# FILE PATHS
# ==========================================
BASE_DIR = Path.cwd()
INPUT_DIR = BASE_DIR / 'inputs'
OUTPUT_DIR = BASE_DIR / 'outputs'
LOG_DIR = OUTPUT_DIR / 'logs'
CONFIG_FILE = BASE_DIR / 'configs' / 'config.json'
STATUS_FILE = BASE_DIR / 'configs' / 'status.json'
RATE_CACHE_FILE = BASE_DIR / 'configs' / 'rate_cache.json'
RESULT_CACHE_FILE = BASE_DIR / 'configs' / 'result_cache.json'

# ==========================================
# CHAIN CONSTANTS
# ==========================================
NATIVE_SYMBOL = 'SOL'
NATIVE_DECIMALS = 9
WSOL_MINT = 'So11111111111111111111111111111111111111112'
DEFAULT_TOKEN_DECIMALS = 6

SYSTEM_PROGRAM = '11111111111111111111111111111111'
TOKEN_PROGRAM = 'TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA'
TOKEN_2022_PROGRAM = 'TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb'
ASSOCIATED_TOKEN_PROGRAM = 'ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL'
STAKE_PROGRAM = 'Stake11111111111111111111111111111111111111'

# Local hint table, consulted after the metadata sources
TOKEN_HINTS = {
    'EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v': {'symbol': 'USDC', 'decimals': 6},
    'Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB': {'symbol': 'USDT', 'decimals': 6},
    WSOL_MINT: {'symbol': 'SOL', 'decimals': 9},
    'JUP4Fb2cqiRUcaTHdrPC8h2gNsA2ETXiPDD33WcGuJB': {'symbol': 'JUP', 'decimals': 6},
    'DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263': {'symbol': 'BONK', 'decimals': 5},
    'DGXSgA3UGZ92x9RLkG9ZHzk4VXwx6zbdMwsbCq7qp7bX': {'symbol': 'PYTH', 'decimals': 6},
    '4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R': {'symbol': 'RAY', 'decimals': 6},
    'orcaEKTdK7LKz57vaAYr9QeAwaQfG8Wuc3gw5cQRFPr': {'symbol': 'ORCA', 'decimals': 6},
}

PROGRAM_LABELS = {
    '7WFoBLi5jzY5hhxDvFSz4viDeoNhvNyY22zXGSHN8o8L': 'Pumpkin Staking',
    STAKE_PROGRAM: 'Stake Program',
    'JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4': 'Jupiter',
    'j1o2qRpjcyUwEvwtcfhEQefh773ZgjxcVRry7LDqg5X': 'Jupiter Limit Order',
    'DCA265Vj8a9CEuX1eb1LWRnDT7uK6q1xMipnNyatn23M': 'Jupiter DCA',
    'srmqPvymJeFKQ4zGQed1GFppgkRHL9kaELCbyksJtPX': 'OpenBook',
    'opnb2LAfJYbRMAHHvqjCwQxanZn7ReEHp1k81EohpZb': 'OpenBook V2',
    'PhoeNiXZ8ByJGLkxNfZRnkUfjvmuYqLR89jjFHGqdXY': 'Phoenix',
    '675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8': 'Raydium AMM',
    'CAMMCzo5YL8w4VFF8KVHrK22GGUsp5VTaW7grrKgrWqK': 'Raydium CLMM',
    'whirLbMiicVdio4qvUfM5KAg6Ct8VwpYzGff3uctyCc': 'Orca Whirlpool',
    'LBUZKhRxPF3XUpBCjp4YzTKgLccjZhTSDM9YuVaPwxo': 'Meteora DLMM',
    '6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P': 'Pump.fun',
}

# Programs whose fills settle a previously placed order
ORDER_BOOK_PROGRAMS = frozenset({
    'j1o2qRpjcyUwEvwtcfhEQefh773ZgjxcVRry7LDqg5X',
    'DCA265Vj8a9CEuX1eb1LWRnDT7uK6q1xMipnNyatn23M',
    'srmqPvymJeFKQ4zGQed1GFppgkRHL9kaELCbyksJtPX',
    'opnb2LAfJYbRMAHHvqjCwQxanZn7ReEHp1k81EohpZb',
    'PhoeNiXZ8ByJGLkxNfZRnkUfjvmuYqLR89jjFHGqdXY',
})

STAKING_PROGRAMS = frozenset({
    STAKE_PROGRAM,
    '7WFoBLi5jzY5hhxDvFSz4viDeoNhvNyY22zXGSHN8o8L',
})

# ==========================================
# OUTPUT FORMAT
# ==========================================
MARKET_CHAIN = 'SOLANA'
MARKET_DEX = 'SOLANA DEX'
MARKET_STAKE = 'STAKE'
MARKET_LIQUIDITY = 'SOLANA LP'
MARKET_AGGREGATED = 'AGGREGERT'

CANONICAL_MARKETS = frozenset({
    MARKET_CHAIN, MARKET_DEX, MARKET_STAKE, MARKET_LIQUIDITY, MARKET_AGGREGATED,
})

# Source labels that mean "no particular venue"
CHAIN_MARKET_ALIASES = frozenset({
    '', 'SOLANA', 'UNKNOWN', 'SYSTEM_PROGRAM', 'SOLANA_PROGRAM_LIBRARY', 'SPL',
    'TOKEN_PROGRAM', 'ASSOCIATED_TOKEN_PROGRAM',
})

CSV_HEADER = [
    'Tidspunkt', 'Type', 'Inn', 'Inn-Valuta', 'Ut', 'Ut-Valuta',
    'Gebyr', 'Gebyr-Valuta', 'Marked', 'Notat',
]

SIGNATURE_TAG = 'sig:'
AGGREGATE_TAG = 'agg:'
ADJUSTMENT_TAG = 'ADJ'
LP_ADD_TAG = 'LP-ADD'
LP_REMOVE_TAG = 'LP-REMOVE'
AIRDROP_TAG = 'AIRDROP'

SUPPORTED_TIMEZONES = ('UTC', 'Europe/Oslo')

# Bumped whenever classification output changes; part of every result-cache key
CLASSIFIER_VERSION = '2026.10-1'

# ==========================================
# TUNING CONSTANTS
# ==========================================
BRIDGE_TOLERANCE = Decimal('0.01')
LOOSE_BRIDGE_TOLERANCE = Decimal('0.05')
OPERATIONAL_OUTFLOW_CEILING = Decimal('0.02')
INCIDENTAL_INCOME_CEILING = Decimal('0.05')
TIP_SANITY_CAP = Decimal('0.5')
NET_EPSILON = Decimal('0.000000001')
NATIVE_NOISE_EPSILON = Decimal('0.00001')
HYBRID_MIN_NATIVE_LEG = Decimal('0.001')

# ==========================================
# PROVIDER CONSTANTS
# ==========================================
HELIUS_API_BASE = 'https://api.helius.xyz'
HELIUS_RPC_BASE = 'https://mainnet.helius-rpc.com'
PUBLIC_RPC_URL = 'https://api.mainnet-beta.solana.com'
JUPITER_SEARCH_URL = 'https://lite-api.jup.ag/tokens/v2/search'

PAGE_SIZE = 100  # Provider maximum
MAX_PAGES_PER_ADDRESS = 50
PAGE_DELAY_SECONDS = 0.15
METADATA_CHUNK_SIZE = 100
RPC_CHUNK_SIZE = 100
ENRICHMENT_WORKERS = 4
API_RETRY_MAX_ATTEMPTS = 5
API_RETRY_BASE_DELAY = 1.0  # seconds, doubled per attempt
API_RETRY_MAX_DELAY = 10.0
API_TIMEOUT_SECONDS = 30
RESULT_CACHE_TTL_SECONDS = 600
RATE_CACHE_TTL_SECONDS = 7 * 24 * 3600

# ==========================================
# INTENT MARKERS
# ==========================================
"""
Fragments matched against the upper-cased type hint (or description when the
type is absent). Program-id sets above are matched against instruction ids.
"""
ORDER_PLACE_MARKERS = ('PLACE_ORDER', 'CREATE_ORDER', 'INITIALIZE_ORDER', 'OPEN_ORDER', 'NEW_ORDER', 'OPEN_DCA')
ORDER_FILL_MARKERS = ('FILL_ORDER', 'TAKE_ORDER', 'MATCH_ORDER', 'EXECUTE_ORDER', 'FILL')
ORDER_CANCEL_MARKERS = ('CANCEL_ORDER', 'CANCEL_ALL_ORDERS', 'CANCEL', 'CLOSE_DCA')
ACCOUNT_CREATE_MARKERS = (
    'CREATE_ACCOUNT', 'INIT_ACCOUNT', 'INITIALIZE_ACCOUNT',
    'CREATE_ASSOCIATED_TOKEN_ACCOUNT', 'CREATE_TOKEN_ACCOUNT',
)
ACCOUNT_CLOSE_MARKERS = ('CLOSE_ACCOUNT', 'CLOSE_TOKEN_ACCOUNT', 'CLOSE_ACCOUNTS')
STAKE_MARKERS = ('STAKE', 'DELEGATE', 'DEACTIVATE', 'WITHDRAW_STAKE', 'SPLIT_STAKE', 'MERGE_STAKE')
AIRDROP_MARKERS = ('AIRDROP', 'CLAIM_AIRDROP')
REWARD_MARKERS = ('REWARD', 'CLAIM_REWARD', 'HARVEST')

# ==========================================
# VENUE PATTERNS
# ==========================================
DEX_VENUE_PATTERNS = (
    'RAYDIUM', 'ORCA', 'WHIRLPOOL', 'METEORA', 'LIFINITY', 'SABER', 'CREMA',
    'INVARIANT', 'PHOENIX', 'OPENBOOK', 'FLUXBEAM', 'PUMP_AMM', 'PUMPSWAP',
)
CONCENTRATED_VENUE_PATTERNS = ('CLMM', 'WHIRLPOOL', 'CONCENTRATED', 'DLMM', 'INVARIANT', 'CREMA')
BONDING_CURVE_VENUE_PATTERNS = ('PUMP_FUN', 'PUMPFUN', 'PUMP.FUN', 'MOONSHOT', 'LETSBONK', 'LAUNCHLAB')
AGGREGATOR_VENUE_PATTERNS = ('JUPITER', 'DFLOW', 'OKX', 'PRISM')
STAKE_VENUE_PATTERNS = ('STAKE', 'STAKING', 'MARINADE', 'JITO', 'SANCTUM')

# ==========================================
# DEFI PROTOCOL PATTERNS
# ==========================================
"""
Patterns used to identify LP receipt tokens by symbol
"""
DEFI_LP_PATTERNS = [
    'RAY-', 'ORCA-', 'SABER', 'MERCURIAL', 'METEORA', 'LP-', '-LP', '_LP', 'POOL',
]
