"""
PrivyBallot Constants

This module consolidates the protocol constants shared by the codec, the
request gate and the reveal coordinator, together with the `.env`-driven
logger defaults. Constants are organized by category for easy reference.
"""
import ast
import re

from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_FILE_OUTPUT':                 'False',
    'LOG_INCLUDE_RPC_PAYLOADS':        'False',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
LOG_MAX_PAYLOAD_LENGTH = 320  # Truncates logged RPC payloads beyond this length
LOG_BACKUP_COUNT = 5


# ==================================================================================
# ON-CHAIN FIELD ENCODING
# ==================================================================================
# Width of the bytes32 slot that stores a content address on the ledger
ONCHAIN_FIELD_WIDTH = 32

# Content addresses shorter than this are rejected outright
MIN_CONTENT_ADDRESS_LENGTH = 2

# Minimum canonical lengths of the CID families the legacy encoder truncated.
# CIDv0 is base58btc sha2-256 multihash ("Qm" + 44 chars);
# CIDv1 base32 starts with "b" and is 59 chars for a sha2-256 dag-pb/raw node.
CIDV0_LENGTH = 46
CIDV1_BASE32_MIN_LENGTH = 59

CIDV0_PATTERN = re.compile(r'^Qm[1-9A-HJ-NP-Za-km-z]+$')
CIDV1_BASE32_PATTERN = re.compile(r'^b[a-z2-7]+$')


# ==================================================================================
# REQUEST GATE DEFAULTS
# ==================================================================================
MAX_REQUESTS_PER_MINUTE = 30
MIN_REQUEST_INTERVAL = 2.0  # seconds between NORMAL requests
MAX_CONSECUTIVE_ERRORS = 3
ERROR_BACKOFF_SECONDS = 30.0
RATE_WINDOW_SECONDS = 60.0

# POLL_PROBE requests use this fraction of the cooldown and the backoff
POLL_PROBE_FACTOR = 0.5


# ==================================================================================
# LEDGER / NETWORK DEFAULTS
# ==================================================================================
DEFAULT_RPC_URL = 'http://127.0.0.1:8545'
DEFAULT_CHAIN_ID = 31337  # Hardhat / localhost
LEDGER_CALL_TIMEOUT = 10.0
RECEIPT_TIMEOUT = 60.0
RECEIPT_POLL_INTERVAL = 1.0


# ==================================================================================
# CONTENT STORE DEFAULTS
# ==================================================================================
PINATA_API_URL = 'https://api.pinata.cloud'
DEFAULT_GATEWAYS = [
    'https://gateway.pinata.cloud/ipfs/',
    'https://ipfs.io/ipfs/',
    'https://cloudflare-ipfs.com/ipfs/',
]
CONTENT_FETCH_TIMEOUT = 5.0


# ==================================================================================
# SYNC / REVEAL DEFAULTS
# ==================================================================================
SYNC_MAX_CONCURRENCY = 8
REVEAL_MAX_ATTEMPTS = 15
REVEAL_POLL_INTERVAL = 1.0
WRITE_WAIT_LIMIT = ERROR_BACKOFF_SECONDS + 5.0

# Proposal durations offered by the command line front end (seconds)
DURATION_PRESETS = {
    '5m': 300,
    '30m': 1800,
    '1h': 3600,
    '1d': 86400,
    '1w': 604800,
}


# ==================================================================================
# VALIDATION PATTERNS
# ==================================================================================
VALID_ACCOUNT_PATTERN = re.compile(r'^0x[0-9a-fA-F]{40}$')


# ==================================================================================
# CONFIGURATION WRAPPERS
# ==================================================================================
class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default

class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
namespace = globals()

def parse_bool(v):
    """
    Convert "True"/"False" (any casing, with surrounding whitespace) into bool.
    Only calls ast.literal_eval for known literals.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if not s:
        return v
    if s.casefold() in {"true", "false"}:
        return ast.literal_eval(s.title())
    return v

for key, default_raw in LOGGER_DEFAULTS.items():
    # dotenv_values returns strings or None. None is treated as missing.
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)
