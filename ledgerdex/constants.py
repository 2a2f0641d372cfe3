"""
ledgerdex Constants

Protocol parameters of the host and the order managers, plus the handful of
process settings that may be overridden from a local ``.env`` file.
"""
from dotenv import dotenv_values

# =============================================================================
# .env SETTINGS
# =============================================================================
# Read once at import; keys missing from .env keep the defaults below
_config = dotenv_values(".env")

ENGINE_DEFAULTS = {
    'LEDGERDEX_CONFIG':                'ledgerdex.toml',
}

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_FILE_OUTPUT':                 'False',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_BACKUP_COUNT = 5


# ==================================================================================
# HOST PARAMETERS
# ==================================================================================
THREADS_PER_PERIOD = 32
PERIOD_DURATION_MS = 16_000
GENESIS_TIMESTAMP_MS = 0

# Sentinel token identifier for the chain's native coin
NATIVE_TOKEN = 'NATIVE'
# Every exchange transfer uses the fungible id of a multi-token contract
TOKEN_ID = 0


# ==================================================================================
# AUTOMATION PARAMETERS
# ==================================================================================
DEFAULT_POOL_FEE = 3000  # 0.30%
WAKE_VALIDITY_PERIODS = 10

LIMIT_MAX_ORDERS_PER_CHECK = 10
LIMIT_CHECK_INTERVAL_PERIODS = 1
LIMIT_EXECUTION_GAS_BUDGET = 2_000_000_000

RECURRING_MAX_ORDERS_PER_CHECK = 10
RECURRING_DEFAULT_INTERVAL_PERIODS = 10
RECURRING_EXECUTION_GAS_BUDGET = 2_000_000_000

GRID_MAX_GRIDS_PER_CHECK = 5
GRID_CHECK_INTERVAL_PERIODS = 3
GRID_EXECUTION_GAS_BUDGET = 3_000_000_000
GRID_MIN_LEVELS = 2
GRID_MAX_LEVELS = 50


# ==================================================================================
# .env SETTING TYPES
# ==================================================================================
_TRUE_WORDS = {"true", "yes", "on"}
_FALSE_WORDS = {"false", "no", "off"}


def _as_flag(raw):
    """'true'/'false' style strings become bools; anything else comes back unchanged."""
    if not isinstance(raw, str):
        return raw
    word = raw.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    return raw


class ConfigString(str):
    """A .env string setting that remembers its built-in default."""

    def __new__(cls, value, default):
        setting = super().__new__(cls, value)
        setting._default = default
        return setting

    def default(self):
        return self._default


class ConfigBool(int):
    """A .env on/off setting. Compares, hashes and prints as a bool."""

    def __new__(cls, value, default):
        setting = super().__new__(cls, bool(value))
        setting._default = default
        return setting

    def default(self):
        return self._default

    def __str__(self):
        return "True" if self else "False"

    __repr__ = __str__

    def __eq__(self, other):
        return bool(self) == other

    def __hash__(self):
        return hash(bool(self))


def _setting(key, fallback):
    raw = _config.get(key)
    value = fallback if raw is None else raw
    flag = _as_flag(value)
    if isinstance(flag, bool):
        return ConfigBool(flag, _as_flag(fallback))
    return ConfigString(value, fallback)


for _key, _fallback in {**ENGINE_DEFAULTS, **LOGGER_DEFAULTS}.items():
    globals()[_key] = _setting(_key, _fallback)
