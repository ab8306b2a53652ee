"""
Skybound engine settings

Every tunable lives in a section dict on Config (financial, game_rules,
opponents, timing, memory, commentary, logging). A few timing and memory
values can come from SKYBOUND_* environment variables; anything else is
overridden per instance through set() or a JSON file.
"""

import json
import logging
import os
import threading
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when settings are inconsistent or a settings file is unreadable"""
    pass


def _bounded_env(name: str, default, cast: Callable, low=None, high=None):
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = cast(raw)
    except (ValueError, TypeError):
        logger.warning(f"Ignoring {name}={raw!r}, keeping {default}")
        return default
    if value != value:  # NaN
        logger.warning(f"Ignoring {name}={raw!r}, keeping {default}")
        return default
    if low is not None and value < low:
        value = low
    if high is not None and value > high:
        value = high
    return value


def _safe_int_env(name: str, default: int, min_val: int = None, max_val: int = None) -> int:
    """Integer from the environment, clamped to [min_val, max_val]"""
    return _bounded_env(name, default, int, min_val, max_val)


def _safe_float_env(name: str, default: float, min_val: float = None, max_val: float = None) -> float:
    return _bounded_env(name, default, float, min_val, max_val)


class Config:
    """
    Engine configuration

    Class attributes hold the defaults; instance overrides are layered on top
    by section() so the shared defaults are never mutated.
    """

    # ========== Money ==========
    FINANCIAL = {
        'initial_balance': Decimal('1000.00'),
        'default_bet': Decimal('10'),
        'min_bet': Decimal('1'),
        'bet_step': Decimal('10'),
        'max_bet': Decimal('1000000'),
        'decimal_places': 8,
    }

    # ========== Crash and growth curves ==========
    GAME_RULES = {
        # (upper bound of r, base, span); r >= last bound falls in the final tier
        'crash_tiers': (
            (Decimal('0.12'), Decimal('1.0'), Decimal('0')),
            (Decimal('0.60'), Decimal('1.1'), Decimal('1.5')),
            (Decimal('0.85'), Decimal('2.5'), Decimal('4.0')),
            (None, Decimal('6.5'), Decimal('15.0')),
        ),
        # (upper bound of multiplier, growth rate per tick)
        'growth_tiers': (
            (Decimal('2.0'), Decimal('0.012')),
            (Decimal('5.0'), Decimal('0.02')),
            (None, Decimal('0.04')),
        ),
        'min_multiplier': Decimal('1.0'),
    }

    # ========== Simulated Opponents ==========
    OPPONENTS = {
        'roster': (
            'JetSetter', 'CloudRider', 'AeroKing', 'SkyHigh',
            'LuckyPilot', 'CryptoHawk', 'Velocity', 'MachOne',
        ),
        'pool_size': 8,
        'min_stake': 5,
        'max_stake': 205,  # exclusive
        'cashout_probability': 0.02,
        'cashout_min_multiplier': Decimal('1.3'),
        'lobby_padding': 124,
    }

    # ========== Timing (seconds) ==========
    TIMING = {
        'tick_interval': _safe_int_env('SKYBOUND_TICK_MS', 50, 1, 10000) / 1000,
        'waiting_delay': _safe_float_env('SKYBOUND_WAITING_DELAY', 5.0, 0.0, 3600.0),
        'crash_delay': _safe_float_env('SKYBOUND_CRASH_DELAY', 4.0, 0.0, 3600.0),
    }

    # ========== Retention ==========
    MEMORY = {
        'max_history': _safe_int_env('SKYBOUND_MAX_HISTORY', 15, 1, 1000),
    }

    # ========== Commentary ==========
    COMMENTARY = {
        'initial_text': 'Engine warm-up initiated. Prepare for takeoff.',
        'fallback_text': 'Systems nominal. Keep your eyes on the multiplier.',
        'max_workers': 2,
        'timeout': _safe_float_env('SKYBOUND_COMMENTARY_TIMEOUT', 5.0, 0.1, 60.0),
    }

    # ========== Logging ==========
    LOGGING = {
        'level': os.getenv('LOG_LEVEL', 'INFO'),
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'date_format': '%Y-%m-%d %H:%M:%S',
        'max_bytes': 5 * 1024 * 1024,
        'backup_count': 3,
        'log_dir': os.getenv('SKYBOUND_LOG_DIR', str(Path.home() / '.skybound' / 'logs')),
    }

    def __init__(self, config_file: Optional[str] = None, validate: bool = True):
        """
        Args:
            config_file: JSON file of section overrides, loaded if it exists
            validate: Run validate() immediately
        """
        self._lock = threading.RLock()
        self.config_file = config_file
        self._custom_settings: Dict[str, Dict[str, Any]] = {}

        if config_file:
            self.load_from_file(config_file)

        if validate:
            self.validate()

    def validate(self):
        """
        Check the merged settings for consistency

        Raises:
            ConfigError: listing every problem found
        """
        errors = []

        financial = self.section('financial')
        if financial['min_bet'] <= 0:
            errors.append("min_bet must be positive")
        if financial['max_bet'] <= financial['min_bet']:
            errors.append("max_bet must exceed min_bet")
        if financial['initial_balance'] < 0:
            errors.append("initial_balance cannot be negative")
        if financial['bet_step'] <= 0:
            errors.append("bet_step must be positive")

        rules = self.section('game_rules')
        previous = Decimal('0')
        for bound, base, span in rules['crash_tiers']:
            if base < rules['min_multiplier']:
                errors.append(f"crash tier base {base} below minimum multiplier")
            if span < 0:
                errors.append(f"crash tier span {span} cannot be negative")
            if bound is not None:
                if bound <= previous or bound > 1:
                    errors.append(f"crash tier bound {bound} out of order")
                previous = bound
        if rules['crash_tiers'][-1][0] is not None:
            errors.append("last crash tier must be open-ended")
        for bound, rate in rules['growth_tiers']:
            if rate <= 0:
                errors.append(f"growth rate {rate} must be positive")
        if rules['growth_tiers'][-1][0] is not None:
            errors.append("last growth tier must be open-ended")

        opponents = self.section('opponents')
        if not opponents['roster']:
            errors.append("opponent roster cannot be empty")
        if opponents['pool_size'] < 0:
            errors.append("opponent pool_size cannot be negative")
        if opponents['min_stake'] <= 0 or opponents['max_stake'] <= opponents['min_stake']:
            errors.append("opponent stake range is invalid")
        if not 0 <= opponents['cashout_probability'] <= 1:
            errors.append("cashout_probability must be between 0 and 1")

        timing = self.section('timing')
        if timing['tick_interval'] <= 0:
            errors.append("tick_interval must be positive")
        if timing['waiting_delay'] < 0 or timing['crash_delay'] < 0:
            errors.append("round delays cannot be negative")

        if self.section('memory')['max_history'] < 1:
            errors.append("max_history must be at least 1")

        level = str(self.section('logging')['level']).upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            errors.append(f"Unknown log level: {level}")

        if errors:
            raise ConfigError("Invalid configuration:\n" + "\n".join(errors))

    def section(self, name: str) -> dict:
        """Section dict with custom overrides applied"""
        base = getattr(self, name.upper(), None)
        if not isinstance(base, dict):
            raise KeyError(f"Unknown config section: {name}")
        with self._lock:
            merged = dict(base)
            merged.update(self._custom_settings.get(name.lower(), {}))
            return merged

    # ========== Persistence ==========

    def load_from_file(self, filepath: Union[str, Path]):
        """
        Replace the overrides with those stored in a JSON file

        A missing file is ignored; malformed content raises ConfigError.
        """
        path = Path(filepath)
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return

        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            logger.error(f"Config file {path} is not valid JSON: {e}")
            raise ConfigError(f"Invalid JSON in config file: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file must contain a JSON object: {path}")

        overrides = {
            name.lower(): {key: _decode(value) for key, value in values.items()}
            for name, values in data.items()
            if isinstance(values, dict)
        }
        with self._lock:
            self._custom_settings = overrides
        logger.info(f"Loaded configuration overrides from {path}")

    def save_to_file(self, filepath: Union[str, Path]):
        """Write the merged JSON-friendly sections to filepath"""
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2, default=str))
        logger.info(f"Saved configuration to {path}")

    def get(self, section: str, key: str, default: Any = None) -> Any:
        try:
            return self.section(section).get(key, default)
        except KeyError:
            return default

    def set(self, section: str, key: str, value: Any):
        """Override one value for this instance"""
        with self._lock:
            self._custom_settings.setdefault(section.lower(), {})[key] = value

    def reset_overrides(self):
        with self._lock:
            self._custom_settings = {}

    def to_dict(self) -> dict:
        """Flat sections with Decimals tagged so they survive a JSON round trip"""
        opponents = {k: v for k, v in self.section('opponents').items() if k != 'roster'}
        sections = {
            'financial': self.section('financial'),
            'timing': self.section('timing'),
            'memory': self.section('memory'),
            'commentary': self.section('commentary'),
            'logging': self.section('logging'),
            'opponents': opponents,
        }
        return {
            name: {key: _encode(value) for key, value in values.items()}
            for name, values in sections.items()
        }


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return {'__decimal__': str(value)}
    if isinstance(value, Path):
        return {'__path__': str(value)}
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if '__decimal__' in value:
            return Decimal(value['__decimal__'])
        if '__path__' in value:
            return Path(value['__path__'])
    return value


# Global configuration instance.
#
# Importing this module only builds the defaults; validation and logging
# setup happen in Application startup (src/main.py).
config = Config(validate=False)
