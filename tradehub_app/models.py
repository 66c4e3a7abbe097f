#!/usr/bin/env python3
"""
Data Models for the Trade Hub Controller

This module contains the enums, data classes and configuration used by the
queue, the per-device executors and the hub controller.
"""

import yaml
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


# =============================================================================
# Constants (fixed bounds for all limits)
# =============================================================================

# Maximum pending entries in the waiting list
DEFAULT_QUEUE_SIZE = 50

# Finished entries kept in memory for status queries
DEFAULT_HISTORY_SIZE = 200

# Maximum number of devices in the pool
MAX_BOTS = 32

# Maximum handlers per event type
MAX_EVENT_HANDLERS = 32

# Trade codes are entered as this many digits
TRADE_CODE_DIGITS = 8
MAX_TRADE_CODE = 10 ** TRADE_CODE_DIGITS - 1

# Default device port (sys-botbase)
DEFAULT_BOT_PORT = 6000


# =============================================================================
# Enums
# =============================================================================

class TradeType(Enum):
    """Kind of operation requested for a queue entry."""
    TRADE = "trade"              # Exchange: inject the submitted payload
    CLONE = "clone"              # Duplicate: give the partner a copy of their offer
    DUMP = "dump"                # Extract: read the partner's offer back
    SEED_CHECK = "seed_check"    # Seeded search: read the offer for analysis
    MYSTERY_EGG = "mystery_egg"  # Random generation: inject a generated payload

    @property
    def needs_payload(self) -> bool:
        """Whether a payload must be resolved before admission."""
        return self in (TradeType.TRADE, TradeType.MYSTERY_EGG)


class TradeStatus(Enum):
    """Lifecycle status of a queue entry."""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TradeStatus.COMPLETED, TradeStatus.FAILED, TradeStatus.CANCELLED)


class QueueResult(Enum):
    """Admission result returned to submitters."""
    SUCCESS = "success"
    QUEUE_FULL = "queue_full"
    ALREADY_QUEUED = "already_queued"
    INVALID_PAYLOAD = "invalid_payload"
    NOT_ALLOWED = "not_allowed"


class BotState(Enum):
    """Device session states."""
    DISCONNECTED = "disconnected"
    IDLE = "idle"
    BUSY = "busy"


class ExecutorState(Enum):
    """Per-device trade sequence states."""
    IDLE = "idle"
    NAVIGATING = "navigating"
    AWAITING_PARTNER = "awaiting_partner"
    INJECTING = "injecting"
    CONFIRMING = "confirming"
    AWAITING_COMPLETION = "awaiting_completion"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RECOVERING = "recovering"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class TradeEntry:
    """
    A single admitted request.

    The queue owns the entry for its whole life; an executor only borrows it
    while the entry is ACTIVE.
    """
    user_id: Union[int, str]
    trainer_name: str = ""
    payload: Optional[bytes] = None
    payload_name: str = ""
    trade_type: TradeType = TradeType.TRADE
    trade_code: int = 0

    # Lifecycle
    status: TradeStatus = TradeStatus.PENDING
    assigned_bot: Optional[str] = None
    queue_time: float = 0.0
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    # Result
    result_reason: Optional[str] = None
    extracted: Optional[bytes] = None


@dataclass
class TradeOutcome:
    """Terminal result reported by an executor."""
    success: bool
    reason: Optional[str] = None
    cancelled: bool = False
    partner_name: str = ""
    extracted: Optional[bytes] = None

    @property
    def status(self) -> TradeStatus:
        if self.cancelled:
            return TradeStatus.CANCELLED
        return TradeStatus.COMPLETED if self.success else TradeStatus.FAILED

    @classmethod
    def failed(cls, reason: str) -> "TradeOutcome":
        return cls(success=False, reason=reason)

    @classmethod
    def was_cancelled(cls, reason: str = "cancelled") -> "TradeOutcome":
        return cls(success=False, reason=reason, cancelled=True)


@dataclass
class BotStatus:
    """Snapshot of a device session for status reporting."""
    name: str
    title: str
    state: BotState
    connected: bool
    busy: bool
    trade_count: int = 0
    failure_count: int = 0
    last_trade: Optional[float] = None
    current_trainer: Optional[str] = None
    executor_state: ExecutorState = ExecutorState.IDLE


@dataclass
class BotConfig:
    """A device registration: where it lives and which title it runs."""
    name: str = "Bot"
    host: str = "192.168.1.1"
    port: int = DEFAULT_BOT_PORT
    title: str = "lza"
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict) -> "BotConfig":
        return cls(
            name=data.get("name", "Bot"),
            host=data.get("host", data.get("ip", "192.168.1.1")),
            port=int(data.get("port", DEFAULT_BOT_PORT)),
            title=str(data.get("title", "lza")).lower(),
            enabled=data.get("enabled", True),
        )

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "title": self.title,
            "enabled": self.enabled,
        }


@dataclass
class TimingConfig:
    """Timing settings for the trade sequence and the pool loop (seconds)."""
    poll_interval: float = 0.5
    partner_timeout: float = 60.0
    completion_timeout: float = 30.0
    injection_settle: float = 0.5
    settle_delay: float = 2.0
    idle_backoff: float = 1.0
    recovery_presses: int = 5
    recovery_delay: float = 0.5
    connect_timeout: float = 10.0
    response_timeout: Optional[float] = 10.0


@dataclass
class ApiConfig:
    """API server configuration."""
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8100


@dataclass
class StorageConfig:
    """Trade history storage configuration."""
    enabled: bool = True
    db_path: str = "trade_history.db"


@dataclass
class HubConfig:
    """Configuration for the trade hub controller."""
    bots: List[BotConfig] = field(default_factory=list)

    # Queue settings
    max_queue_size: int = DEFAULT_QUEUE_SIZE
    history_size: int = DEFAULT_HISTORY_SIZE

    timing: TimingConfig = field(default_factory=TimingConfig)

    # Per-title overrides, keyed by title name
    titles: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    # Payload files
    payload_folder: str = "payloads"

    storage: StorageConfig = field(default_factory=StorageConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    # Logging
    log_level: str = "INFO"
    log_file: str = "tradehub.log"

    @classmethod
    def from_yaml(cls, path: str) -> "HubConfig":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict) -> "HubConfig":
        """Build configuration from an already-parsed mapping."""
        # Sections left empty in YAML parse to None
        timing = data.get("timing") or {}
        queue = data.get("queue") or {}
        storage = data.get("storage") or {}
        api_data = data.get("api") or {}
        titles = data.get("titles") or {}
        payloads = data.get("payloads") or {}
        logging_data = data.get("logging") or {}
        defaults = TimingConfig()

        return cls(
            bots=[BotConfig.from_dict(b) for b in data.get("bots") or []][:MAX_BOTS],
            max_queue_size=queue.get("max_size", DEFAULT_QUEUE_SIZE),
            history_size=queue.get("history_size", DEFAULT_HISTORY_SIZE),
            timing=TimingConfig(
                poll_interval=timing.get("poll_interval", defaults.poll_interval),
                partner_timeout=timing.get("partner_timeout", defaults.partner_timeout),
                completion_timeout=timing.get("completion_timeout", defaults.completion_timeout),
                injection_settle=timing.get("injection_settle", defaults.injection_settle),
                settle_delay=timing.get("settle_delay", defaults.settle_delay),
                idle_backoff=timing.get("idle_backoff", defaults.idle_backoff),
                recovery_presses=timing.get("recovery_presses", defaults.recovery_presses),
                recovery_delay=timing.get("recovery_delay", defaults.recovery_delay),
                connect_timeout=timing.get("connect_timeout", defaults.connect_timeout),
                response_timeout=timing.get("response_timeout", defaults.response_timeout),
            ),
            titles={str(k).lower(): v or {} for k, v in titles.items()},
            payload_folder=payloads.get("folder", "payloads"),
            storage=StorageConfig(
                enabled=storage.get("enabled", True),
                db_path=storage.get("db_path", "trade_history.db"),
            ),
            api=ApiConfig(
                enabled=api_data.get("enabled", False),
                host=api_data.get("host", "0.0.0.0"),
                port=api_data.get("port", 8100),
            ),
            log_level=logging_data.get("level", "INFO"),
            log_file=logging_data.get("file", "tradehub.log"),
        )

    def to_dict(self) -> Dict:
        """Convert config to dictionary."""
        return {
            "bots": [b.to_dict() for b in self.bots],
            "queue": {
                "max_size": self.max_queue_size,
                "history_size": self.history_size,
            },
            "timing": {
                "poll_interval": self.timing.poll_interval,
                "partner_timeout": self.timing.partner_timeout,
                "completion_timeout": self.timing.completion_timeout,
                "injection_settle": self.timing.injection_settle,
                "settle_delay": self.timing.settle_delay,
                "idle_backoff": self.timing.idle_backoff,
                "recovery_presses": self.timing.recovery_presses,
                "recovery_delay": self.timing.recovery_delay,
                "connect_timeout": self.timing.connect_timeout,
                "response_timeout": self.timing.response_timeout,
            },
            "titles": dict(self.titles),
            "payloads": {
                "folder": self.payload_folder,
            },
            "storage": {
                "enabled": self.storage.enabled,
                "db_path": self.storage.db_path,
            },
            "api": {
                "enabled": self.api.enabled,
                "host": self.api.host,
                "port": self.api.port,
            },
            "logging": {
                "level": self.log_level,
                "file": self.log_file,
            },
        }
