"""
Trade Hub Controller Module

Run a pool of consoles as automated trade partners. Each console runs a
remote-control service that accepts a line-based text protocol over TCP
(memory peek/poke, button input); this module drives the in-game trade
sequence over that link and serves requests from a shared waiting list.

Architecture:
    Front-ends (chat bots, REST API)
        │
        ├── submit / cancel / position
        ▼
    TradeHubController (this module)
        │
        ├── One asyncio task per console
        ▼
    Console (remote-control service, TCP port 6000)
        - Memory reads for partner and completion flags
        - Memory writes for the offered payload
        - Button and stick input for menus and the link code keypad

Trade Flow:
    1. A front-end submits a request; the payload is resolved and the entry
       joins the waiting list (one unfinished entry per user)
    2. An idle console claims the earliest pending entry
    3. The console opens the trade menu and enters the 8-digit link code
    4. Once a partner is found, the payload is written into the offer slot
    5. The trade is confirmed and the console waits for it to finish
    6. Any failure or cancellation backs the console out to a neutral menu

Usage:
    import asyncio
    from tradehub_app import TradeHubController, HubConfig

    config = HubConfig.from_yaml("config.yaml")
    hub = TradeHubController(config)

    # Register handlers
    hub.on_trade_complete(lambda name, trainer, ok: print(f"{trainer}: {name} {'done' if ok else 'failed'}"))

    # Submit from any front-end
    hub.submit(1234, "Ash", "pikachu.bin", trade_code=12345678)

    # Run until stopped
    asyncio.run(hub.run())
"""

__version__ = "0.3.0"

from .controller import TradeHubController, generate_trade_code
from .errors import LinkError, SequenceTimeout, TradeCancelled, TradeHubError
from .link import LinkClient
from .models import (
    BotConfig,
    BotState,
    BotStatus,
    ExecutorState,
    HubConfig,
    QueueResult,
    TimingConfig,
    TradeEntry,
    TradeOutcome,
    TradeStatus,
    TradeType,
)
from .payloads import FolderPayloadResolver, ResolvedPayload
from .protocol import Button, Stick
from .titles import BUILTIN_TITLES, ButtonStep, TitleProfile, resolve_title
from .trade_queue import TradeQueue

__all__ = [
    # Hub
    "TradeHubController",
    "HubConfig",
    "BotConfig",
    "TimingConfig",
    "BotState",
    "BotStatus",
    "generate_trade_code",
    # Queue
    "TradeQueue",
    "TradeEntry",
    "TradeOutcome",
    "TradeStatus",
    "TradeType",
    "QueueResult",
    # Devices
    "LinkClient",
    "Button",
    "Stick",
    "ExecutorState",
    "TitleProfile",
    "ButtonStep",
    "BUILTIN_TITLES",
    "resolve_title",
    # Payloads
    "FolderPayloadResolver",
    "ResolvedPayload",
    # Errors
    "TradeHubError",
    "LinkError",
    "SequenceTimeout",
    "TradeCancelled",
]
