"""
Registry of public exchange adapters, cached per exchange slug.

Adapters hold network sessions, so the registry builds each one once and
reuses it across broadcast cycles and backfill runs.
"""

from typing import Callable, Dict, Optional

from loguru import logger

from market_broadcast.exchanges.base import ExchangeAdapter
from market_broadcast.exchanges.binance import BinanceExchange
from market_broadcast.exchanges.ccxt_exchange import CcxtExchange


AdapterFactory = Callable[[str], ExchangeAdapter]


class ExchangeRegistry:
    """
    Lazily built, cached exchange adapters.

    'binance' uses the python-binance adapter; every other slug falls back to
    the ccxt adapter.

    Examples:
        >>> registry = ExchangeRegistry()
        >>> kraken = registry.get_public("kraken")
        >>> registry.get_public("kraken") is kraken
        True
        >>> await registry.close_all()
    """

    def __init__(
        self,
        use_testnet: bool = False,
        factories: Optional[Dict[str, AdapterFactory]] = None,
        ccxt_options: Optional[Dict[str, dict]] = None
    ):
        """
        Args:
            use_testnet: Passed to the Binance adapter
            factories: Per-slug factory overrides
            ccxt_options: Per-slug ccxt constructor options
        """
        self._instances: Dict[str, ExchangeAdapter] = {}
        self._ccxt_options = ccxt_options or {}
        self._factories: Dict[str, AdapterFactory] = {
            "binance": lambda _slug: BinanceExchange(use_testnet=use_testnet),
        }
        self._factories.update(factories or {})

    def get_public(self, slug: str) -> ExchangeAdapter:
        """
        Return the adapter for an exchange, creating it on first use.

        Raises:
            ExchangeNotSupportedError: If no adapter exists for the slug
        """
        key = slug.lower()
        if key not in self._instances:
            factory = self._factories.get(key, self._build_ccxt)
            self._instances[key] = factory(key)
            logger.debug(f"Created exchange adapter for '{key}'")
        return self._instances[key]

    def _build_ccxt(self, slug: str) -> ExchangeAdapter:
        return CcxtExchange(slug, options=self._ccxt_options.get(slug))

    def register(self, slug: str, adapter: ExchangeAdapter) -> None:
        """Install a pre-built adapter, replacing any cached one."""
        self._instances[slug.lower()] = adapter

    def remove(self, slug: str) -> Optional[ExchangeAdapter]:
        """Forget a cached adapter without closing it."""
        return self._instances.pop(slug.lower(), None)

    async def close_all(self) -> None:
        """Close every cached adapter and clear the cache."""
        for slug, adapter in list(self._instances.items()):
            try:
                await adapter.close()
            except Exception as e:
                logger.error(f"Error closing exchange adapter '{slug}': {e}")
        self._instances.clear()

    def __contains__(self, slug: str) -> bool:
        return slug.lower() in self._instances

    def __len__(self) -> int:
        return len(self._instances)
