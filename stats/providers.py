"""Market data providers.

ZoraCoinsProvider is the primary source (one coin per request).
DexScreenerProvider is the secondary source (up to 30 tokens per request).

Both retry rate limits and transient failures with jittered exponential
backoff and give up after provider_max_retries attempts, leaving the caller
to fall through to the next provider.
"""
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import backoff
import requests

from config import settings_conf
from .schemas import ZoraCoin, DexPair

logger = logging.getLogger(__name__)

ZORA_API_URL = "https://api-sdk.zora.engineering"
DEXSCREENER_API_URL = "https://api.dexscreener.com/latest/dex"

class ProviderError(Exception):
    """Base exception for market data provider errors"""
    def __init__(self, message: str, provider: Optional[str] = None, status: Optional[int] = None):
        self.provider = provider
        self.status = status
        super().__init__(f"{provider}: {message}" if provider else message)

class ProviderRateLimited(ProviderError):
    """Raised on HTTP 429"""
    pass

class ProviderUnavailable(ProviderError):
    """Raised on network errors, timeouts and 5xx responses"""
    pass

def _log_retry(details):
    logger.warning(
        f"Retrying {details['target'].__name__} in {details['wait']:.1f}s "
        f"after attempt {details['tries']}: {details['exception']}"
    )

def _log_giveup(details):
    logger.error(
        f"Giving up on {details['target'].__name__} after {details['tries']} attempts: "
        f"{details['exception']}"
    )

class HTTPProvider:
    """JSON-over-HTTP provider with retry."""

    name = 'provider'

    def __init__(self, base_url: str, headers: Optional[Dict[str, str]] = None,
                 timeout: Optional[int] = None, max_retries: Optional[int] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout or settings_conf['provider_timeout']
        self.max_retries = max_retries or settings_conf['provider_max_retries']
        self.session = requests.Session()
        self.session.headers['accept'] = 'application/json'
        if headers:
            self.session.headers.update(headers)

    def _request_once(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ProviderUnavailable(str(e), self.name) from e

        if response.status_code == 429:
            raise ProviderRateLimited("Rate limited", self.name, 429)
        if response.status_code == 404:
            return None
        if response.status_code >= 500:
            raise ProviderUnavailable(f"HTTP {response.status_code}", self.name, response.status_code)
        if response.status_code >= 400:
            raise ProviderError(f"HTTP {response.status_code}: {response.text[:200]}", self.name,
                                response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailable(f"Invalid JSON: {e}", self.name) from e

    def request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """GET path and return the decoded JSON, or None on 404.

        Raises:
            ProviderRateLimited: If still rate limited after all retries
            ProviderUnavailable: If still failing after all retries
            ProviderError: On other client errors (not retried)
        """
        retrying = backoff.on_exception(
            backoff.expo,
            (ProviderRateLimited, ProviderUnavailable),
            max_tries=self.max_retries,
            jitter=backoff.full_jitter,
            on_backoff=_log_retry,
            on_giveup=_log_giveup
        )(self._request_once)
        return retrying(path, params)

class ZoraCoinsProvider(HTTPProvider):
    """Zora coins API."""

    name = 'zora'

    def __init__(self, api_key: Optional[str] = None, chain_id: Optional[int] = None, **kwargs):
        api_key = api_key if api_key is not None else settings_conf['zora_api_key']
        headers = {'api-key': api_key} if api_key else None
        super().__init__(kwargs.pop('base_url', ZORA_API_URL), headers=headers, **kwargs)
        self.chain_id = chain_id or settings_conf['chain_id']

    def get_coin(self, address: str) -> Optional[ZoraCoin]:
        """Look up one coin. Returns None if Zora does not know it."""
        data = self.request('/coin', {'address': address, 'chain': self.chain_id})
        token = (data or {}).get('zora20Token')
        if not token:
            return None
        return ZoraCoin.from_api(token)

    def list_coins(self, count: int = 100, after: Optional[str] = None,
                   sort_direction: str = 'DESC') -> Tuple[List[ZoraCoin], Optional[str]]:
        """One page of recently created coins.

        Returns:
            (coins, next cursor or None)
        """
        params = {
            'chain': self.chain_id,
            'count': min(count, 100),
            'sortDirection': sort_direction,
        }
        if after:
            params['after'] = after
        data = self.request('/coins', params) or {}
        items = data.get('coins') or data.get('zora20Tokens') or data.get('data') or []
        coins = []
        for item in items:
            if isinstance(item, dict) and 'node' in item:
                item = item['node']
            coin = ZoraCoin.from_api(item) if isinstance(item, dict) else None
            if coin:
                coins.append(coin)
        cursor = data.get('nextCursor') or data.get('cursor')
        return coins, cursor

class DexScreenerProvider(HTTPProvider):
    """DexScreener token pairs API."""

    name = 'dexscreener'

    def __init__(self, batch_size: Optional[int] = None, batch_delay: Optional[float] = None, **kwargs):
        super().__init__(kwargs.pop('base_url', DEXSCREENER_API_URL), **kwargs)
        self.batch_size = batch_size or settings_conf['secondary_batch_size']
        self.batch_delay = batch_delay if batch_delay is not None else settings_conf['secondary_batch_delay']

    def get_pairs(self, addresses: List[str]) -> Dict[str, DexPair]:
        """Best-liquidity pair per base token address.

        A batch that fails after retries is logged and skipped; the other
        batches still return.
        """
        best: Dict[str, DexPair] = {}
        wanted = {a.lower() for a in addresses}
        for start in range(0, len(addresses), self.batch_size):
            if start:
                time.sleep(self.batch_delay)
            batch = addresses[start:start + self.batch_size]
            try:
                data = self.request(f"/tokens/{','.join(batch)}") or {}
            except ProviderError as e:
                logger.error(f"DexScreener batch of {len(batch)} failed: {e}")
                continue
            for raw in data.get('pairs') or []:
                pair = DexPair.from_api(raw)
                if not pair or pair.base_token_address not in wanted:
                    continue
                current = best.get(pair.base_token_address)
                if current is None or (pair.liquidity_usd or 0) > (current.liquidity_usd or 0):
                    best[pair.base_token_address] = pair
        return best
