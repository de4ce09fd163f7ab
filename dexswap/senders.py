"""
Submission backends: the standard RPC path and accelerated relay endpoints.

Both sign the transaction with the payer and send it once. Retrying is up to the caller.
"""
import base64
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from solders.keypair import Keypair
from solders.transaction import Transaction

from .constants import RelayProvider
from .errors import RelayConfigurationMissing, SubmissionFailed
from .ledger import LedgerTransport
from .relay import RelaySelection
from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


def sign_transaction(transaction: Transaction, signer: Keypair) -> bytes:
    """Sign with the fee payer over the message's blockhash and serialize."""
    transaction.sign([signer], transaction.message.recent_blockhash)
    return bytes(transaction)


class SubmissionBackend(ABC):
    """Narrow interface every submission path implements."""
    
    provider: RelayProvider
    
    @abstractmethod
    async def submit(
        self,
        transaction: Transaction,
        signer: Keypair,
        priority_fee: float,
        tip: float,
        skip_preflight: bool = False,
        options: Optional[Dict[str, Any]] = None,
        provider_metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        """Submit a transaction and return its signature."""
    
    async def close(self):
        pass


class StandardSender(SubmissionBackend):
    """Plain RPC submission through the ledger transport."""
    
    provider = RelayProvider.STANDARD
    
    def __init__(self, ledger: LedgerTransport):
        self.ledger = ledger
    
    async def submit(
        self,
        transaction: Transaction,
        signer: Keypair,
        priority_fee: float,
        tip: float,
        skip_preflight: bool = False,
        options: Optional[Dict[str, Any]] = None,
        provider_metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        raw = sign_transaction(transaction, signer)
        logger.info(
            f"Submitting via {colors['CYAN']}standard RPC{colors['RESET']} "
            f"(priority fee {priority_fee} SOL, {len(raw)} bytes)"
        )
        return await self.ledger.send_raw_transaction(raw, skip_preflight=skip_preflight)


class RelaySender(SubmissionBackend):
    """JSON-RPC ``sendTransaction`` to an accelerated relay's regional endpoint."""
    
    def __init__(
        self,
        provider: RelayProvider,
        endpoint: str,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0
    ):
        """
        Initialize relay sender.
        
        Args:
            provider: Relay provider this sender targets
            endpoint: Regional endpoint URL
            api_key: Optional provider API key
            client: Optional httpx client (tests inject one)
            timeout: Request timeout in seconds
        """
        self.provider = provider
        self.endpoint = endpoint
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=timeout)
    
    def _auth(self):
        """Return (headers, query params) carrying the API key the way each provider expects."""
        headers = {'Content-Type': 'application/json'}
        params: Dict[str, str] = {}
        if not self.api_key:
            return headers, params
        if self.provider == RelayProvider.JITO:
            headers['x-jito-auth'] = self.api_key
        elif self.provider == RelayProvider.NOZOMI:
            params['c'] = self.api_key
        else:
            params['api-key'] = self.api_key
        return headers, params
    
    async def submit(
        self,
        transaction: Transaction,
        signer: Keypair,
        priority_fee: float,
        tip: float,
        skip_preflight: bool = False,
        options: Optional[Dict[str, Any]] = None,
        provider_metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        raw = sign_transaction(transaction, signer)
        metadata = provider_metadata or {}
        config: Dict[str, Any] = {'encoding': 'base64', 'skipPreflight': skip_preflight}
        config.update(options or {})
        payload = {
            'jsonrpc': '2.0',
            'id': 1,
            'method': 'sendTransaction',
            'params': [base64.b64encode(raw).decode('utf-8'), config],
        }
        headers, params = self._auth()
        logger.info(
            f"Submitting via {colors['CYAN']}{self.provider.value}{colors['RESET']} "
            f"({metadata.get('region') or 'default'} region, tip {colors['YELLOW']}{tip} SOL{colors['RESET']}, "
            f"anti-front-running={bool(metadata.get('anti_front_running'))})"
        )
        
        response = await self.client.post(self.endpoint, json=payload, headers=headers, params=params)
        response.raise_for_status()
        try:
            body = response.json()
        except ValueError as e:
            raise SubmissionFailed(self.provider.value, f"Response is not JSON: {response.text[:200]}") from e
        if not isinstance(body, dict):
            raise SubmissionFailed(self.provider.value, f"Unexpected response: {body!r}")
        if body.get('error'):
            error = body['error']
            message = error.get('message', str(error)) if isinstance(error, dict) else str(error)
            logger.error(f"{colors['RED']}{self.provider.value} rejected transaction: {message}{colors['RESET']}")
            raise SubmissionFailed(self.provider.value, message)
        signature = body.get('result')
        if not signature:
            raise SubmissionFailed(self.provider.value, f"Unexpected response: {body}")
        return str(signature)
    
    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()


def build_sender(
    selection: RelaySelection,
    ledger: LedgerTransport,
    api_keys: Optional[Dict[RelayProvider, str]] = None,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 30.0
) -> SubmissionBackend:
    """
    Backend for a relay selection.
    
    Raises:
        RelayConfigurationMissing: If an accelerated selection has no endpoint
    """
    if selection.provider == RelayProvider.STANDARD:
        return StandardSender(ledger)
    if not selection.endpoint:
        raise RelayConfigurationMissing(selection.provider.value, f"No endpoint selected for {selection.provider.value}")
    return RelaySender(
        selection.provider,
        selection.endpoint,
        api_key=(api_keys or {}).get(selection.provider),
        client=client,
        timeout=timeout,
    )
