"""
Tests for senders.py
"""
import base64

import pytest
from unittest.mock import AsyncMock, MagicMock
from solders.hash import Hash
from solders.keypair import Keypair

from dexswap.compiler import TransactionSkeleton
from dexswap.constants import RelayProvider, RelayRegion
from dexswap.errors import RelayConfigurationMissing, SubmissionFailed
from dexswap.instructions import build_tip_instruction
from dexswap.relay import RelaySelection
from dexswap.senders import RelaySender, StandardSender, build_sender


def _http_response(body):
    response = MagicMock()
    response.json.return_value = body
    response.raise_for_status.return_value = None
    return response


class TestSenders:
    """Tests for the submission backends."""
    
    @pytest.fixture
    def transaction(self, payer):
        skeleton = TransactionSkeleton(payer=payer, swap=[build_tip_instruction(payer, Keypair().pubkey(), 1)])
        return skeleton.to_transaction(Hash.default())
    
    @pytest.fixture
    def http_client(self):
        client = AsyncMock()
        client.post.return_value = _http_response({'jsonrpc': '2.0', 'id': 1, 'result': 'Sig111'})
        return client
    
    @pytest.mark.asyncio
    async def test_standard_sender(self, mock_ledger, transaction, mock_keypair):
        """Test the standard path signs and sends through the ledger."""
        mock_ledger.send_raw_transaction.return_value = "SigRpc"
        sender = StandardSender(mock_ledger)
        
        signature = await sender.submit(transaction, mock_keypair, 0.0001, 0.0, skip_preflight=True)
        
        assert signature == "SigRpc"
        raw = mock_ledger.send_raw_transaction.await_args.args[0]
        assert isinstance(raw, bytes)
        assert mock_ledger.send_raw_transaction.await_args.kwargs['skip_preflight'] is True
    
    @pytest.mark.asyncio
    async def test_relay_sender_payload(self, http_client, transaction, mock_keypair):
        """Test relays receive a base64 sendTransaction request."""
        sender = RelaySender(RelayProvider.NOZOMI, "https://ams1.nozomi.temporal.xyz/", api_key="key", client=http_client)
        
        signature = await sender.submit(transaction, mock_keypair, 0.0001, 0.002, options={'maxRetries': 0})
        
        assert signature == "Sig111"
        call = http_client.post.await_args
        payload = call.kwargs['json']
        assert payload['method'] == 'sendTransaction'
        assert payload['params'][1] == {'encoding': 'base64', 'skipPreflight': False, 'maxRetries': 0}
        assert base64.b64decode(payload['params'][0])
        assert call.kwargs['params'] == {'c': 'key'}
    
    @pytest.mark.asyncio
    async def test_jito_auth_header(self, http_client, transaction, mock_keypair):
        """Test Jito keys travel in the x-jito-auth header."""
        sender = RelaySender(RelayProvider.JITO, "https://ny.mainnet.block-engine.jito.wtf/api/v1/transactions",
                             api_key="uuid", client=http_client)
        
        await sender.submit(transaction, mock_keypair, 0.0001, 0.0005)
        
        call = http_client.post.await_args
        assert call.kwargs['headers']['x-jito-auth'] == 'uuid'
        assert call.kwargs['params'] == {}
    
    @pytest.mark.asyncio
    async def test_relay_error_raises(self, http_client, transaction, mock_keypair):
        """Test a JSON-RPC error becomes SubmissionFailed."""
        http_client.post.return_value = _http_response({'error': {'code': -32002, 'message': 'Blockhash not found'}})
        sender = RelaySender(RelayProvider.ZERO_SLOT, "https://ny.0slot.trade", client=http_client)
        
        with pytest.raises(SubmissionFailed, match="Blockhash not found") as exc_info:
            await sender.submit(transaction, mock_keypair, 0.0001, 0.001)
        assert exc_info.value.provider == "0slot"
    
    @pytest.mark.asyncio
    async def test_relay_non_object_body_raises(self, http_client, transaction, mock_keypair):
        """Test a JSON list or string body becomes SubmissionFailed, not AttributeError."""
        sender = RelaySender(RelayProvider.NOZOMI, "https://ams1.nozomi.temporal.xyz/", client=http_client)
        
        for body in (["Sig111"], "Sig111"):
            http_client.post.return_value = _http_response(body)
            with pytest.raises(SubmissionFailed, match="Unexpected response"):
                await sender.submit(transaction, mock_keypair, 0.0001, 0.002)
    
    @pytest.mark.asyncio
    async def test_relay_non_json_body_raises(self, http_client, transaction, mock_keypair):
        """Test an HTML error page becomes SubmissionFailed."""
        response = _http_response(None)
        response.json.side_effect = ValueError("Expecting value")
        response.text = "<html>502 Bad Gateway</html>"
        http_client.post.return_value = response
        sender = RelaySender(RelayProvider.JITO, "https://ny.mainnet.block-engine.jito.wtf/api/v1/transactions",
                             client=http_client)
        
        with pytest.raises(SubmissionFailed, match="not JSON"):
            await sender.submit(transaction, mock_keypair, 0.0001, 0.001)
    
    def test_build_sender(self, mock_ledger, http_client):
        """Test backend selection from a relay selection."""
        standard = build_sender(RelaySelection(provider=RelayProvider.STANDARD), mock_ledger)
        assert isinstance(standard, StandardSender)
        
        relay = build_sender(
            RelaySelection(provider=RelayProvider.JITO, region=RelayRegion.NY, endpoint="https://x"),
            mock_ledger,
            api_keys={RelayProvider.JITO: 'k'},
            client=http_client,
        )
        assert isinstance(relay, RelaySender)
        assert relay.api_key == 'k'
    
    def test_build_sender_without_endpoint(self, mock_ledger):
        """Test an accelerated selection with no endpoint is a configuration error."""
        with pytest.raises(RelayConfigurationMissing):
            build_sender(RelaySelection(provider=RelayProvider.NOZOMI), mock_ledger)
