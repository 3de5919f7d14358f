import logging
from typing import Callable, Optional, List, Any, Mapping

from aiohttp import ClientError, ClientTimeout
from web3 import AsyncWeb3, AsyncHTTPProvider, Web3
from web3.exceptions import Web3Exception, BlockNotFound

from gmboard.domain.entities import RawGreetingLog
from gmboard.domain.exceptions import DataConsistencyWarning, InvalidArgument
from gmboard.domain.interfaces import AbstractChainLogSource
from gmboard.utils.retry import call_with_retry

logger = logging.getLogger(__name__)

LAST_GM_ABI = [
    {
        "name": "lastGM",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    }
]

# Node errors worth another attempt; anything else is a bug on our side
RETRYABLE_ERRORS = (Web3Exception, ClientError, OSError, ValueError)

def event_topic(event_signature: str) -> str:
    return "0x" + bytes(Web3.keccak(text=event_signature)).hex()

def _topic_bytes(topic: Any) -> bytes:
    if isinstance(topic, str):
        return bytes.fromhex(topic[2:] if topic.startswith("0x") else topic)
    return bytes(topic)

def _topic_to_address(topic: Any) -> str:
    # Indexed address topics are left-padded to 32 bytes
    return "0x" + _topic_bytes(topic)[-20:].hex()

def decode_greeting_log(log: Mapping[str, Any]) -> RawGreetingLog:
    """Decodes `GM(address indexed user, address indexed recipient)` from a raw log."""
    topics = log["topics"]
    if len(topics) < 3:
        raise ValueError(f"GM log without indexed arguments: {log!r}")
    return RawGreetingLog(
        actor=_topic_to_address(topics[1]),
        recipient=_topic_to_address(topics[2]),
        block_number=int(log["blockNumber"]),
        log_index=int(log["logIndex"]),
    )

class Web3LogSource(AbstractChainLogSource):
    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        max_block_range: int,
        timeout: float = 15.0,
        max_retries: int = 4,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        w3: Optional[AsyncWeb3] = None
    ):
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": ClientTimeout(total=timeout)}))
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.max_block_range = max_block_range
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._contract = self.w3.eth.contract(address=self.contract_address, abi=LAST_GM_ABI)

    async def _call(self, description: str, func):
        return await call_with_retry(
            func,
            description=description,
            attempts=self.max_retries,
            timeout=self.timeout,
            base_delay=self.backoff_base,
            max_delay=self.backoff_max,
            retry_on=RETRYABLE_ERRORS,
        )

    async def current_height(self) -> int:
        async def fetch():
            return await self.w3.eth.block_number
        return int(await self._call("eth_blockNumber", fetch))

    async def get_logs(
        self,
        event_signature: str,
        from_block: int,
        to_block: int,
        on_malformed: Optional[Callable[[DataConsistencyWarning], None]] = None
    ) -> List[RawGreetingLog]:
        if to_block < from_block or to_block - from_block + 1 > self.max_block_range:
            raise InvalidArgument(
                f"Block range {from_block}-{to_block} exceeds the {self.max_block_range}-block limit"
            )

        params = {
            "address": self.contract_address,
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [event_topic(event_signature)],
        }

        async def fetch():
            return await self.w3.eth.get_logs(params)

        raw_logs = await self._call(f"eth_getLogs {from_block}-{to_block}", fetch)
        logger.debug(f"eth_getLogs {from_block}-{to_block}: {len(raw_logs)} logs")

        decoded = []
        for log in raw_logs:
            try:
                decoded.append(decode_greeting_log(log))
            except (KeyError, TypeError, ValueError) as e:
                warning = DataConsistencyWarning(f"Skipping undecodable log in {from_block}-{to_block}: {e}")
                logger.warning(str(warning))
                if on_malformed is not None:
                    on_malformed(warning)
        return decoded

    async def get_block_timestamp(self, block_number: int) -> Optional[int]:
        async def fetch():
            try:
                block = await self.w3.eth.get_block(block_number)
            except BlockNotFound:
                return None
            return block.get("timestamp")

        ts = await self._call(f"eth_getBlockByNumber {block_number}", fetch)
        return int(ts) if ts is not None else None

    async def read_last_seen(self, address: str) -> Optional[int]:
        checksum = Web3.to_checksum_address(address)

        async def fetch():
            return await self._contract.functions.lastGM(checksum).call()

        value = await self._call(f"lastGM({address})", fetch)
        return int(value) if value else None
