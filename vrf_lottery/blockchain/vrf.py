"""Randomness oracle interface and a local VRF coordinator.

The lottery only needs two things from an oracle: submitting a request
returns an id immediately, and some time later the oracle calls
``raw_fulfill_random_words`` on the consumer with that id and the random
words. ``VRFCoordinatorV2Mock`` plays the oracle for development chains and
tests, deriving words the same way the Chainlink V2 mock does.
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Dict, List, Optional, Protocol, Sequence

from eth_abi import encode
from eth_utils import keccak

from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

MAX_NUM_WORDS = 500
MIN_REQUEST_CONFIRMATIONS = 3
MAX_REQUEST_CONFIRMATIONS = 200

DEFAULT_COORDINATOR_ADDRESS = "vrf-coordinator"


class CoordinatorError(Exception):
    pass


class NonexistentRequest(CoordinatorError):
    def __init__(self, request_id: int) -> None:
        self.request_id = request_id
        super().__init__("nonexistent request")


class InvalidRequest(CoordinatorError):
    pass


class RandomWordsConsumer(Protocol):
    def raw_fulfill_random_words(self, caller: str, request_id: int, random_words: Sequence[int]) -> None:
        ...


class RandomnessCoordinator(Protocol):
    """What the lottery calls to ask for randomness."""

    def request_random_words(
        self,
        key_hash: str,
        sub_id: int,
        minimum_request_confirmations: int,
        callback_gas_limit: int,
        num_words: int,
        consumer: Optional[RandomWordsConsumer] = None,
    ) -> int:
        ...


@dataclass(frozen=True)
class RandomWordsRequest:
    request_id: int
    key_hash: str
    sub_id: int
    minimum_request_confirmations: int
    callback_gas_limit: int
    num_words: int
    consumer: Optional[RandomWordsConsumer]


def derive_random_words(request_id: int, num_words: int) -> List[int]:
    """``uint256(keccak256(abi.encode(requestId, i)))`` for each word index."""
    return [
        int.from_bytes(keccak(encode(["uint256", "uint256"], [request_id, index])), "big")
        for index in range(num_words)
    ]


class VRFCoordinatorV2Mock:
    """In-process coordinator with manual fulfilment.

    Requests are kept until a consumer callback completes successfully, so a
    callback that fails (for example because the payout was rejected) can be
    delivered again later by whoever drives fulfilment.
    """

    def __init__(self, address: str = DEFAULT_COORDINATOR_ADDRESS) -> None:
        self.address = address
        self._lock = Lock()
        self._next_request_id = 1
        self._requests: Dict[int, RandomWordsRequest] = {}

    def request_random_words(
        self,
        key_hash: str,
        sub_id: int,
        minimum_request_confirmations: int,
        callback_gas_limit: int,
        num_words: int,
        consumer: Optional[RandomWordsConsumer] = None,
    ) -> int:
        if not 1 <= num_words <= MAX_NUM_WORDS:
            raise InvalidRequest(f"num_words must be between 1 and {MAX_NUM_WORDS}, got {num_words}")
        if not MIN_REQUEST_CONFIRMATIONS <= minimum_request_confirmations <= MAX_REQUEST_CONFIRMATIONS:
            raise InvalidRequest(
                f"request confirmations must be between {MIN_REQUEST_CONFIRMATIONS} and "
                f"{MAX_REQUEST_CONFIRMATIONS}, got {minimum_request_confirmations}"
            )

        with self._lock:
            request_id = self._next_request_id
            self._next_request_id += 1
            self._requests[request_id] = RandomWordsRequest(
                request_id=request_id,
                key_hash=key_hash,
                sub_id=sub_id,
                minimum_request_confirmations=minimum_request_confirmations,
                callback_gas_limit=callback_gas_limit,
                num_words=num_words,
                consumer=consumer,
            )
        logger.info("RandomWordsRequested id=%d sub=%s words=%d", request_id, sub_id, num_words)
        return request_id

    def fulfill_random_words(self, request_id: int, consumer: Optional[RandomWordsConsumer] = None) -> List[int]:
        request = self._get_request(request_id)
        words = derive_random_words(request_id, request.num_words)
        return self._deliver(request, consumer, words)

    def fulfill_random_words_with_override(
        self,
        request_id: int,
        consumer: Optional[RandomWordsConsumer],
        words: Sequence[int],
    ) -> List[int]:
        request = self._get_request(request_id)
        if not words:
            raise InvalidRequest("override must supply at least one word")
        return self._deliver(request, consumer, list(words))

    def get_request(self, request_id: int) -> Optional[RandomWordsRequest]:
        with self._lock:
            return self._requests.get(request_id)

    def pending_requests(self) -> List[int]:
        with self._lock:
            return sorted(self._requests)

    def _get_request(self, request_id: int) -> RandomWordsRequest:
        with self._lock:
            request = self._requests.get(request_id)
        if request is None:
            raise NonexistentRequest(request_id)
        return request

    def _deliver(
        self,
        request: RandomWordsRequest,
        consumer: Optional[RandomWordsConsumer],
        words: List[int],
    ) -> List[int]:
        target = consumer or request.consumer
        if target is None:
            raise InvalidRequest(f"request {request.request_id} has no consumer to call back")

        target.raw_fulfill_random_words(self.address, request.request_id, words)

        with self._lock:
            self._requests.pop(request.request_id, None)
        logger.info("RandomWordsFulfilled id=%d", request.request_id)
        return words
