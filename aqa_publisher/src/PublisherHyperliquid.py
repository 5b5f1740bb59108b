"""PublisherHyperliquid: Rate votes via the Hyperliquid /exchange endpoint."""

import logging
import time
from datetime import date
from typing import Any, Callable

import httpx
from eth_account import Account
from eth_account.signers.local import LocalAccount

from .Publisher import Publisher, PublishResult, PublishStatus
from .scaling import format_scaled_rate
from .signing import sign_vote

logger = logging.getLogger(__name__)

EXCHANGE_URLS = {
    "mainnet": "https://api.hyperliquid.xyz/exchange",
    "testnet": "https://api.hyperliquid-testnet.xyz/exchange",
}

REQUEST_TIMEOUT = 10.0


def load_signers(private_keys: str | None) -> list[LocalAccount]:
    """Parse comma-separated private keys into signer accounts.

    :param private_keys: Value of PUBLISHER_PRIVATE_KEY.
    :returns: One LocalAccount per key.
    :raises ValueError: If no keys are given or a key fails to parse.
    """
    if not private_keys:
        raise ValueError("PUBLISHER_PRIVATE_KEY environment variable must be set")

    signers: list[LocalAccount] = []
    for idx, key in enumerate(k.strip() for k in private_keys.split(",")):
        if not key:
            continue
        try:
            signers.append(Account.from_key(key))
        except (ValueError, TypeError) as e:
            # Never echo the key itself
            raise ValueError(f"Failed to parse private key at index {idx}") from e

    if not signers:
        raise ValueError("No valid private keys found in PUBLISHER_PRIVATE_KEY")
    return signers


class PublisherHyperliquid(Publisher):
    """Submits one ``validatorL1Stream`` vote per configured signer.

    The overall outcome is a success when at least one vote was accepted.

    :ivar signers: Validator signer accounts.
    :ivar network: "mainnet" or "testnet".
    :ivar url: Exchange endpoint URL.
    """

    def __init__(
        self,
        signers: list[LocalAccount],
        network: str = "mainnet",
        transport: httpx.AsyncBaseTransport | None = None,
        clock_ms: Callable[[], int] | None = None,
    ) -> None:
        """Initialize the publisher.

        :param signers: Signer accounts, at least one.
        :param network: "mainnet" (default) or "testnet".
        :param transport: Optional httpx transport override.
        :param clock_ms: Optional callable returning the nonce in milliseconds.
        :raises ValueError: On an empty signer list or unknown network.
        """
        if not signers:
            raise ValueError("At least one signer is required")
        if network not in EXCHANGE_URLS:
            raise ValueError(
                f"Unknown network '{network}'. Available: {', '.join(EXCHANGE_URLS)}"
            )
        self.signers = signers
        self.network = network
        self.url = EXCHANGE_URLS[network]
        self.transport = transport
        self.clock_ms = clock_ms or (lambda: int(time.time() * 1000))

    @property
    def is_mainnet(self) -> bool:
        return self.network == "mainnet"

    @property
    def description(self) -> str:
        addresses = ", ".join(s.address for s in self.signers)
        return f"hyperliquid {self.network} ({addresses})"

    async def _submit(
        self, client: httpx.AsyncClient, signer: LocalAccount, rate: str
    ) -> tuple[PublishStatus, Any]:
        """Sign and POST a single vote.

        :returns: Tuple of (status, response payload or error message).
        """
        nonce = self.clock_ms()
        action, signature = sign_vote(signer, rate, nonce, self.is_mainnet)
        request = {"action": action, "nonce": nonce, "signature": signature}

        try:
            response = await client.post(self.url, json=request)
        except httpx.RequestError as e:
            return PublishStatus.NETWORK_FAILURE, f"Request failed: {e}"

        if not response.is_success:
            return PublishStatus.NETWORK_FAILURE, f"HTTP error: {response.status_code}"

        try:
            body = response.json()
        except ValueError:
            return PublishStatus.NETWORK_FAILURE, f"Invalid JSON: {response.text[:200]}"

        if isinstance(body, dict) and body.get("status") == "ok":
            return PublishStatus.SUCCESS, body.get("response")
        if isinstance(body, dict) and body.get("status") == "err":
            return PublishStatus.REJECTED, f"API Error: {body.get('response')}"
        return PublishStatus.REJECTED, f"Unexpected response: {body!r}"

    async def publish(self, rate_scaled: int, as_of: date) -> PublishResult:
        """Submit the rate vote from every signer.

        :param rate_scaled: Rate in scaled units.
        :param as_of: Date of the data behind the rate (logged only).
        :returns: SUCCESS if any vote landed; otherwise REJECTED if any vote
            was refused by the exchange, else NETWORK_FAILURE.
        """
        rate = format_scaled_rate(rate_scaled)
        logger.info(f"Submitting rate {rate} (data as of {as_of}) to {self.network}")

        statuses: dict[str, PublishStatus] = {}
        responses: dict[str, Any] = {}

        async with httpx.AsyncClient(
            timeout=REQUEST_TIMEOUT, transport=self.transport
        ) as client:
            for idx, signer in enumerate(self.signers):
                logger.info(
                    f"Submitting vote {idx + 1}/{len(self.signers)} "
                    f"with signer: {signer.address}"
                )
                status, payload = await self._submit(client, signer, rate)
                statuses[signer.address] = status
                responses[signer.address] = payload

                if status is PublishStatus.SUCCESS:
                    logger.info(f"Validator vote success for signer {signer.address}: {payload}")
                else:
                    logger.error(f"Failed to submit vote for signer {signer.address}: {payload}")

        succeeded = sum(1 for s in statuses.values() if s is PublishStatus.SUCCESS)
        failed = len(statuses) - succeeded
        message = f"Vote submission complete: {succeeded} succeeded, {failed} failed"
        logger.info(message)

        if succeeded:
            if failed:
                logger.warning(f"{failed} out of {len(self.signers)} votes failed")
            status = PublishStatus.SUCCESS
        elif PublishStatus.REJECTED in statuses.values():
            status = PublishStatus.REJECTED
        else:
            status = PublishStatus.NETWORK_FAILURE

        return PublishResult(status=status, message=message, responses=responses)
