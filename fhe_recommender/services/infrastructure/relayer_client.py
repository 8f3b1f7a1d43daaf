"""
FHE runtime: relayer HTTP client, subsystem initialization, and the
readiness gate every encrypt/decrypt call passes through.

The relayer is the FHE network's HTTP service. It hands out public key
material, attests input proofs for freshly encrypted values, and performs
public decryption of ciphertext handles. The cryptographic primitives
themselves live behind the FheBackend protocol.
"""

import asyncio
import time
from typing import Any, Protocol

import httpx

from fhe_recommender.config import settings
from fhe_recommender.errors import SubsystemNotReady
from fhe_recommender.infrastructure.observability.logging import get_logger, log_relayer_call
from fhe_recommender.models.domain.content_domain import DecryptionResult, EncryptedInput

logger = get_logger(__name__)

KEY_URL_PATH = "/v1/keyurl"
INPUT_PROOF_PATH = "/v1/input-proof"
PUBLIC_DECRYPT_PATH = "/v1/public-decrypt"

BACKOFF_FACTOR = 0.5
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class RelayerError(Exception):
    """Custom exception for relayer API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}


class FheBackend(Protocol):
    """Local FHE primitives (key loading, ciphertext building, proof decoding)."""

    async def load_public_key(self, key_material: dict[str, Any]) -> None: ...

    def encrypt_uint32(self, contract_address: str, account_address: str, value: int) -> bytes: ...

    def decode_input_proof(self, response: dict[str, Any]) -> EncryptedInput: ...

    def decode_public_decrypt(
        self, handles: list[str], response: dict[str, Any]
    ) -> DecryptionResult: ...


class RelayerClient:
    """
    Async HTTP client for the relayer API.

    Retries transient failures (429/5xx and transport errors) with
    exponential backoff.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        config = settings.get_relayer_client_config()
        self._base_url = (base_url or settings.relayer_base_url()).rstrip("/")
        self._timeout = timeout if timeout is not None else config["timeout"]
        self._max_retries = max(1, max_retries if max_retries is not None else config["max_retries"])
        self._client = self._create_client(transport)

    def _create_client(self, transport: httpx.AsyncBaseTransport | None) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self._timeout)
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            limits=limits,
            transport=transport,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request_with_retry(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with retry and backoff."""
        for attempt in range(1, self._max_retries + 1):
            started = time.perf_counter()
            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.RequestError as e:
                if attempt >= self._max_retries:
                    raise RelayerError(f"Relayer unreachable: {e}") from e
                backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                logger.debug(
                    "Relayer request error, retrying",
                    path=path,
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
                continue

            log_relayer_call(
                path,
                response.status_code,
                round((time.perf_counter() - started) * 1000, 2),
                attempt=attempt,
            )
            if response.status_code in RETRY_STATUS_CODES and attempt < self._max_retries:
                await asyncio.sleep(BACKOFF_FACTOR * (2 ** (attempt - 1)))
                continue
            return response
        raise RuntimeError("Relayer retry loop exhausted")

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Parse a relayer response.

        Raises:
            RelayerError: If the relayer reported an error or returned non-JSON
        """
        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error("Invalid relayer response", operation=operation, error=str(e))
                raise RelayerError(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            raise RelayerError(
                f"Relayer {operation} failed (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from None

        message = _extract_error_message(error_data) or f"HTTP {response.status_code}"
        logger.error(
            "Relayer request rejected",
            operation=operation,
            status_code=response.status_code,
            error_message=message,
        )
        raise RelayerError(
            f"Relayer {operation} failed: {message}",
            status_code=response.status_code,
            response_data=error_data,
        )

    async def fetch_key_urls(self) -> dict[str, Any]:
        response = await self._request_with_retry("GET", KEY_URL_PATH)
        return self._handle_api_response(response, "keyurl")

    async def request_input_proof(
        self, contract_address: str, account_address: str, ciphertext: bytes
    ) -> dict[str, Any]:
        payload = {
            "contractAddress": contract_address,
            "userAddress": account_address,
            "ciphertextWithInputVerification": ciphertext.hex(),
            "extraData": "0x00",
        }
        response = await self._request_with_retry("POST", INPUT_PROOF_PATH, json=payload)
        return self._handle_api_response(response, "input-proof")

    async def public_decrypt(self, handles: list[str], contract_address: str) -> dict[str, Any]:
        payload = {
            "ciphertextHandles": list(handles),
            "contractAddress": contract_address,
            "extraData": "0x00",
        }
        response = await self._request_with_retry("POST", PUBLIC_DECRYPT_PATH, json=payload)
        return self._handle_api_response(response, "public-decrypt")


def _extract_error_message(error_data: Any) -> str | None:
    if not isinstance(error_data, dict):
        return None
    error = error_data.get("error")
    if isinstance(error, dict):
        return error.get("message")
    if isinstance(error, str):
        return error
    return error_data.get("message")


class FheRuntime:
    """
    Owns FHE subsystem initialization and gates every crypto call on it.

    Calls made before ``initialize`` completes fail fast with
    SubsystemNotReady instead of waiting.
    """

    def __init__(self, relayer: RelayerClient, backend: FheBackend):
        self.relayer = relayer
        self.backend = backend
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """
        Fetch public key material from the relayer and load it into the backend.

        Raises:
            SubsystemNotReady: If key retrieval or loading fails
        """
        if self._initialized:
            return

        try:
            key_material = await self.relayer.fetch_key_urls()
            await self.backend.load_public_key(key_material)
        except Exception as e:
            logger.error(
                "FHE runtime initialization failed",
                error=str(e),
                error_type=type(e).__name__,
                relayer_host=settings.relayer_host(),
            )
            raise SubsystemNotReady(f"FHE initialization failed: {e}") from e

        self._initialized = True
        logger.info("FHE runtime initialized", relayer_host=settings.relayer_host())

    def require_ready(self, operation: str) -> None:
        if not self._initialized:
            raise SubsystemNotReady(f"FHE subsystem not initialized; cannot {operation}")
