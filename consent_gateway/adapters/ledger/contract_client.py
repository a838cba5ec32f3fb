"""Ledger Contract Client.

Typed wrapper around a ContractHandle that issues submit (ordered,
state-changing) and evaluate (read-only) operations and turns every ledger
failure into the gateway's typed taxonomy.

Security Impact:
    - A submit that times out is reported as AmbiguousOutcome: the ordering
      service may still commit it, so callers must not blindly retry
    - Ledger error text is classified by a fixed substring table; unrecognized
      messages become GenericLedgerFailure

Architecture:
    - Adapter layer; consumed by the domain services through the session pool
    - No retries: consensus-ordered submissions are never replayed here
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Union

from consent_gateway.domain.error_classifier import ledger_error_for
from consent_gateway.domain.ports import (
    AmbiguousOutcome,
    ContractHandle,
    GenericLedgerFailure,
    LedgerConnectionError,
    LedgerRejectionError,
    LedgerTimeoutError,
)

logger = logging.getLogger(__name__)

DEFAULT_SUBMIT_TIMEOUT = 30.0
DEFAULT_EVALUATE_TIMEOUT = 10.0


def operation_name(operation: Union[str, Enum]) -> str:
    return operation.value if isinstance(operation, Enum) else str(operation)


def encode_argument(value: Any) -> str:
    """Encode a positional argument as the string the contract expects."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class LedgerContractClient:
    """Submit/evaluate client bound to one identity's contract handle.

    Parameters:
        contract: Contract handle obtained from the session pool
        identity_label: Label of the identity the handle is authenticated as
        submit_timeout: Seconds to wait for a submit to be committed
        evaluate_timeout: Seconds to wait for an evaluate response
    """

    def __init__(
        self,
        contract: ContractHandle,
        identity_label: str,
        submit_timeout: float = DEFAULT_SUBMIT_TIMEOUT,
        evaluate_timeout: float = DEFAULT_EVALUATE_TIMEOUT,
    ):
        self._contract = contract
        self.identity_label = identity_label
        self.submit_timeout = submit_timeout
        self.evaluate_timeout = evaluate_timeout

    async def submit(self, operation: Union[str, Enum], *args: Any) -> bytes:
        """Submit an ordered transaction and wait for it to be committed.

        Raises:
            AmbiguousOutcome: No response within submit_timeout
            NotFound / PermissionDenied / AlreadyExists / GenericLedgerFailure:
                Classified ledger rejection
        """
        encoded = [encode_argument(a) for a in args]
        operation = operation_name(operation)
        logger.debug(f"submit {operation} as {self.identity_label}")
        try:
            return await asyncio.wait_for(
                self._contract.submit_transaction(operation, *encoded),
                timeout=self.submit_timeout,
            )
        except (asyncio.TimeoutError, LedgerTimeoutError) as e:
            logger.error(
                f"Submit {operation} as {self.identity_label} timed out after "
                f"{self.submit_timeout}s; outcome unknown"
            )
            raise AmbiguousOutcome(
                f"{operation} did not complete in time and may still be committed; "
                f"check ledger state before retrying",
                operation=operation,
                details={"timeout_seconds": self.submit_timeout},
            ) from e
        except LedgerRejectionError as e:
            error = ledger_error_for(str(e), operation=operation, echoed=encoded)
            logger.warning(f"Submit {operation} rejected ({error.error_code}): {e}")
            raise error from e
        except LedgerConnectionError as e:
            logger.error(f"Submit {operation} could not reach the ledger: {e}")
            raise GenericLedgerFailure(
                "Could not reach the ledger network",
                operation=operation,
                ledger_message=str(e),
            ) from e

    async def evaluate(self, operation: Union[str, Enum], *args: Any) -> bytes:
        """Evaluate a read-only query.

        Raises:
            GenericLedgerFailure: Timeout (retriable) or unreachable ledger
            NotFound / PermissionDenied / GenericLedgerFailure: Classified rejection
        """
        operation = operation_name(operation)
        encoded = [encode_argument(a) for a in args]
        try:
            return await asyncio.wait_for(
                self._contract.evaluate_transaction(operation, *encoded),
                timeout=self.evaluate_timeout,
            )
        except (asyncio.TimeoutError, LedgerTimeoutError) as e:
            logger.warning(f"Evaluate {operation} timed out after {self.evaluate_timeout}s")
            raise GenericLedgerFailure(
                f"{operation} query timed out; try again later",
                retriable=True,
                operation=operation,
            ) from e
        except LedgerRejectionError as e:
            raise ledger_error_for(str(e), operation=operation, echoed=encoded) from e
        except LedgerConnectionError as e:
            raise GenericLedgerFailure(
                "Could not reach the ledger network",
                retriable=True,
                operation=operation,
                ledger_message=str(e),
            ) from e

    async def evaluate_json(self, operation: Union[str, Enum], *args: Any) -> Any:
        """Evaluate and decode a JSON payload."""
        payload = await self.evaluate(operation, *args)
        return decode_json_payload(payload, operation_name(operation))


def decode_json_payload(payload: bytes, operation: str) -> Any:
    """Decode a ledger JSON payload; empty payloads decode to None."""
    try:
        text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else str(payload)
        if not text.strip():
            return None
        return json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise GenericLedgerFailure(
            f"{operation} returned a malformed payload",
            operation=operation,
            details={"reason": str(e)},
        ) from e
