"""Classification of raw ledger error messages.

The ledger returns business-rule rejections as plain text ("does not exist",
"permission denied", "only AuditOrg can verify doctors", ...). This module maps
such text onto an ErrorKind by scanning a fixed, ordered table of known
substrings. Anything unrecognized is GENERIC.

Ledger messages echo the arguments of the rejected call ("access key <key> not
found"), so those arguments are blanked out before the scan; only the
ledger's own wording is classified.
"""

import re
from typing import Iterable, Optional

from consent_gateway.domain.enums import ErrorKind
from consent_gateway.domain.ports import (
    AlreadyExists,
    GenericLedgerFailure,
    LedgerError,
    NotFound,
    PermissionDenied,
)

# Order matters: policy rejections often also mention the missing actor
# ("only AuditOrg can ..., identity not found"), so they are checked first.
_RULES: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (ErrorKind.PERMISSION_DENIED, (
        "permission denied",
        "access denied",
        "not authorized",
        "unauthorized",
        "forbidden",
    )),
    (ErrorKind.ALREADY_EXISTS, (
        "already exists",
        "already registered",
        "duplicate",
    )),
    (ErrorKind.NOT_FOUND, (
        "does not exist",
        "not found",
        "no such",
    )),
)

# "only <Org> can ..." policy phrasing
_ONLY_ORG_CAN = re.compile(r"\bonly\s+\S+\s+(?:can|may|is allowed to)\b")

_ERROR_TYPES = {
    ErrorKind.NOT_FOUND: NotFound,
    ErrorKind.PERMISSION_DENIED: PermissionDenied,
    ErrorKind.ALREADY_EXISTS: AlreadyExists,
    ErrorKind.GENERIC: GenericLedgerFailure,
}


def strip_echoed_arguments(message: str, echoed: Iterable[str] = ()) -> str:
    """Lower-case the message and blank out every echoed call argument.

    Only whole-token occurrences are removed, so a short argument ("al") never
    eats into the ledger's wording ("already exists").
    """
    text = message.lower()
    for value in sorted({str(a).strip().lower() for a in echoed if a}, key=len, reverse=True):
        if value:
            text = re.sub(rf"(?<!\w){re.escape(value)}(?!\w)", " ", text)
    return text


def classify_ledger_error(message: Optional[str], echoed: Iterable[str] = ()) -> ErrorKind:
    """Map a raw ledger error message to an ErrorKind.

    Parameters:
        message: Error text as returned by the ledger (may be None)
        echoed: Arguments of the rejected call; never classified as wording

    Returns:
        ErrorKind: NOT_FOUND, PERMISSION_DENIED, ALREADY_EXISTS, or GENERIC
        when no known substring matches.
    """
    if not message:
        return ErrorKind.GENERIC

    text = strip_echoed_arguments(message, echoed)
    if _ONLY_ORG_CAN.search(text):
        return ErrorKind.PERMISSION_DENIED

    for kind, needles in _RULES:
        if any(needle in text for needle in needles):
            return kind
    return ErrorKind.GENERIC


def ledger_error_for(
    message: str,
    operation: Optional[str] = None,
    echoed: Iterable[str] = (),
) -> LedgerError:
    """Build the typed LedgerError for a raw ledger rejection."""
    kind = classify_ledger_error(message, echoed)
    error_cls = _ERROR_TYPES[kind]
    summaries = {
        ErrorKind.NOT_FOUND: "Requested ledger record was not found",
        ErrorKind.PERMISSION_DENIED: "Operation rejected by ledger access policy",
        ErrorKind.ALREADY_EXISTS: "Ledger record already exists",
        ErrorKind.GENERIC: "Ledger operation failed",
    }
    return error_cls(
        summaries[kind],
        operation=operation,
        ledger_message=message,
    )
