"""Translate spend authorizations into SpendPermissionManager call payloads."""

from typing import Dict, Optional, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from eth_utils import keccak, to_bytes

from core.models import SpendAuthorization

from .models import EthereumTxPayload


class AdapterError(ValueError):
    """Raised when an authorization cannot be encoded or a result decoded."""


SPEND_PERMISSION_TYPE = "(address,address,address,uint160,uint48,uint48,uint48,uint256,bytes)"

IS_APPROVED = "isApproved"
APPROVE_WITH_SIGNATURE = "approveWithSignature"
SPEND = "spend"

_METHOD_ARG_TYPES: Dict[str, Tuple[str, ...]] = {
    IS_APPROVED: (SPEND_PERMISSION_TYPE,),
    APPROVE_WITH_SIGNATURE: (SPEND_PERMISSION_TYPE, "bytes"),
    SPEND: (SPEND_PERMISSION_TYPE, "uint160"),
}


def selector(signature: str) -> bytes:
    return keccak(text=signature)[:4]


def _method_signature(method: str) -> str:
    return f"{method}({','.join(_METHOD_ARG_TYPES[method])})"


METHOD_SELECTORS: Dict[str, bytes] = {
    method: selector(_method_signature(method)) for method in _METHOD_ARG_TYPES
}
_SELECTOR_TO_METHOD: Dict[bytes, str] = {value: key for key, value in METHOD_SELECTORS.items()}

EXCEEDED_SPEND_PERMISSION = selector("ExceededSpendPermission(uint256,uint256)")
BEFORE_SPEND_PERMISSION_START = selector("BeforeSpendPermissionStart(uint48,uint48)")
AFTER_SPEND_PERMISSION_END = selector("AfterSpendPermissionEnd(uint48,uint48)")
UNAUTHORIZED_SPEND_PERMISSION = selector("UnauthorizedSpendPermission()")


def permission_tuple(authorization: SpendAuthorization) -> Tuple[object, ...]:
    return (
        authorization.account,
        authorization.spender,
        authorization.token,
        authorization.allowance,
        authorization.period,
        authorization.start,
        authorization.end,
        authorization.salt,
        _hex_to_bytes(authorization.extra_data),
    )


def encode_is_approved(manager_address: str, authorization: SpendAuthorization) -> EthereumTxPayload:
    return _payload(manager_address, IS_APPROVED, (permission_tuple(authorization),))


def encode_approve_with_signature(
    manager_address: str, authorization: SpendAuthorization
) -> EthereumTxPayload:
    if not authorization.signature:
        raise AdapterError("Authorization signature is required for approval.")
    args = (permission_tuple(authorization), _hex_to_bytes(authorization.signature))
    return _payload(manager_address, APPROVE_WITH_SIGNATURE, args)


def encode_spend(
    manager_address: str, authorization: SpendAuthorization, value: int
) -> EthereumTxPayload:
    if value <= 0:
        raise AdapterError("Spend value must be positive.")
    return _payload(manager_address, SPEND, (permission_tuple(authorization), value))


def decode_bool(raw: bytes) -> bool:
    try:
        (value,) = decode(["bool"], bytes(raw))
    except (DecodingError, TypeError) as exc:
        raise AdapterError("Ledger returned a malformed boolean result.") from exc
    return bool(value)


def decode_call(data: str) -> Tuple[str, Tuple[object, ...]]:
    raw = _hex_to_bytes(data)
    method = _SELECTOR_TO_METHOD.get(raw[:4])
    if method is None:
        raise AdapterError("Unknown SpendPermissionManager selector.")
    try:
        args = decode(list(_METHOD_ARG_TYPES[method]), raw[4:])
    except DecodingError as exc:
        raise AdapterError(f"Malformed {method} call data.") from exc
    return method, tuple(args)


def permission_key(permission: Sequence[object]) -> bytes:
    """Stable identity of a permission struct, independent of address casing."""

    return keccak(encode([SPEND_PERMISSION_TYPE], [tuple(permission)]))


def encode_revert(error_selector: bytes, arg_types: Sequence[str] = (), args: Sequence[object] = ()) -> str:
    return _to_hex(error_selector + encode(list(arg_types), list(args)))


def revert_selector(revert_data: Optional[str]) -> Optional[bytes]:
    if not revert_data:
        return None
    try:
        raw = _hex_to_bytes(revert_data)
    except AdapterError:
        return None
    return raw[:4] if len(raw) >= 4 else None


def _payload(manager_address: str, method: str, args: Tuple[object, ...]) -> EthereumTxPayload:
    if not manager_address:
        raise AdapterError("SpendPermissionManager address is required.")
    try:
        encoded_args = encode(list(_METHOD_ARG_TYPES[method]), list(args))
    except EncodingError as exc:
        raise AdapterError(f"Cannot encode {method} call: {exc}") from exc
    return EthereumTxPayload(
        method=method,
        to_address=manager_address,
        data=_to_hex(METHOD_SELECTORS[method] + encoded_args),
    )


def _hex_to_bytes(value: str) -> bytes:
    try:
        return to_bytes(hexstr=value)
    except (TypeError, ValueError) as exc:
        raise AdapterError(f"Invalid hex value: {value!r}") from exc


def _to_hex(data: bytes) -> str:
    return "0x" + data.hex()
