# mlm_engine/utils/payment_details.py
"""
Payment details for activations, one variant per payment method.

Raw payloads are parsed exactly once at the boundary; every variant carries
only the fields its method needs.
"""
import re
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

from mlm_engine.errors import InvalidPaymentDetails
from mlm_engine.utils.money import to_money

logger = logging.getLogger(__name__)

TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")
WALLET_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
P2P_REFERENCE_PATTERN = re.compile(r"^[A-Za-z0-9_\-:.]{4,100}$")


class PaymentMethod(Enum):
    """Supported activation payment methods."""
    USDT_BEP20 = "usdt_bep20"
    FUND_CONVERSION = "fund_conversion"
    P2P = "p2p"


@dataclass(frozen=True)
class OnChainPayment:
    """USDT transfer on BEP20, proven by its transaction hash."""
    transactionHash: str
    fromWallet: str
    method: PaymentMethod = PaymentMethod.USDT_BEP20

    @property
    def proof(self) -> Optional[str]:
        return self.transactionHash


@dataclass(frozen=True)
class BalanceConversion:
    """Activation paid from the member's available balance."""
    convertFromBalance: Decimal
    method: PaymentMethod = PaymentMethod.FUND_CONVERSION

    @property
    def proof(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class PeerToPeerPayment:
    """Off-platform transfer identified by a peer reference token."""
    p2pReference: str
    method: PaymentMethod = PaymentMethod.P2P

    @property
    def proof(self) -> Optional[str]:
        return self.p2pReference


PaymentDetails = Union[OnChainPayment, BalanceConversion, PeerToPeerPayment]

_ALLOWED_FIELDS = {
    PaymentMethod.USDT_BEP20: {"transactionHash", "fromWallet"},
    PaymentMethod.FUND_CONVERSION: {"convertFromBalance"},
    PaymentMethod.P2P: {"p2pReference"},
}


def _require_str(payload: Dict[str, Any], field: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        raise InvalidPaymentDetails(f"'{field}' is required", {"field": field})
    return value.strip()


def parse_payment_method(method: str) -> PaymentMethod:
    try:
        return PaymentMethod(method)
    except ValueError:
        raise InvalidPaymentDetails(
            f"Unsupported payment method '{method}'",
            {"method": method}
        )


def parse_payment_details(method: str, payload: Optional[Dict[str, Any]]) -> PaymentDetails:
    """
    Validate a raw payment payload for a method.

    Args:
        method: Payment method value (usdt_bep20, fund_conversion, p2p)
        payload: Raw details dict

    Returns:
        The variant for the method

    Raises:
        InvalidPaymentDetails: On unknown method, unknown or missing fields,
            or a malformed hash, wallet, amount or reference
    """
    payment_method = parse_payment_method(method)

    if not isinstance(payload, dict):
        raise InvalidPaymentDetails("Payment details must be an object")

    unknown = set(payload) - _ALLOWED_FIELDS[payment_method]
    if unknown:
        raise InvalidPaymentDetails(
            f"Unexpected fields for {payment_method.value}: {', '.join(sorted(unknown))}",
            {"fields": sorted(unknown)}
        )

    if payment_method == PaymentMethod.USDT_BEP20:
        tx_hash = _require_str(payload, "transactionHash")
        if not TX_HASH_PATTERN.match(tx_hash):
            raise InvalidPaymentDetails("Invalid transaction hash format", {"field": "transactionHash"})

        wallet = _require_str(payload, "fromWallet")
        if not WALLET_PATTERN.match(wallet):
            raise InvalidPaymentDetails("Invalid wallet address format", {"field": "fromWallet"})

        # Hashes are case-insensitive; store one canonical form
        return OnChainPayment(transactionHash=tx_hash.lower(), fromWallet=wallet.lower())

    if payment_method == PaymentMethod.FUND_CONVERSION:
        raw_amount = payload.get("convertFromBalance")
        if raw_amount is None:
            raise InvalidPaymentDetails("'convertFromBalance' is required", {"field": "convertFromBalance"})
        try:
            amount = to_money(raw_amount)
        except ValueError as e:
            raise InvalidPaymentDetails(str(e), {"field": "convertFromBalance"})
        if amount <= 0:
            raise InvalidPaymentDetails("'convertFromBalance' must be positive", {"field": "convertFromBalance"})
        return BalanceConversion(convertFromBalance=amount)

    reference = _require_str(payload, "p2pReference")
    if not P2P_REFERENCE_PATTERN.match(reference):
        raise InvalidPaymentDetails("Invalid P2P reference format", {"field": "p2pReference"})
    return PeerToPeerPayment(p2pReference=reference)
