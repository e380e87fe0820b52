# mlm_engine/gateway.py
"""
Core surface used by the request gateway and the admin console.

Callers are already authenticated. Every function opens its own unit of
work, retries lost races with backoff, and returns
{"success": True, "data": ...} or {"success": False, "error": {...}}.
Internal exception details never leave this module.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from core.db import get_db_session_ctx
from core.retry import run_with_retry
from models.activation import ActivationTransaction
from models.fund_request import FundRequest
from models.fund_transfer import FundTransfer
from models.withdrawal import Withdrawal
from mlm_engine.config.ranks import update_rank_catalog
from mlm_engine.errors import MLMError, ValidationError, ok, fail, internal_failure
from mlm_engine.services.activation_service import ActivationService
from mlm_engine.services.fund_request_service import FundRequestService
from mlm_engine.services.member_service import MemberService
from mlm_engine.services.payout_service import PayoutService
from mlm_engine.services.wallet_service import WalletService
from mlm_engine.services.withdrawal_service import WithdrawalService

logger = logging.getLogger(__name__)


async def _execute(description: str, operation: Callable[[Any], Awaitable[Any]]) -> Dict[str, Any]:
    """
    Run operation(session) as a retried unit of work and wrap the result.
    """

    async def attempt():
        with get_db_session_ctx() as session:
            return await operation(session)

    try:
        data = await run_with_retry(attempt, description)
        return ok(data)
    except MLMError as e:
        logger.info(f"{description} rejected: {e.code.value} {e.message}")
        return fail(e)
    except Exception as e:
        logger.error(f"{description} failed: {e}", exc_info=True)
        return internal_failure()


def _require(payload: Dict[str, Any], field: str) -> Any:
    if not isinstance(payload, dict) or payload.get(field) is None:
        raise ValidationError(f"'{field}' is required", {"field": field})
    return payload[field]


def _activation_data(transaction: ActivationTransaction) -> Dict[str, Any]:
    return {
        "transactionId": transaction.transactionID,
        "memberId": transaction.memberID,
        "targetRank": transaction.targetRank,
        "txType": transaction.txType,
        "paymentMethod": transaction.paymentMethod,
        "amount": transaction.amount,
        "status": transaction.status,
    }


def _withdrawal_data(withdrawal: Withdrawal) -> Dict[str, Any]:
    return {
        "withdrawalId": withdrawal.withdrawalID,
        "memberId": withdrawal.memberID,
        "amount": withdrawal.amount,
        "method": withdrawal.method,
        "deduction": withdrawal.deduction,
        "netAmount": withdrawal.netAmount,
        "status": withdrawal.status,
    }


def _transfer_data(transfer: FundTransfer) -> Dict[str, Any]:
    return {
        "transferId": transfer.transferID,
        "senderId": transfer.senderID,
        "recipientId": transfer.recipientID,
        "amount": transfer.amount,
    }


def _fund_request_data(request: FundRequest) -> Dict[str, Any]:
    return {
        "requestId": request.requestID,
        "memberId": request.memberID,
        "amount": request.amount,
        "currency": request.currency,
        "status": request.status,
    }


# ═══════════════════════════════════════════════════════════════════════
# MEMBER OPERATIONS
# ═══════════════════════════════════════════════════════════════════════

async def registerMember(callerId: Optional[int], payload: Dict[str, Any]) -> Dict[str, Any]:
    async def operation(session):
        member = await MemberService(session).registerMember(
            sponsorId=payload.get("sponsorId"),
            displayName=payload.get("displayName")
        )
        return {"memberId": member.memberID, "sponsorId": member.sponsorID, "rank": member.rank}

    return await _execute("registerMember", operation)


async def createActivation(callerId: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    """payload: {targetRank, paymentMethod, paymentDetails}"""

    async def operation(session):
        transaction = await ActivationService(session).createActivation(
            callerId,
            _require(payload, "targetRank"),
            _require(payload, "paymentMethod"),
            payload.get("paymentDetails")
        )
        return _activation_data(transaction)

    return await _execute("createActivation", operation)


async def requestWithdrawal(callerId: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    """payload: {amount, method, withdrawalDetails}"""

    async def operation(session):
        withdrawal = await WithdrawalService(session).requestWithdrawal(
            callerId,
            _require(payload, "amount"),
            _require(payload, "method"),
            payload.get("withdrawalDetails")
        )
        return _withdrawal_data(withdrawal)

    return await _execute("requestWithdrawal", operation)


async def cancelWithdrawal(callerId: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    async def operation(session):
        withdrawal = await WithdrawalService(session).cancelWithdrawal(
            _require(payload, "withdrawalId"), callerId
        )
        return _withdrawal_data(withdrawal)

    return await _execute("cancelWithdrawal", operation)


async def transferFunds(callerId: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    """payload: {recipientId, amount, note}"""

    async def operation(session):
        transfer = await WalletService(session).transferFunds(
            callerId,
            _require(payload, "recipientId"),
            _require(payload, "amount"),
            payload.get("note")
        )
        return _transfer_data(transfer)

    return await _execute("transferFunds", operation)


async def claimLockedIncome(callerId: int, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    async def operation(session):
        return await WalletService(session).claimLockedIncome(callerId)

    return await _execute("claimLockedIncome", operation)


async def createFundRequest(callerId: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    """payload: {amount, currency, paymentReference}"""

    async def operation(session):
        request = await FundRequestService(session).createFundRequest(
            callerId,
            _require(payload, "amount"),
            payload.get("currency", "USDT"),
            payload.get("paymentReference")
        )
        return _fund_request_data(request)

    return await _execute("createFundRequest", operation)


async def getMemberSummary(callerId: int, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    async def operation(session):
        return MemberService(session).getMemberSummary(callerId)

    return await _execute("getMemberSummary", operation)


# ═══════════════════════════════════════════════════════════════════════
# ADMINISTRATIVE SURFACE
# ═══════════════════════════════════════════════════════════════════════

async def processPayoutQueue(callerId: Optional[int] = None, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Manual drain; shares the idempotency guard with the scheduled job."""
    batchSize = (payload or {}).get("batchSize")

    async def operation(session):
        return await PayoutService(session).processQueue(batchSize)

    return await _execute("processPayoutQueue", operation)


async def approveWithdrawal(callerId: Optional[int], payload: Dict[str, Any]) -> Dict[str, Any]:
    async def operation(session):
        withdrawal = await WithdrawalService(session).approveWithdrawal(
            _require(payload, "withdrawalId"), callerId, payload.get("notes")
        )
        return _withdrawal_data(withdrawal)

    return await _execute("approveWithdrawal", operation)


async def rejectWithdrawal(callerId: Optional[int], payload: Dict[str, Any]) -> Dict[str, Any]:
    async def operation(session):
        withdrawal = await WithdrawalService(session).rejectWithdrawal(
            _require(payload, "withdrawalId"), payload.get("reason"), callerId
        )
        return _withdrawal_data(withdrawal)

    return await _execute("rejectWithdrawal", operation)


async def confirmActivation(callerId: Optional[int], payload: Dict[str, Any]) -> Dict[str, Any]:
    async def operation(session):
        transaction = await ActivationService(session).confirmActivation(
            _require(payload, "transactionId"), callerId
        )
        return _activation_data(transaction)

    return await _execute("confirmActivation", operation)


async def rejectActivation(callerId: Optional[int], payload: Dict[str, Any]) -> Dict[str, Any]:
    async def operation(session):
        transaction = await ActivationService(session).rejectActivation(
            _require(payload, "transactionId"), payload.get("reason"), callerId
        )
        return _activation_data(transaction)

    return await _execute("rejectActivation", operation)


async def approveFundRequest(callerId: Optional[int], payload: Dict[str, Any]) -> Dict[str, Any]:
    async def operation(session):
        request = await FundRequestService(session).approveFundRequest(
            _require(payload, "requestId"), callerId, payload.get("notes")
        )
        return _fund_request_data(request)

    return await _execute("approveFundRequest", operation)


async def rejectFundRequest(callerId: Optional[int], payload: Dict[str, Any]) -> Dict[str, Any]:
    async def operation(session):
        request = await FundRequestService(session).rejectFundRequest(
            _require(payload, "requestId"), payload.get("reason"), callerId
        )
        return _fund_request_data(request)

    return await _execute("rejectFundRequest", operation)


async def updateRankCatalog(callerId: Optional[int], payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
        tiers = update_rank_catalog(_require(payload, "ranks"))
    except MLMError as e:
        return fail(e)

    logger.info(f"Rank catalog updated by admin {callerId}")
    return ok({
        "ranks": [
            {
                "key": t.key,
                "activationAmount": t.activationAmount,
                "levelIncomeEnabled": t.levelIncomeEnabled,
                "globalIncomeEnabled": t.globalIncomeEnabled,
            }
            for t in tiers
        ]
    })
