"""FastAPI adapter exposing the ledger workflows as JSON endpoints.

Identity is taken from the ``X-User-Id`` header; authenticating that header
is the job of whatever sits in front of this app.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from ..exceptions import (
    AuthorizationError,
    FamilyLedgerError,
    NotFoundError,
    StateError,
    StoreError,
    ValidationError,
)
from ..service import FamilyLedger
from .schemas import (
    AmountIn,
    ChoreRecordIn,
    ChoreReviewIn,
    ChoreTypeIn,
    ChoreTypeUpdate,
    DirectRedemptionIn,
    PointsValueIn,
    RateIn,
    RedemptionIn,
    ReviewIn,
    RoleIn,
    SavingsRequestIn,
)

_STATUS_BY_ERROR = (
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (StateError, 409),
    (ValidationError, 422),
    (StoreError, 503),
)


def status_for(exc: FamilyLedgerError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 400


def dump(value: Any) -> Any:
    """Encode dataclasses for JSON; money stays exact as strings."""

    return jsonable_encoder(value, custom_encoder={Decimal: str})


def current_user(x_user_id: str = Header(...)) -> str:
    return x_user_id


def create_app(bank: Optional[FamilyLedger] = None) -> FastAPI:
    bank = bank or FamilyLedger.from_config()
    app = FastAPI(title="Family Ledger")
    app.state.bank = bank

    @app.exception_handler(FamilyLedgerError)
    async def ledger_error(request: Request, exc: FamilyLedgerError) -> JSONResponse:
        return JSONResponse(status_code=status_for(exc), content=exc.as_dict())

    # Points -----------------------------------------------------------------
    @app.get("/families/{family_id}/points/summary")
    def points_summary(family_id: str, user: str = Depends(current_user)):
        summary = bank.ledger.get_summary(user, family_id)
        return {**dump(summary), "requestable": summary.requestable}

    @app.get("/families/{family_id}/points/ranking")
    def points_ranking(family_id: str, period: str = "all", user: str = Depends(current_user)):
        return dump(bank.ledger.get_ranking(family_id, period, requester_id=user))

    @app.get("/families/{family_id}/points/transactions")
    def points_transactions(
        family_id: str,
        user_id: Optional[str] = None,
        type: Optional[str] = None,
        limit: int = Query(20),
        offset: int = Query(0),
        user: str = Depends(current_user),
    ):
        return dump(
            bank.ledger.transactions(user, family_id, user_id=user_id, type=type, limit=limit, offset=offset)
        )

    @app.get("/families/{family_id}/points/members")
    def points_by_member(family_id: str, user: str = Depends(current_user)):
        return [
            {**dump(row), "available": row.available}
            for row in bank.ledger.member_points(user, family_id)
        ]

    @app.put("/families/{family_id}/points/value")
    def points_value(family_id: str, payload: PointsValueIn, user: str = Depends(current_user)):
        return dump(bank.set_points_value(user, family_id, payload.points_value))

    # Redemptions -------------------------------------------------------------
    @app.post("/families/{family_id}/redemptions", status_code=201)
    def submit_redemption(family_id: str, payload: RedemptionIn, user: str = Depends(current_user)):
        return dump(bank.ledger.submit_redemption_request(user, family_id, payload.points, payload.remark))

    @app.get("/families/{family_id}/redemptions")
    def list_redemptions(family_id: str, status: Optional[str] = None, user: str = Depends(current_user)):
        return dump(bank.ledger.redemption_requests(user, family_id, status=status))

    @app.post("/families/{family_id}/redemptions/direct", status_code=201)
    def redeem_direct(family_id: str, payload: DirectRedemptionIn, user: str = Depends(current_user)):
        return dump(bank.ledger.redeem_direct(user, family_id, payload.member_id, payload.points, payload.remark))

    @app.post("/redemptions/{request_id}/review")
    def review_redemption(request_id: str, payload: ReviewIn, user: str = Depends(current_user)):
        return dump(bank.ledger.review_redemption_request(request_id, user, payload.action, payload.reject_reason))

    # Chores ------------------------------------------------------------------
    @app.get("/families/{family_id}/chore-types")
    def list_chore_types(family_id: str, include_inactive: bool = False, user: str = Depends(current_user)):
        return dump(bank.chores.chore_types(user, family_id, include_inactive=include_inactive))

    @app.post("/families/{family_id}/chore-types", status_code=201)
    def create_chore_type(family_id: str, payload: ChoreTypeIn, user: str = Depends(current_user)):
        return dump(bank.chores.create_chore_type(user, family_id, payload.name, payload.points, payload.description))

    @app.patch("/chore-types/{chore_type_id}")
    def update_chore_type(chore_type_id: str, payload: ChoreTypeUpdate, user: str = Depends(current_user)):
        return dump(bank.chores.update_chore_type(user, chore_type_id, **payload.model_dump(exclude_none=True)))

    @app.delete("/chore-types/{chore_type_id}")
    def delete_chore_type(chore_type_id: str, user: str = Depends(current_user)):
        return dump(bank.chores.delete_chore_type(user, chore_type_id))

    @app.post("/families/{family_id}/chores", status_code=201)
    def create_chore_record(family_id: str, payload: ChoreRecordIn, user: str = Depends(current_user)):
        return dump(bank.chores.create_record(user, family_id, payload.chore_type_id, payload.note, payload.images))

    @app.get("/families/{family_id}/chores")
    def list_chore_records(
        family_id: str,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = Query(20),
        offset: int = Query(0),
        user: str = Depends(current_user),
    ):
        return dump(
            bank.chores.records(user, family_id, user_id=user_id, status=status, limit=limit, offset=offset)
        )

    @app.get("/families/{family_id}/chores/statistics")
    def chore_statistics(family_id: str, user: str = Depends(current_user)):
        return dump(bank.chores.statistics(user, family_id))

    @app.post("/chores/{record_id}/review")
    def review_chore(record_id: str, payload: ChoreReviewIn, user: str = Depends(current_user)):
        return dump(
            bank.chores.review_record(
                record_id,
                user,
                payload.action,
                payload.deduction,
                payload.deduction_reason,
                payload.review_note,
            )
        )

    # Savings -----------------------------------------------------------------
    @app.get("/families/{family_id}/savings")
    def savings_detail(family_id: str, user: str = Depends(current_user)):
        detail = bank.savings.account_detail(user, family_id)
        return {**dump(detail), "daily_rate": str(detail.daily_rate)}

    @app.get("/families/{family_id}/savings/accounts")
    def savings_accounts(family_id: str, user: str = Depends(current_user)):
        return dump(bank.savings.family_accounts(user, family_id))

    @app.get("/families/{family_id}/savings/requests")
    def savings_requests(family_id: str, status: Optional[str] = None, user: str = Depends(current_user)):
        return dump(bank.savings.requests(user, family_id, status=status))

    @app.post("/savings/{account_id}/deposit", status_code=201)
    def savings_deposit(account_id: str, payload: AmountIn, user: str = Depends(current_user)):
        return dump(bank.savings.deposit(account_id, user, payload.amount, payload.description))

    @app.post("/savings/{account_id}/withdraw", status_code=201)
    def savings_withdraw(account_id: str, payload: AmountIn, user: str = Depends(current_user)):
        return dump(bank.savings.withdraw(account_id, user, payload.amount, payload.description))

    @app.post("/savings/{account_id}/requests", status_code=201)
    def savings_submit(account_id: str, payload: SavingsRequestIn, user: str = Depends(current_user)):
        return dump(bank.savings.submit_request(account_id, user, payload.amount, payload.type, payload.description))

    @app.post("/savings/requests/{request_id}/review")
    def savings_review(request_id: str, payload: ReviewIn, user: str = Depends(current_user)):
        return dump(bank.savings.review_request(request_id, user, payload.action, payload.reject_reason))

    @app.post("/savings/{account_id}/settle")
    def savings_settle(account_id: str, user: str = Depends(current_user)):
        return dump(bank.savings.settle_interest(account_id, user))

    @app.put("/savings/{account_id}/rate")
    def savings_rate(account_id: str, payload: RateIn, user: str = Depends(current_user)):
        return dump(bank.savings.update_rate(account_id, user, payload.annual_rate))

    @app.get("/savings/{account_id}/transactions")
    def savings_transactions(
        account_id: str,
        limit: int = Query(20),
        offset: int = Query(0),
        user: str = Depends(current_user),
    ):
        return dump(bank.savings.transactions(account_id, user, limit=limit, offset=offset))

    # Membership --------------------------------------------------------------
    @app.put("/families/{family_id}/members/{member_id}/role")
    def change_role(family_id: str, member_id: str, payload: RoleIn, user: str = Depends(current_user)):
        return dump(bank.change_role(user, family_id, member_id, payload.role))

    return app


__all__ = ["create_app", "current_user", "dump", "status_for"]
