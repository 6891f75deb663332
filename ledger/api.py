from typing import Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from incentives.models import (
    AddAgentRequest,
    InviteEdge,
    InviteStats,
    InviteValidation,
    LeaderboardEntry,
    RegisterInviteRequest,
    VipOrder,
    VipStatus,
    VipUpgradeRequest,
)
from workflows.models import (
    AddBankCardRequest,
    BankCardView,
    CancelRequest,
    ConfirmRechargeRequest,
    CreateOrderRequest,
    CreateRechargeRequest,
    CreateWithdrawRequest,
    Order,
    OrderActionRequest,
    OrderStats,
    OrderStatus,
    RechargeOrder,
    RechargeStatus,
    ReviewRequest,
    WithdrawOrder,
    WithdrawStats,
    WithdrawStatus,
)

from .config import PlatformConfig, RechargeMethod
from .directory import Inviter
from .errors import InvalidRequestError, LedgerServiceError
from .logging_config import configure_logging
from .models import EntryKind, LedgerEntry, LedgerHistoryResponse, Page, UserBalance
from .platform import TaskPlatform
from .settings import get_settings

settings = get_settings()
configure_logging(settings.log_level)

app = FastAPI(
    title="Task Reward Ledger API",
    description="Account ledger, order and withdraw workflows, invite tiers, commissions and VIP upgrades",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

task_platform = TaskPlatform.from_settings(settings)


def get_platform() -> TaskPlatform:
    return task_platform


@app.exception_handler(LedgerServiceError)
def ledger_error_handler(request: Request, exc: LedgerServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": str(exc)}},
    )


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "task-reward-ledger"}


@app.get("/config", response_model=PlatformConfig, tags=["System"])
def get_config(p: TaskPlatform = Depends(get_platform)) -> PlatformConfig:
    return p.config.current


@app.post("/config/refresh", response_model=PlatformConfig, tags=["System"])
def refresh_config(p: TaskPlatform = Depends(get_platform)) -> PlatformConfig:
    return p.refresh_config()


# Balances

@app.get("/users/{user_id}/balance", response_model=UserBalance, tags=["Users"])
def get_user_balance(user_id: str, p: TaskPlatform = Depends(get_platform)) -> UserBalance:
    return p.get_balance(user_id)


@app.get("/users/{user_id}/ledger", response_model=LedgerHistoryResponse, tags=["Users"])
def get_user_ledger(
    user_id: str,
    page: int = 1,
    page_size: int = 20,
    kind: Optional[EntryKind] = None,
    p: TaskPlatform = Depends(get_platform),
) -> LedgerHistoryResponse:
    return p.get_transaction_history(user_id, page, page_size, kind)


# Orders

@app.post("/orders", response_model=Order, status_code=status.HTTP_201_CREATED, tags=["Orders"])
def create_order(request: CreateOrderRequest, p: TaskPlatform = Depends(get_platform)) -> Order:
    return p.create_order(request.user_id, request.amount, request.commission,
                          request.order_id, request.product_name)


@app.get("/orders/{order_id}", response_model=Order, tags=["Orders"])
def get_order(order_id: str, p: TaskPlatform = Depends(get_platform)) -> Order:
    return p.orders.get_order(order_id)


@app.post("/orders/{order_id}/start", response_model=Order, tags=["Orders"])
def start_order(order_id: str, request: OrderActionRequest, p: TaskPlatform = Depends(get_platform)) -> Order:
    return p.start_order(request.user_id, order_id)


@app.post("/orders/{order_id}/complete", response_model=Order, tags=["Orders"])
def complete_order(order_id: str, request: OrderActionRequest, p: TaskPlatform = Depends(get_platform)) -> Order:
    return p.complete_order(request.user_id, order_id)


@app.post("/orders/{order_id}/cancel", response_model=Order, tags=["Orders"])
def cancel_order(order_id: str, request: OrderActionRequest, p: TaskPlatform = Depends(get_platform)) -> Order:
    return p.cancel_order(request.user_id, order_id)


@app.get("/users/{user_id}/orders", response_model=Page[Order], tags=["Orders"])
def list_orders(
    user_id: str,
    status: Optional[OrderStatus] = None,
    page: int = 1,
    page_size: int = 20,
    p: TaskPlatform = Depends(get_platform),
):
    return p.orders.list_orders(user_id, status, page, page_size)


@app.get("/users/{user_id}/orders/stats", response_model=OrderStats, tags=["Orders"])
def order_stats(user_id: str, p: TaskPlatform = Depends(get_platform)) -> OrderStats:
    return p.orders.get_stats(user_id)


# Bank cards

@app.post("/users/{user_id}/bank-cards", response_model=BankCardView, status_code=status.HTTP_201_CREATED,
          tags=["Withdrawals"])
def add_bank_card(user_id: str, request: AddBankCardRequest, p: TaskPlatform = Depends(get_platform)):
    card = p.withdrawals.add_bank_card(user_id, request.bank_name, request.card_number,
                                       request.card_holder, request.is_default)
    return BankCardView.from_card(card)


@app.get("/users/{user_id}/bank-cards", response_model=list[BankCardView], tags=["Withdrawals"])
def list_bank_cards(user_id: str, p: TaskPlatform = Depends(get_platform)):
    return [BankCardView.from_card(c) for c in p.withdrawals.list_bank_cards(user_id)]


@app.post("/users/{user_id}/bank-cards/{card_id}/default", response_model=BankCardView, tags=["Withdrawals"])
def set_default_card(user_id: str, card_id: str, p: TaskPlatform = Depends(get_platform)):
    return BankCardView.from_card(p.withdrawals.set_default_card(user_id, card_id))


@app.delete("/users/{user_id}/bank-cards/{card_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Withdrawals"])
def delete_bank_card(user_id: str, card_id: str, p: TaskPlatform = Depends(get_platform)) -> None:
    p.withdrawals.delete_bank_card(user_id, card_id)


# Withdrawals

@app.post("/withdrawals", response_model=WithdrawOrder, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
def create_withdraw(request: CreateWithdrawRequest, p: TaskPlatform = Depends(get_platform)) -> WithdrawOrder:
    return p.create_withdraw(request.user_id, request.amount, request.bank_ref, request.withdraw_id)


@app.get("/withdrawals/{withdraw_id}", response_model=WithdrawOrder, tags=["Withdrawals"])
def get_withdraw(withdraw_id: str, p: TaskPlatform = Depends(get_platform)) -> WithdrawOrder:
    return p.withdrawals.get_withdraw(withdraw_id)


@app.post("/withdrawals/{withdraw_id}/approve", response_model=WithdrawOrder, tags=["Withdrawals"])
def approve_withdraw(withdraw_id: str, request: ReviewRequest,
                     p: TaskPlatform = Depends(get_platform)) -> WithdrawOrder:
    return p.approve_withdraw(withdraw_id, request.performed_by, request.remark)


@app.post("/withdrawals/{withdraw_id}/reject", response_model=WithdrawOrder, tags=["Withdrawals"])
def reject_withdraw(withdraw_id: str, request: ReviewRequest,
                    p: TaskPlatform = Depends(get_platform)) -> WithdrawOrder:
    return p.reject_withdraw(withdraw_id, request.performed_by, request.remark)


@app.post("/withdrawals/{withdraw_id}/cancel", response_model=WithdrawOrder, tags=["Withdrawals"])
def cancel_withdraw(withdraw_id: str, request: CancelRequest,
                    p: TaskPlatform = Depends(get_platform)) -> WithdrawOrder:
    return p.cancel_withdraw(request.user_id, withdraw_id)


@app.get("/users/{user_id}/withdrawals", response_model=Page[WithdrawOrder], tags=["Withdrawals"])
def list_withdraws(
    user_id: str,
    status: Optional[WithdrawStatus] = None,
    page: int = 1,
    page_size: int = 20,
    p: TaskPlatform = Depends(get_platform),
):
    return p.withdrawals.list_withdraws(user_id, status, page, page_size)


@app.get("/users/{user_id}/withdrawals/stats", response_model=WithdrawStats, tags=["Withdrawals"])
def withdraw_stats(user_id: str, p: TaskPlatform = Depends(get_platform)) -> WithdrawStats:
    return p.withdrawals.get_stats(user_id)


# Recharges

@app.get("/recharges/methods", response_model=list[RechargeMethod], tags=["Recharges"])
def list_recharge_methods(p: TaskPlatform = Depends(get_platform)):
    return [m for m in p.config.current.recharge_methods if m.is_enabled]


@app.post("/recharges", response_model=RechargeOrder, status_code=status.HTTP_201_CREATED, tags=["Recharges"])
def create_recharge(request: CreateRechargeRequest, p: TaskPlatform = Depends(get_platform)) -> RechargeOrder:
    return p.create_recharge(request.user_id, request.amount, request.method_id, request.recharge_id)


@app.get("/recharges/{recharge_id}", response_model=RechargeOrder, tags=["Recharges"])
def get_recharge(recharge_id: str, p: TaskPlatform = Depends(get_platform)) -> RechargeOrder:
    return p.recharges.get_recharge(recharge_id)


@app.post("/recharges/{recharge_id}/confirm", response_model=RechargeOrder, tags=["Recharges"])
def confirm_recharge(recharge_id: str, request: ConfirmRechargeRequest,
                     p: TaskPlatform = Depends(get_platform)) -> RechargeOrder:
    return p.confirm_recharge(request.user_id, recharge_id, request.proof_ref)


@app.post("/recharges/{recharge_id}/approve", response_model=RechargeOrder, tags=["Recharges"])
def approve_recharge(recharge_id: str, request: ReviewRequest,
                     p: TaskPlatform = Depends(get_platform)) -> RechargeOrder:
    return p.approve_recharge(recharge_id, request.performed_by, request.remark)


@app.post("/recharges/{recharge_id}/reject", response_model=RechargeOrder, tags=["Recharges"])
def reject_recharge(recharge_id: str, request: ReviewRequest,
                    p: TaskPlatform = Depends(get_platform)) -> RechargeOrder:
    return p.reject_recharge(recharge_id, request.performed_by, request.remark)


@app.post("/recharges/{recharge_id}/cancel", response_model=RechargeOrder, tags=["Recharges"])
def cancel_recharge(recharge_id: str, request: CancelRequest,
                    p: TaskPlatform = Depends(get_platform)) -> RechargeOrder:
    return p.cancel_recharge(request.user_id, recharge_id)


@app.get("/users/{user_id}/recharges", response_model=Page[RechargeOrder], tags=["Recharges"])
def list_recharges(
    user_id: str,
    status: Optional[RechargeStatus] = None,
    page: int = 1,
    page_size: int = 20,
    p: TaskPlatform = Depends(get_platform),
):
    return p.recharges.list_recharges(user_id, status, page, page_size)


# Invites

@app.post("/agents", response_model=Inviter, status_code=status.HTTP_201_CREATED, tags=["Invites"])
def add_agent(request: AddAgentRequest, p: TaskPlatform = Depends(get_platform)) -> Inviter:
    if not hasattr(p.agents, "add"):
        raise InvalidRequestError("The configured invite-code resolver is read-only")
    return p.agents.add(request.inviter_id, request.invite_code, request.name, request.is_active)


@app.post("/invites", response_model=InviteEdge, status_code=status.HTTP_201_CREATED, tags=["Invites"])
def register_invite(request: RegisterInviteRequest, p: TaskPlatform = Depends(get_platform)) -> InviteEdge:
    return p.register_invite(request.invitee_id, request.invite_code)


@app.post("/invites/{edge_id}/validate", response_model=InviteValidation, tags=["Invites"])
def validate_invite(edge_id: str, p: TaskPlatform = Depends(get_platform)) -> InviteValidation:
    return p.validate_invite(edge_id)


@app.get("/invites/leaderboard", response_model=Page[LeaderboardEntry], tags=["Invites"])
def invite_leaderboard(page: int = 1, page_size: int = 50, p: TaskPlatform = Depends(get_platform)):
    return p.invites.leaderboard(page, page_size)


@app.get("/users/{user_id}/invites", response_model=Page[InviteEdge], tags=["Invites"])
def list_invite_records(user_id: str, page: int = 1, page_size: int = 20,
                        p: TaskPlatform = Depends(get_platform)):
    return p.invites.list_invite_records(user_id, page, page_size)


@app.get("/users/{user_id}/invites/stats", response_model=InviteStats, tags=["Invites"])
def invite_stats(user_id: str, p: TaskPlatform = Depends(get_platform)) -> InviteStats:
    return p.get_invite_stats(user_id)


@app.get("/users/{user_id}/invites/rewards", response_model=Page[LedgerEntry], tags=["Invites"])
def list_invite_rewards(user_id: str, page: int = 1, page_size: int = 20,
                        p: TaskPlatform = Depends(get_platform)):
    """Invite rewards, tier bonuses and downstream commission, newest first."""
    return p.list_invite_rewards(user_id, page, page_size)


# VIP

@app.post("/vip/upgrade", response_model=VipOrder, status_code=status.HTTP_201_CREATED, tags=["VIP"])
def upgrade_vip(request: VipUpgradeRequest, p: TaskPlatform = Depends(get_platform)) -> VipOrder:
    return p.upgrade_vip(request.user_id, request.target_level, request.request_id)


@app.get("/users/{user_id}/vip", response_model=VipStatus, tags=["VIP"])
def vip_status(user_id: str, p: TaskPlatform = Depends(get_platform)) -> VipStatus:
    return p.get_vip_status(user_id)


@app.get("/users/{user_id}/vip/orders", response_model=Page[VipOrder], tags=["VIP"])
def list_vip_orders(user_id: str, page: int = 1, page_size: int = 20,
                    p: TaskPlatform = Depends(get_platform)):
    return p.vip.list_vip_orders(user_id, page, page_size)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
