# app/utils/state_machine.py
# 各實體的狀態機 (純函式)：(目前狀態, 事件) -> 新狀態，不合法則 raise InvalidTransition
# Service 層在交易內呼叫，自己不做任何 I/O
import enum
from typing import Dict, Mapping, Optional, Tuple

from app.core.exceptions import InvalidTransition
from app.models.job import JobStatusEnum
from app.models.proposal import ProposalStatusEnum
from app.models.contract import ContractStatusEnum
from app.models.escrow import EscrowStatusEnum, DisputeStatusEnum


class StateMachine:
    """
    以 (狀態, 事件) -> 狀態 的對照表描述一個實體的合法流轉。

    `reasons`：轉移失敗時依目前狀態回傳的具體原因 (例如「提案已撤回」)。
    """

    def __init__(
        self,
        name: str,
        transitions: Mapping[Tuple[enum.Enum, enum.Enum], enum.Enum],
        reasons: Optional[Mapping[enum.Enum, str]] = None,
    ):
        self.name = name
        self.transitions: Dict[Tuple[enum.Enum, enum.Enum], enum.Enum] = dict(transitions)
        self.reasons: Dict[enum.Enum, str] = dict(reasons or {})

    def can(self, current: enum.Enum, event: enum.Enum) -> bool:
        return (current, event) in self.transitions

    def next_state(self, current: enum.Enum, event: enum.Enum) -> enum.Enum:
        try:
            return self.transitions[(current, event)]
        except KeyError:
            reason = self.reasons.get(current)
            if reason is None:
                reason = f"{self.name}狀態為「{current.value}」，無法執行「{event.value}」"
            raise InvalidTransition(reason)

    def sources(self, event: enum.Enum) -> Tuple[enum.Enum, ...]:
        """可以接受 event 的所有來源狀態 (用於 compare-and-swap 的 WHERE 條件)"""
        return tuple(src for (src, ev) in self.transitions if ev == event)


# --- 案件 (Job) ---
class JobEvent(str, enum.Enum):
    publish = "PUBLISH"
    contract = "CONTRACT"
    start = "START"
    complete = "COMPLETE"

JOB_MACHINE = StateMachine(
    "案件",
    {
        (JobStatusEnum.draft, JobEvent.publish): JobStatusEnum.open,
        (JobStatusEnum.open, JobEvent.contract): JobStatusEnum.contracted,
        (JobStatusEnum.contracted, JobEvent.start): JobStatusEnum.in_progress,
        (JobStatusEnum.in_progress, JobEvent.complete): JobStatusEnum.completed,
    },
)


# --- 提案 (Proposal) ---
# 客戶直接接受 PENDING 提案時，視為 send_offer + accept 兩步 (隱含的 OFFERED)
class ProposalEvent(str, enum.Enum):
    send_offer = "SEND_OFFER"
    accept = "ACCEPT"
    reject_offer = "REJECT_OFFER"
    decline = "DECLINE"
    withdraw = "WITHDRAW"
    sibling_accepted = "SIBLING_ACCEPTED"

PROPOSAL_MACHINE = StateMachine(
    "提案",
    {
        (ProposalStatusEnum.pending, ProposalEvent.send_offer): ProposalStatusEnum.offered,
        (ProposalStatusEnum.offered, ProposalEvent.accept): ProposalStatusEnum.accepted,
        (ProposalStatusEnum.offered, ProposalEvent.reject_offer): ProposalStatusEnum.rejected,
        (ProposalStatusEnum.pending, ProposalEvent.decline): ProposalStatusEnum.rejected,
        (ProposalStatusEnum.offered, ProposalEvent.decline): ProposalStatusEnum.rejected,
        (ProposalStatusEnum.pending, ProposalEvent.withdraw): ProposalStatusEnum.withdrawn,
        (ProposalStatusEnum.pending, ProposalEvent.sibling_accepted): ProposalStatusEnum.rejected,
        (ProposalStatusEnum.offered, ProposalEvent.sibling_accepted): ProposalStatusEnum.rejected,
    },
    reasons={
        ProposalStatusEnum.accepted: "提案已被接受",
        ProposalStatusEnum.rejected: "提案已被拒絕",
        ProposalStatusEnum.withdrawn: "提案已撤回",
    },
)


def proposal_status_after_accept(current: ProposalStatusEnum, direct: bool) -> ProposalStatusEnum:
    """
    direct=True：客戶直接接受 PENDING 提案 (經過隱含的 OFFERED)
    direct=False：工作者接受已送出的邀約 (OFFERED -> ACCEPTED)
    """
    if direct:
        if current == ProposalStatusEnum.offered:
            raise InvalidTransition("已送出邀約，需等待工作者回覆")
        current = PROPOSAL_MACHINE.next_state(current, ProposalEvent.send_offer)
    elif current == ProposalStatusEnum.pending:
        raise InvalidTransition("客戶尚未送出邀約，無法接受")
    return PROPOSAL_MACHINE.next_state(current, ProposalEvent.accept)


# --- 合約 (Contract) ---
class ContractEvent(str, enum.Enum):
    complete = "COMPLETE"
    cancel = "CANCEL"

CONTRACT_MACHINE = StateMachine(
    "合約",
    {
        (ContractStatusEnum.active, ContractEvent.complete): ContractStatusEnum.completed,
        (ContractStatusEnum.active, ContractEvent.cancel): ContractStatusEnum.cancelled,
    },
    reasons={
        ContractStatusEnum.completed: "合約已完成",
        ContractStatusEnum.cancelled: "合約已取消",
    },
)


# --- 託管款項 (EscrowPayment) ---
class EscrowEvent(str, enum.Enum):
    payment_succeeded = "PAYMENT_SUCCEEDED"
    payment_failed = "PAYMENT_FAILED"
    release = "RELEASE"
    refund = "REFUND"

ESCROW_MACHINE = StateMachine(
    "託管款項",
    {
        (EscrowStatusEnum.pending, EscrowEvent.payment_succeeded): EscrowStatusEnum.paid,
        (EscrowStatusEnum.pending, EscrowEvent.payment_failed): EscrowStatusEnum.failed,
        (EscrowStatusEnum.paid, EscrowEvent.release): EscrowStatusEnum.released,
        (EscrowStatusEnum.paid, EscrowEvent.refund): EscrowStatusEnum.refunded,
    },
    reasons={
        EscrowStatusEnum.pending: "託管款項尚未付款",
        EscrowStatusEnum.released: "託管款項已撥款給工作者",
        EscrowStatusEnum.refunded: "託管款項已退款給客戶",
        EscrowStatusEnum.failed: "託管款項付款失敗",
    },
)


# --- 爭議 (EscrowDispute) ---
class DisputeEvent(str, enum.Enum):
    resolve = "RESOLVE"
    reject = "REJECT"

DISPUTE_MACHINE = StateMachine(
    "爭議",
    {
        (DisputeStatusEnum.open, DisputeEvent.resolve): DisputeStatusEnum.resolved,
        (DisputeStatusEnum.open, DisputeEvent.reject): DisputeStatusEnum.rejected,
    },
    reasons={
        DisputeStatusEnum.resolved: "爭議已裁決",
        DisputeStatusEnum.rejected: "爭議已被駁回",
    },
)
