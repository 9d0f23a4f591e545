from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal


class ActionKind(str, Enum):
    NAVIGATE_BILL_ELECTRICITY = "navigate_bill_electricity"
    NAVIGATE_BILL_WATER = "navigate_bill_water"
    NAVIGATE_BILL_GAS = "navigate_bill_gas"
    NAVIGATE_PROPERTY_TAX = "navigate_property_tax"
    NAVIGATE_COMPLAINT = "navigate_complaint"
    NAVIGATE_NAAM_CHANGE = "navigate_naam_change"
    NAVIGATE_NEW_CONNECTION = "navigate_new_connection"
    NAVIGATE_ADMIN = "navigate_admin"
    NAVIGATE_CITIZEN_LOGIN = "navigate_citizen_login"
    NAVIGATE_GUEST_HOME = "navigate_guest_home"
    SELECT_COMPLAINT_CATEGORY = "select_complaint_category"
    PAY_UPI = "pay_upi"
    PAY_CARD = "pay_card"
    PAY_CASH = "pay_cash"
    NUMPAD_DIGIT = "numpad_digit"
    CHANGE_LANGUAGE = "change_language"
    CONFIRM_YES = "confirm_yes"
    CONFIRM_NO = "confirm_no"
    CANCEL_ACTION = "cancel_action"
    GO_BACK = "go_back"
    GO_HOME = "go_home"
    STOP_VOICE = "stop_voice"
    ACKNOWLEDGE_GREETING = "acknowledge_greeting"
    INFORM = "inform"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str) -> "ActionKind":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown action kind '{value}'") from None


class ConversationState(str, Enum):
    INITIAL = "INITIAL"
    WAIT_PATH = "WAIT_PATH"
    GUEST_HOME = "GUEST_HOME"
    CITIZEN_AUTH = "CITIZEN_AUTH"
    CITIZEN_DASH = "CITIZEN_DASH"
    BILL_PAGE = "BILL_PAGE"
    BILL_PAYMENT = "BILL_PAYMENT"
    COMPLAINT = "COMPLAINT"
    COMPLAINT_DETAILS = "COMPLAINT_DETAILS"
    FREE_TALK = "FREE_TALK"

    @property
    def choosing_path(self) -> bool:
        return self in (ConversationState.INITIAL, ConversationState.WAIT_PATH)

    @property
    def in_bill_flow(self) -> bool:
        return self in (ConversationState.BILL_PAGE, ConversationState.BILL_PAYMENT)

    @property
    def in_complaint_flow(self) -> bool:
        return self in (ConversationState.COMPLAINT, ConversationState.COMPLAINT_DETAILS)


Layer = Literal["QUICK", "KB", "REMOTE", "QUEUE"]


@dataclass(frozen=True, slots=True)
class Utterance:
    text: str
    language: str
    timestamp: float


@dataclass(slots=True)
class ResolutionResult:
    action: ActionKind = ActionKind.UNKNOWN
    response_text: str = ""
    layer: Layer = "QUEUE"
    immediate: bool = False
    params: dict[str, Any] = field(default_factory=dict)
    skipped: bool = False
    text: str = ""
    is_complete: bool = False
    language: str = "en"

    @classmethod
    def skip(cls) -> "ResolutionResult":
        return cls(skipped=True)

    @classmethod
    def queued(cls, text: str, is_complete: bool, language: str = "en") -> "ResolutionResult":
        return cls(text=text, layer="QUEUE", is_complete=is_complete, language=language)

    @property
    def needs_resolution(self) -> bool:
        """True when the caller must run the knowledge-base / remote path on ``text``."""
        return self.layer == "QUEUE" and self.is_complete and not self.skipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "response_text": self.response_text,
            "layer": self.layer,
            "immediate": self.immediate,
            "params": dict(self.params),
            "skipped": self.skipped,
            "text": self.text,
            "is_complete": self.is_complete,
            "language": self.language,
        }


__all__ = [
    "ActionKind",
    "ConversationState",
    "Layer",
    "Utterance",
    "ResolutionResult",
]
