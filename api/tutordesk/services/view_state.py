"""Dashboard view state as an explicit tagged union with a single reducer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Union

Tab = Literal[
    "dashboard",
    "students",
    "requirements",
    "schedule",
    "messages",
    "earnings",
    "verification",
    "help",
]
TABS: tuple[str, ...] = (
    "dashboard",
    "students",
    "requirements",
    "schedule",
    "messages",
    "earnings",
    "verification",
    "help",
)


@dataclass(frozen=True, slots=True)
class DashboardHome:
    tab: Literal["dashboard"] = "dashboard"


@dataclass(frozen=True, slots=True)
class StudentsView:
    tab: Literal["students"] = "students"


@dataclass(frozen=True, slots=True)
class RequirementsView:
    tab: Literal["requirements"] = "requirements"


@dataclass(frozen=True, slots=True)
class RequirementResponseView:
    requirement_id: str
    tab: Literal["requirements"] = "requirements"


@dataclass(frozen=True, slots=True)
class MessagesView:
    selected_student_id: str | None = None
    requirement_id: str | None = None
    tab: Literal["messages"] = "messages"


@dataclass(frozen=True, slots=True)
class ScheduleView:
    tab: Literal["schedule"] = "schedule"


@dataclass(frozen=True, slots=True)
class EarningsView:
    tab: Literal["earnings"] = "earnings"


@dataclass(frozen=True, slots=True)
class VerificationView:
    tab: Literal["verification"] = "verification"


@dataclass(frozen=True, slots=True)
class HelpView:
    tab: Literal["help"] = "help"


@dataclass(frozen=True, slots=True)
class ProfileView:
    """Profile dialog layered over the tab it was opened from."""

    return_to: Tab = "dashboard"
    tab: Literal["profile"] = "profile"


ViewState = Union[
    DashboardHome,
    StudentsView,
    RequirementsView,
    RequirementResponseView,
    MessagesView,
    ScheduleView,
    EarningsView,
    VerificationView,
    HelpView,
    ProfileView,
]

_TAB_VIEWS: dict[str, type] = {
    "dashboard": DashboardHome,
    "students": StudentsView,
    "requirements": RequirementsView,
    "schedule": ScheduleView,
    "messages": MessagesView,
    "earnings": EarningsView,
    "verification": VerificationView,
    "help": HelpView,
}


@dataclass(frozen=True, slots=True)
class Navigate:
    tab: Tab


@dataclass(frozen=True, slots=True)
class OpenChat:
    student_id: str
    requirement_id: str | None = None


@dataclass(frozen=True, slots=True)
class OpenRequirementResponse:
    requirement_id: str


@dataclass(frozen=True, slots=True)
class OpenProfile:
    pass


@dataclass(frozen=True, slots=True)
class CloseDialog:
    pass


ViewAction = Union[Navigate, OpenChat, OpenRequirementResponse, OpenProfile, CloseDialog]


class InvalidViewAction(ValueError):
    """Raised when a client sends an action the dashboard does not understand."""


def reduce_view(state: ViewState, action: ViewAction) -> ViewState:
    if isinstance(action, Navigate):
        view_type = _TAB_VIEWS.get(action.tab)
        if view_type is None:
            raise InvalidViewAction(f"unknown tab: {action.tab}")
        return view_type()
    if isinstance(action, OpenChat):
        return MessagesView(selected_student_id=action.student_id, requirement_id=action.requirement_id)
    if isinstance(action, OpenRequirementResponse):
        return RequirementResponseView(requirement_id=action.requirement_id)
    if isinstance(action, OpenProfile):
        if isinstance(state, ProfileView):
            return state
        return ProfileView(return_to=_base_tab(state))
    if isinstance(action, CloseDialog):
        if isinstance(state, ProfileView):
            return _TAB_VIEWS[state.return_to]()
        if isinstance(state, RequirementResponseView):
            return RequirementsView()
        return state
    raise InvalidViewAction(f"unsupported action: {type(action).__name__}")


def parse_view_action(payload: dict[str, Any]) -> ViewAction:
    action = payload.get("action")
    if action == "navigate":
        tab = payload.get("tab")
        if tab not in TABS:
            raise InvalidViewAction(f"unknown tab: {tab}")
        return Navigate(tab=tab)
    if action == "open_chat":
        student_id = payload.get("student_id")
        if not isinstance(student_id, str) or not student_id:
            raise InvalidViewAction("open_chat requires student_id")
        return OpenChat(student_id=student_id, requirement_id=payload.get("requirement_id"))
    if action == "open_response":
        requirement_id = payload.get("requirement_id")
        if not isinstance(requirement_id, str) or not requirement_id:
            raise InvalidViewAction("open_response requires requirement_id")
        return OpenRequirementResponse(requirement_id=requirement_id)
    if action == "open_profile":
        return OpenProfile()
    if action == "close_dialog":
        return CloseDialog()
    raise InvalidViewAction(f"unknown action: {action}")


def view_to_dict(state: ViewState) -> dict[str, Any]:
    payload: dict[str, Any] = {"view": type(state).__name__, "tab": state.tab}
    for name in ("selected_student_id", "requirement_id", "return_to"):
        if hasattr(state, name):
            payload[name] = getattr(state, name)
    return payload


def _base_tab(state: ViewState) -> Tab:
    if isinstance(state, ProfileView):
        return state.return_to
    return state.tab
