from enum import Enum
from typing import Iterable, List


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    LOAN_OFFICER = "LOAN_OFFICER"
    DISCLOSURE_SPECIALIST = "DISCLOSURE_SPECIALIST"
    VA = "VA"
    VA_TITLE = "VA_TITLE"
    VA_HOI = "VA_HOI"
    VA_PAYOFF = "VA_PAYOFF"
    VA_APPRAISAL = "VA_APPRAISAL"
    QC = "QC"
    PROCESSOR_JR = "PROCESSOR_JR"
    PROCESSOR_SR = "PROCESSOR_SR"

    @classmethod
    def list_all(cls) -> List[str]:
        return [role.value for role in cls]


VA_ROLES = frozenset(
    {
        UserRole.VA.value,
        UserRole.VA_TITLE.value,
        UserRole.VA_HOI.value,
        UserRole.VA_PAYOFF.value,
        UserRole.VA_APPRAISAL.value,
    }
)

# The generic VA role is not bound to the proof-before-completion rule.
PROOF_REQUIRED_ROLES = VA_ROLES - {UserRole.VA.value}


class Capability(str, Enum):
    RECORDS_MANAGE_ALL = "records.manage_all"
    USERS_MANAGE = "users.manage"
    LEAD_MAILBOX_MANAGE = "lead_mailbox.manage"
    IMPERSONATION_VIEW_AS = "impersonation.view_as"
    TEAM_MANAGE = "team.manage"
    TASKS_DELETE = "tasks.delete"
    TASKS_VIEW_ALL = "tasks.view_all"
    TASKS_REQUEST_INFO = "tasks.request_info"
    PIPELINE_VIEW = "pipeline.view"

    @classmethod
    def list_all(cls) -> List[str]:
        return [code.value for code in cls]

    @classmethod
    def normalize(cls, values: Iterable[str]) -> List[str]:
        """Return unique capability codes that are valid members."""
        seen = set()
        normalized: list[str] = []
        for value in values:
            try:
                code = cls(value)
            except ValueError:
                continue
            if code.value not in seen:
                seen.add(code.value)
                normalized.append(code.value)
        return normalized


ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    UserRole.ADMIN.value: frozenset(Capability.list_all()),
    UserRole.MANAGER.value: frozenset(
        Capability.normalize(
            [
                Capability.RECORDS_MANAGE_ALL,
                Capability.TEAM_MANAGE,
                Capability.TASKS_DELETE,
                Capability.TASKS_VIEW_ALL,
                Capability.TASKS_REQUEST_INFO,
                Capability.PIPELINE_VIEW,
            ]
        )
    ),
    UserRole.LOAN_OFFICER.value: frozenset([Capability.PIPELINE_VIEW.value]),
    UserRole.QC.value: frozenset([Capability.TASKS_REQUEST_INFO.value]),
    UserRole.DISCLOSURE_SPECIALIST.value: frozenset([Capability.TASKS_REQUEST_INFO.value]),
}


def role_value(role: UserRole | str | None) -> str | None:
    if role is None:
        return None
    return role.value if isinstance(role, UserRole) else str(role)


def has_capability(role: UserRole | str | None, capability: Capability | str) -> bool:
    target = capability.value if isinstance(capability, Capability) else str(capability)
    return target in ROLE_CAPABILITIES.get(role_value(role) or "", frozenset())


def capabilities_for(role: UserRole | str | None) -> List[str]:
    return sorted(ROLE_CAPABILITIES.get(role_value(role) or "", frozenset()))


# Portal sections each role may open; drives navigation only.
ROLE_SECTIONS: dict[str, tuple[str, ...]] = {
    UserRole.ADMIN.value: ("dashboard", "pipeline", "tasks", "team", "admin", "lead-mailbox"),
    UserRole.MANAGER.value: ("dashboard", "pipeline", "tasks", "team"),
    UserRole.LOAN_OFFICER.value: ("dashboard", "pipeline", "tasks", "clients"),
    UserRole.DISCLOSURE_SPECIALIST.value: ("dashboard", "tasks"),
    UserRole.QC.value: ("dashboard", "tasks"),
    UserRole.PROCESSOR_JR.value: ("dashboard", "tasks"),
    UserRole.PROCESSOR_SR.value: ("dashboard", "tasks"),
}

_VA_SECTIONS = ("dashboard", "tasks")


def sections_for(role: UserRole | str | None) -> List[str]:
    value = role_value(role)
    if value in VA_ROLES:
        return list(_VA_SECTIONS)
    return list(ROLE_SECTIONS.get(value or "", ("dashboard",)))
