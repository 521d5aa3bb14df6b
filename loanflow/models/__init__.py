from loanflow.models.audit_log import AuditLog
from loanflow.models.client import Client, ClientDocument
from loanflow.models.external_user import ExternalUser, LeadMailboxLead
from loanflow.models.loan import Loan
from loanflow.models.pipeline_note import PipelineNote
from loanflow.models.pipeline_stage import PipelineStage
from loanflow.models.task import Task
from loanflow.models.task_attachment import TaskAttachment
from loanflow.models.task_template import TaskTemplate
from loanflow.models.tokens import InviteToken, PasswordResetToken
from loanflow.models.user import User

__all__ = [
    "AuditLog",
    "Client",
    "ClientDocument",
    "ExternalUser",
    "InviteToken",
    "LeadMailboxLead",
    "Loan",
    "PasswordResetToken",
    "PipelineNote",
    "PipelineStage",
    "Task",
    "TaskAttachment",
    "TaskTemplate",
    "User",
]
