from mailtriage.models.email import Email, EmailAccount
from mailtriage.models.meta import EmailMeta
from mailtriage.models.label import Label, EmailLabel
from mailtriage.models.suggestion import PendingLabelSuggestion, SuggestionAuditLog
from mailtriage.models.usage import ClassificationUsage
from mailtriage.models.attachment import EmailAttachment
from mailtriage.models.reminder import Reminder

__all__ = [
    "Email",
    "EmailAccount",
    "EmailMeta",
    "Label",
    "EmailLabel",
    "PendingLabelSuggestion",
    "SuggestionAuditLog",
    "ClassificationUsage",
    "EmailAttachment",
    "Reminder",
]
