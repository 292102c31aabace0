"""Enum definitions for application constants."""

from enum import Enum


class Role(str, Enum):
    """
    Portal roles carried in the session token.

    - CLIENT: a user belonging to one client (tenant); sees only that client
    - ADMIN / SUPER_ADMIN: agency staff; may read any client
    """
    CLIENT = "client"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_

    @property
    def is_admin(self) -> bool:
        return self in (Role.ADMIN, Role.SUPER_ADMIN)


class CommunicationType(str, Enum):
    """First-party communication tags stored in client_communications.comm_type."""
    EMAIL_INVITE = "email_invite"
    EMAIL_REMINDER = "email_reminder"
    EMAIL_GENERAL = "email_general"
    RESULT_ALERT = "result_alert"
    CHAT = "chat"
    MONTHLY_REPORT = "monthly_report"
    CONTENT_APPROVAL = "content_approval"
    TASK_COMPLETE = "task_complete"
    MEETING = "meeting"
    CALL = "call"


class CrmMessageType(str, Enum):
    """Types derived from the HighLevel channel taxonomy."""
    SMS = "sms"
    EMAIL_HIGHLEVEL = "email_highlevel"
    CHAT = "chat"
    CHAT_FACEBOOK = "chat_facebook"
    CHAT_INSTAGRAM = "chat_instagram"
    CHAT_WHATSAPP = "chat_whatsapp"


class CommunicationStatus(str, Enum):
    """Delivery/engagement state of a communication."""
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    FAILED = "failed"
    BOUNCED = "bounced"
    # Recorded by the Mailgun tracking webhook only
    COMPLAINED = "complained"
    UNSUBSCRIBED = "unsubscribed"


class CommunicationSource(str, Enum):
    """Where a merged timeline item came from."""
    DATABASE = "database"
    EXTERNAL_CRM = "external-crm"


class MessageDirection(str, Enum):
    INBOUND = "inbound"  # contact-initiated
    OUTBOUND = "outbound"  # agency-initiated


class AlertSeverity(str, Enum):
    """Severity levels for system alerts."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertCategory(str, Enum):
    """Categories of system alerts."""
    SUBSCRIPTION_SAFEGUARD = "subscription_safeguard"
    SYNC_FAILURE = "sync_failure"
    API_ERROR = "api_error"
    AUTH_ERROR = "auth_error"
    DATA_INTEGRITY = "data_integrity"
    EMAIL_ERROR = "email_error"
    CRM_ERROR = "crm_error"
    STORAGE_ERROR = "storage_error"


# Status values that count as "reached the inbox"
DELIVERED_STATUSES = frozenset({
    CommunicationStatus.SENT.value,
    CommunicationStatus.DELIVERED.value,
    CommunicationStatus.OPENED.value,
    CommunicationStatus.CLICKED.value,
})

EMAIL_TYPES = frozenset({
    CommunicationType.EMAIL_INVITE.value,
    CommunicationType.EMAIL_REMINDER.value,
    CommunicationType.EMAIL_GENERAL.value,
    CrmMessageType.EMAIL_HIGHLEVEL.value,
})
