from .client import (
    FROM_EMAIL,
    SmtpNotConfiguredError,
    is_configured,
    send_email,
    send_winner_email,
    send_outbid_email,
)

__all__ = [
    "FROM_EMAIL",
    "SmtpNotConfiguredError",
    "is_configured",
    "send_email",
    "send_winner_email",
    "send_outbid_email",
]
