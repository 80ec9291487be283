"""Outbound email over SMTP.

``smtplib`` is blocking, so every send runs in the default thread executor
and the coroutine only resolves once the server accepted (or rejected) the
message.
"""

import asyncio
import os
import smtplib
from email.message import EmailMessage
from typing import Optional

# Configuration
SMTP_HOST = os.environ.get("SMTP_HOST", "")
SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
SMTP_USER = os.environ.get("SMTP_USER", "")
SMTP_PASS = os.environ.get("SMTP_PASS", "")
SMTP_STARTTLS = os.environ.get("SMTP_STARTTLS", "true").lower() == "true"
SMTP_TIMEOUT_SECONDS = float(os.environ.get("SMTP_TIMEOUT_SECONDS", "10"))
FROM_EMAIL = os.environ.get("FROM_EMAIL", '"Silent Auction" <no-reply@auction.local>')


class SmtpNotConfiguredError(RuntimeError):
    """Raised when a send is attempted without SMTP_HOST."""


def is_configured() -> bool:
    return bool(SMTP_HOST)


def _build_message(to: str, subject: str, body: str) -> EmailMessage:
    message = EmailMessage()
    message["From"] = FROM_EMAIL
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body)
    return message


def _send_sync(message: EmailMessage) -> None:
    with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=SMTP_TIMEOUT_SECONDS) as server:
        if SMTP_STARTTLS:
            server.starttls()
        if SMTP_USER:
            server.login(SMTP_USER, SMTP_PASS)
        server.send_message(message)


async def send_email(to: str, subject: str, body: str) -> None:
    if not is_configured():
        raise SmtpNotConfiguredError("SMTP_HOST is not set")
    message = _build_message(to, subject, body)
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, _send_sync, message)


async def send_winner_email(to: str, item_title: str, amount: Optional[str] = None) -> None:
    """*amount* is the winning price already rendered for display, e.g. "40" or "40.5"."""
    price_line = f"Your bid of ${amount} is the highest" if amount is not None else "Your bid is the highest"
    body = (
        "Dear bidder,\n\n"
        f"Congratulations! {price_line} for \"{item_title}\".\n\n"
        "We will contact you with further details.\n\n"
        "Thank you for participating.\n\n"
        "Best regards,\nSilent Auction Team"
    )
    await send_email(to, f"Congratulations! You won the auction for \"{item_title}\"", body)


async def send_outbid_email(to: str, item_title: str, new_amount: str, your_amount: str) -> None:
    body = (
        "Dear bidder,\n\n"
        f"Your bid of ${your_amount} on \"{item_title}\" has been outbid. "
        f"The new highest bid is ${new_amount}.\n\n"
        "You can place a new bid to stay in the running!\n\n"
        "Thank you for participating!"
    )
    await send_email(to, f"You've been outbid on {item_title}", body)
