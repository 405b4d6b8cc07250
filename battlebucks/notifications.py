# battlebucks/notifications.py - Confirmation drafts and their delivery.
#
# Delivery is fire-and-forget: nothing here raises back into the ledger.

import traceback
from dataclasses import dataclass
from urllib.parse import quote

import requests # For Telegram notifications


@dataclass
class ConfirmationMessage:
    recipient: str
    subject: str
    body: str

    def to_dict(self):
        return {
            'recipient': self.recipient,
            'subject': self.subject,
            'body': self.body,
            'mailtoLink': mailto_link(self),
        }


def _format_amount(amount):
    if isinstance(amount, float) and not amount.is_integer():
        return f"₹{amount:,.2f}"
    return f"₹{int(amount):,}"


def draft_confirmation_email(user_name, recipient, tournament):
    """Builds the email a player receives once an admin confirms their payment."""
    subject = f"Your slot for {tournament.title} is confirmed!"
    body = (
        f"Hi {user_name},\n\n"
        f"We have received your entry fee of {_format_amount(tournament.entryFee)} "
        f"and your slot in {tournament.title} ({tournament.game}) is now confirmed.\n\n"
        f"Match date: {tournament.date}\n"
        f"Match time: {tournament.time} IST\n"
        f"Prize pool: {_format_amount(tournament.prizePool)}\n\n"
        f"Room ID and password will be shared shortly before the match starts. "
        f"Make sure your in-game ID matches the one you registered with.\n\n"
        f"Good luck and see you on the battleground!\n"
        f"Team BattleBucks"
    )
    return ConfirmationMessage(recipient=recipient, subject=subject, body=body)


def mailto_link(message):
    """The admin panel opens this link to send the draft from the admin's own mail client."""
    return f"mailto:{message.recipient}?subject={quote(message.subject)}&body={quote(message.body)}"


class TelegramNotifier:
    """Posts confirmation notices to the admins' Telegram chat."""

    def __init__(self, bot_token, chat_id, timeout=10):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout

    def send_message(self, text, parse_mode="Markdown"):
        """Sends a message to the configured Telegram chat."""
        if not self.bot_token or not self.chat_id:
            print("Telegram bot token or chat ID not configured. Skipping Telegram message.")
            return False

        telegram_api_url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
        telegram_payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": parse_mode
        }
        try:
            response = requests.post(telegram_api_url, json=telegram_payload, timeout=self.timeout)
            response.raise_for_status()
            print("Telegram message sent successfully.")
        except requests.exceptions.RequestException as e:
            print(f"Error sending Telegram message: {e}")
            traceback.print_exc()
            return False
        return True

    def notify(self, message):
        text = (
            f"*Payment Confirmed!*\n"
            f"*Player:* `{message.recipient}`\n"
            f"*Subject:* {message.subject}\n\n"
            f"{message.body}"
        )
        return self.send_message(text)


class NotificationDispatcher:
    """
    Hands confirmation messages to a sink without blocking the caller.

    With a running APScheduler scheduler the delivery is queued as a one-off
    job; without one it runs inline. Either way a failing sink is only logged.
    """

    def __init__(self, sink, scheduler=None):
        self.sink = sink
        self.scheduler = scheduler

    def dispatch(self, message):
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.add_job(self._deliver, args=[message])
        else:
            self._deliver(message)

    def _deliver(self, message):
        try:
            self.sink.notify(message)
        except Exception as e:
            print(f"Notification for {message.recipient} failed: {e}")
            traceback.print_exc()
