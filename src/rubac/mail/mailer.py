"""Plain SMTP notification mails."""

import getpass
import logging
import socket
import time

from envelope import Envelope

from rubac.config import split_items


def default_sender() -> str:
    """Return user@host of the running process."""
    return f"{getpass.getuser()}@{socket.gethostname()}"


class Mailer:
    """Sends notification mails through an SMTP relay."""

    MAX_RETRY_ATTEMPTS = 3
    RETRY_DELAY_SECONDS = 2
    SMTP_PORT = 25

    def __init__(
        self,
        logger: logging.Logger,
        recipients: str | list[str],
        smtp: str = "localhost",
        sender: str | None = None,
        fail_silently: bool = True,
    ) -> None:
        """Initialize the Mailer.

        Args:
            logger: Logger instance for logging operations
            recipients: Recipient addresses, a list or a comma separated string
            smtp: SMTP server, host or host:port
            sender: Sender address (defaults to user@host)
            fail_silently: If True, don't raise exceptions on send failures

        """
        self.logger = logger
        self.recipients = split_items(recipients, ",")
        self.smtp = smtp or "localhost"
        self.sender = sender or default_sender()
        self.fail_silently = fail_silently

    def _smtp_host_port(self) -> tuple[str, int]:
        host, _, port = self.smtp.partition(":")
        return host, int(port) if port.isdigit() else self.SMTP_PORT

    def send_mail(self, subject: str, message: str) -> None:
        """Send one mail.

        Raises:
            Exception: For errors reported by the envelope library

        """
        self.logger.info(
            f"Sending email to {', '.join(self.recipients)} with subject '{subject}'",
        )
        host, port = self._smtp_host_port()
        email = Envelope(from_=self.sender, to=self.recipients, message=message)
        email.subject(subject)
        email.smtp(host=host, port=port)
        try:
            result = email.send()
        except Exception:
            self.logger.exception("Error sending email")
            raise
        if not result:
            error_msg = f"Email to {', '.join(self.recipients)} was not sent"
            raise RuntimeError(error_msg)
        self.logger.info(f"Email successfully sent to {', '.join(self.recipients)}")

    def send_mail_with_retries(self, subject: str, message: str) -> bool:
        """Send a mail, retrying on failure.

        Returns:
            True if the mail was sent

        Raises:
            Exception: If all retry attempts fail and fail_silently is False

        """
        for attempt in range(1, self.MAX_RETRY_ATTEMPTS + 1):
            try:
                self.send_mail(subject, message)
                return True
            except Exception:
                self.logger.exception(f"Attempt {attempt} failed")
                if attempt == self.MAX_RETRY_ATTEMPTS:
                    self.logger.error("All attempts failed.")
                    if not self.fail_silently:
                        raise
                else:
                    time.sleep(self.RETRY_DELAY_SECONDS)
                    self.logger.info(f"Starting attempt {attempt + 1}")
        return False
