"""Report mail for rotbackup.

Sends the log of a run to the configured recipients after every run, with
the most severe log level of the run in the subject.
"""

from email.message import EmailMessage
from typing import Callable, Optional
import getpass
import logging
import smtplib
import socket
import ssl

from rotbackup.config import ReportConfig
from rotbackup.logger import RunLog

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "rotbackup"


def default_sender() -> str:
    """Return user@fqdn for the current user and host."""
    return f"{getpass.getuser()}@{socket.getfqdn()}"


def build_subject(level_name: str, profile_name: str) -> str:
    return f"{SUBJECT_PREFIX} [{level_name}]: {profile_name}"


def build_message(
    config: ReportConfig,
    profile_name: str,
    run_log: RunLog,
) -> EmailMessage:
    """
    Build the report mail for a run.

    The body is the collected run log as plain text.
    """
    message = EmailMessage()
    message["From"] = config.sender or default_sender()
    message["To"] = ", ".join(config.recipients)
    message["Subject"] = build_subject(run_log.max_level_name(), profile_name)
    message.set_content(run_log.output())
    return message


def _tls_context(insecure: bool) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class ReportSender:
    """
    Sends report mails over SMTP.

    Port 465 uses implicit TLS; any other port uses STARTTLS when the
    server offers it.
    """

    def __init__(
        self,
        config: ReportConfig,
        smtp_factory: Optional[Callable[..., smtplib.SMTP]] = None,
        smtp_ssl_factory: Optional[Callable[..., smtplib.SMTP]] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL
        self.log = log or logger

    def _connect(self) -> smtplib.SMTP:
        context = _tls_context(self.config.smtp_insecure)
        if self.config.smtp_port == 465:
            return self.smtp_ssl_factory(
                self.config.smtp_host, self.config.smtp_port, context=context
            )

        smtp = self.smtp_factory(self.config.smtp_host, self.config.smtp_port)
        smtp.ehlo()
        if smtp.has_extn("starttls"):
            smtp.starttls(context=context)
            smtp.ehlo()
        return smtp

    def send(self, profile_name: str, run_log: RunLog) -> bool:
        """
        Send the report for a run.

        Args:
            profile_name: Name of the backup set, used in the subject
            run_log: Collected log of the run

        Returns:
            True if the mail was sent, False if it was skipped or failed
        """
        if not self.config.is_complete:
            if self.config.recipients:
                self.log.warning(
                    "Report mail recipients given, but SMTP configuration is "
                    "incomplete (host/port missing/invalid)."
                )
            else:
                self.log.debug("No SMTP configuration given.")
            return False

        if not self.config.recipients:
            self.log.debug("No report mail recipients given.")
            return False

        self.log.info(f"Sending report mail to: {', '.join(self.config.recipients)}")

        try:
            message = build_message(self.config, profile_name, run_log)
            smtp = self._connect()
            try:
                if self.config.smtp_username:
                    smtp.login(self.config.smtp_username, self.config.smtp_password)
                smtp.send_message(message)
            finally:
                smtp.quit()
        except (smtplib.SMTPException, OSError) as e:
            self.log.error(f"Error while sending report mail: {e}")
            return False

        return True


def send_report(
    config: ReportConfig,
    profile_name: str,
    run_log: RunLog,
    log: Optional[logging.Logger] = None,
) -> bool:
    """Send the report mail for a run. See ReportSender.send."""
    return ReportSender(config, log=log).send(profile_name, run_log)
