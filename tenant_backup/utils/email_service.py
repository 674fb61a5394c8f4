# tenant_backup/utils/email_service.py

from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from jinja2 import Environment, PackageLoader, select_autoescape

from tenant_backup.core.config import Settings
from tenant_backup.utils.logger import get_logger

logger = get_logger(__name__)

_template_env = Environment(
    loader=PackageLoader("tenant_backup", "templates"),
    autoescape=select_autoescape(["html", "xml"]),
)


def render_template(template_name: str, data: Dict[str, Any]) -> str:
    """
    Render a packaged Jinja2 template with the provided data.

    Args:
        template_name: File name under tenant_backup/templates
        data: Dictionary of template variables

    Returns:
        Rendered template string
    """
    try:
        return _template_env.get_template(template_name).render(**data)
    except Exception as e:
        logger.error(f"Error rendering Jinja2 template {template_name}: {str(e)}")
        raise


def send_email(
    settings: Settings,
    to_emails: List[str],
    subject: str,
    html_content: str,
    text_content: Optional[str] = None,
    cc_emails: Optional[List[str]] = None,
    sender_email: Optional[str] = None,
    ses_client=None,
) -> bool:
    """
    Send email via AWS SES.

    Returns:
        True when SES accepted the message (or sending is disabled), False otherwise
    """
    try:
        sender_email = sender_email or settings.aws_ses_sender_email
        configuration_set = settings.aws_ses_configuration_set

        original_to = to_emails.copy() if to_emails else []

        # ------------------------------------
        # APPLY EMAIL OVERRIDE LOGIC
        # ------------------------------------
        if settings.override_email_to:
            to_emails = [
                email.strip()
                for email in settings.override_email_to.split(",")
                if email.strip()
            ]
            logger.info(f"[Override] TO replaced: {original_to} → {to_emails}")

        if settings.override_email_cc:
            cc_emails = [
                email.strip()
                for email in settings.override_email_cc.split(",")
                if email.strip()
            ]
        elif settings.override_email_to:
            cc_emails = None

        # ------------------------------------
        # EMAIL SENDING ENABLED?
        # ------------------------------------
        if not settings.enable_email_sending:
            logger.info(f"[Email Disabled] Would send - To: {to_emails}, Subject: {subject}")
            return True

        if not sender_email:
            logger.error("AWS_SES_SENDER_EMAIL is not configured.")
            return False

        if not to_emails:
            logger.error(f"No recipients for email '{subject}'")
            return False

        ses_client = ses_client or boto3.client(
            "ses",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender_email
        msg["To"] = ", ".join(to_emails)
        if cc_emails:
            msg["Cc"] = ", ".join(cc_emails)

        # Plain text first so clients prefer the HTML part
        msg.attach(MIMEText(text_content or html_content, "plain", "utf-8"))
        msg.attach(MIMEText(html_content, "html", "utf-8"))

        params = {"RawMessage": {"Data": msg.as_string().encode("utf-8")}}
        if configuration_set:
            params["ConfigurationSetName"] = configuration_set

        response = ses_client.send_raw_email(
            Source=sender_email,
            Destinations=to_emails + (cc_emails or []),
            **params,
        )

        logger.info(
            f"[Email Sent] To: {to_emails}, Subject: {subject}, "
            f"MessageId: {response.get('MessageId')}"
        )
        return True

    except (ClientError, BotoCoreError) as e:
        logger.error(f"[SES Error] To: {to_emails}, Error: {e}")
        return False
