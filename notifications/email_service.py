import logging
from typing import Iterable, Mapping, Optional

from django.conf import settings
from django.core.mail import EmailMultiAlternatives, get_connection
from django.template.loader import render_to_string
from django.utils.html import strip_tags

logger = logging.getLogger(__name__)


def _render_bodies(
    template_name: Optional[str], context: Optional[Mapping]
) -> tuple[str, str]:
    if not template_name:
        return "", ""
    html_body = render_to_string(template_name, context or {})
    return html_body, strip_tags(html_body)


def send_email(
    *,
    subject: str,
    recipients: Iterable[str],
    template_name: Optional[str] = None,
    context: Optional[Mapping] = None,
    text_body: Optional[str] = None,
    from_email: Optional[str] = None,
) -> None:
    recipients = list(recipients)
    try:
        html_body, rendered_text = _render_bodies(template_name, context)

        connection = get_connection(
            backend=settings.EMAIL_BACKEND,
            fail_silently=getattr(settings, "EMAIL_FAIL_SILENTLY", False),
            timeout=getattr(settings, "EMAIL_TIMEOUT", 10),
        )

        message = EmailMultiAlternatives(
            subject=subject,
            body=text_body or rendered_text or "",
            from_email=from_email or settings.DEFAULT_FROM_EMAIL,
            to=recipients,
            connection=connection,
        )
        if html_body:
            message.attach_alternative(html_body, "text/html")
        message.send()
        logger.info(f"Email '{subject}' sent to {recipients}")
    except Exception as e:
        logger.error(f"Failed to send email to {recipients}: {str(e)}", exc_info=True)
        raise
