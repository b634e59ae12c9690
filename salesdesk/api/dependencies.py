"""FastAPI dependencies shared by the SalesDesk routers.

Authentication happens upstream (the gateway verifies the session and forwards
the user id), so the acting user is read from the X-User-Id header here.
"""

from fastapi import Header, HTTPException, status
from loguru import logger

from salesdesk.integrations.groupware.client import EmailSender, GroupwareMailClient


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Return the acting user id forwarded by the gateway.

    Raises:
        HTTPException: 401 if the header is missing or blank
    """
    if x_user_id is None or not x_user_id.strip():
        logger.warning("Request without X-User-Id header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id.strip()


def get_mailer() -> EmailSender:
    """Groupware mail collaborator for send_email steps."""
    return GroupwareMailClient()
