"""Gmail OAuth: cached installed-app credentials and the API service handle."""

from __future__ import annotations

from pathlib import Path

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build
from googleapiclient.errors import HttpError

from inboxowl.constants import CONFIG_DIR, CREDENTIALS_PATH, SCOPES, TOKEN_PATH
from inboxowl.gmail_client import get_profile_email
from inboxowl.log import get_logger

logger = get_logger(__name__)


def load_credentials(credentials_path: Path | None = None, token_path: Path | None = None) -> Credentials:
    """Return valid read-only Gmail credentials.

    A cached token is reused and refreshed when it has expired. Without one,
    the browser consent flow runs against the OAuth client file. The token
    file is rewritten only when the credentials changed.
    """
    credentials_path = credentials_path or CREDENTIALS_PATH
    token_path = token_path or TOKEN_PATH
    token_path.parent.mkdir(parents=True, exist_ok=True)

    creds = Credentials.from_authorized_user_file(str(token_path), SCOPES) if token_path.exists() else None
    if creds is not None and creds.valid:
        return creds

    if creds is not None and creds.expired and creds.refresh_token:
        logger.info("oauth_token_refresh")
        creds.refresh(Request())
    else:
        if not credentials_path.exists():
            raise FileNotFoundError(
                f"Credentials file not found at {credentials_path}.\n"
                "Create an OAuth client (Desktop app) in the Google Cloud Console, "
                "enable the Gmail API and save the client file as:\n"
                f"  {credentials_path}"
            )
        logger.info("oauth_consent_flow", credentials=str(credentials_path))
        flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), SCOPES)
        creds = flow.run_local_server(port=0)

    token_path.write_text(creds.to_json())
    return creds


def get_gmail_service() -> Resource:
    """Return an authenticated Gmail API service handle."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    creds = load_credentials(CREDENTIALS_PATH, TOKEN_PATH)
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


def check_auth() -> str | None:
    """Return the authenticated mailbox address, or None when sign-in fails."""
    try:
        address = get_profile_email(get_gmail_service())
    except FileNotFoundError as exc:
        logger.warning("auth_missing_credentials", error=str(exc))
        return None
    except (GoogleAuthError, HttpError, OSError) as exc:
        logger.warning("auth_failed", error=str(exc))
        return None
    return address
