"""Google Drive OAuth2 helper: writes the token file for headless hosts.

Usage:
    python scripts/drive_auth.py

This will print a URL. Open it in your browser, sign in, grant access.
After authorization, your browser will redirect to the configured
OAUTH_REDIRECT_URI, which may not load; that's expected. Copy the FULL
URL from your browser's address bar and paste it back here. The script
extracts the code and writes GOOGLE_TOKEN_PATH.
"""

import sys
from pathlib import Path
from urllib.parse import parse_qs, urlparse

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import settings
from src.drive_client import DriveSession, authorization_url, build_flow, exchange_code
from src.exceptions import NotelineError


def main():
    if not settings.google_client_secrets_path.exists():
        print(f"ERROR: No OAuth client secrets at {settings.google_client_secrets_path}")
        sys.exit(1)

    flow = build_flow()
    auth_url = authorization_url(flow)

    print()
    print("=" * 60)
    print("GOOGLE DRIVE AUTHORIZATION")
    print("=" * 60)
    print()
    print("1. Open this URL in your browser:")
    print()
    print(auth_url)
    print()
    print("2. Sign in and grant Drive read-only access")
    print(f"3. You'll be redirected to {settings.oauth_redirect_uri}?code=...")
    print("4. Copy the FULL URL from your address bar")
    print("5. Paste it below:")
    print()

    redirect_url = input("Paste URL here: ").strip()
    params = parse_qs(urlparse(redirect_url).query)
    if "code" not in params:
        print("ERROR: No authorization code found in the URL.")
        print("Make sure you copied the full URL including ?code=...")
        sys.exit(1)

    exchange_code(flow, params["code"][0])
    print()
    print(f"SUCCESS! Token written to {settings.google_token_path}")
    print()

    print("Verifying token...")
    try:
        DriveSession.open()
    except NotelineError as e:
        print(f"ERROR: Token verification failed: {e}")
        sys.exit(1)
    print("Token is valid! Drive API is ready.")


if __name__ == "__main__":
    main()
