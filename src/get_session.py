"""Interactive Telegram login for the chattriage session.

Run once (``python src/get_session.py``) to create the .session file; the
triage listener reuses it afterwards.
"""

import asyncio
import logging
import os
from getpass import getpass

import qrcode
from dotenv import load_dotenv
from telethon import TelegramClient, errors

LOGGER = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "chattriage"


def build_client() -> TelegramClient:
    """Create a Telethon client from API_ID/API_HASH in the environment.

    SESSION_NAME picks the local .session file, so the listener and this
    login script share one authorization.
    """

    load_dotenv()

    api_id = (os.getenv("API_ID") or "").strip()
    api_hash = (os.getenv("API_HASH") or "").strip()
    session_name = os.getenv("SESSION_NAME") or DEFAULT_SESSION_NAME

    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")
    if not api_id.isdigit():
        raise RuntimeError(f"API_ID must be numeric, got {api_id!r}")

    LOGGER.info("Initializing Telegram client (session %s)", session_name)
    return TelegramClient(session_name, int(api_id), api_hash)


def _print_qr(url: str) -> None:
    qr = qrcode.QRCode(border=1)
    qr.add_data(url)
    qr.make(fit=True)
    qr.print_ascii(invert=True)


def _resolve_2fa_password() -> str:
    password = os.getenv("2FA")
    if password:
        return password
    return getpass("2FA password: ")


async def _authorize_with_qr(client: TelegramClient) -> None:
    qr = await client.qr_login()
    _print_qr(qr.url)
    await qr.wait(timeout=120)


async def _authorize_with_phone(client: TelegramClient) -> None:
    phone = os.getenv("PHONE") or input("Phone number (international format): ").strip()
    await client.send_code_request(phone)
    code = input("Login code: ").strip()
    try:
        await client.sign_in(phone=phone, code=code)
    except errors.SessionPasswordNeededError:
        await client.sign_in(password=_resolve_2fa_password())


def _pick_login_method() -> str:
    method = (os.getenv("LOGIN_METHOD") or "").strip().lower()
    if method in {"qr", "phone"}:
        return method
    while True:
        print("")
        print("Login methods:")
        print("[1] QR code")
        print("[2] Phone code")
        print("[3] Exit")
        choice = input("chattriage > ").strip()
        if choice == "1":
            return "qr"
        if choice == "2":
            return "phone"
        if choice == "3":
            raise SystemExit(0)
        print("Invalid option. Please choose 1, 2, or 3.")


async def authorize(client: TelegramClient) -> None:
    """Log the client in unless the session is already authorized."""

    if await client.is_user_authorized():
        return

    try:
        if _pick_login_method() == "phone":
            await _authorize_with_phone(client)
        else:
            await _authorize_with_qr(client)
    except errors.SessionPasswordNeededError:
        await client.sign_in(password=_resolve_2fa_password())


async def open_session(client: TelegramClient) -> None:
    """Connect and make sure the session is logged in before it is used."""

    await client.connect()
    if not await client.is_user_authorized():
        print("Authorization required. Starting login...")
        await authorize(client)


async def main() -> None:
    client = build_client()
    await open_session(client)

    me = await client.get_me()
    LOGGER.info("Logged in as: %s", me.first_name)
    print(f"Session ready for {me.first_name}")

    await client.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
