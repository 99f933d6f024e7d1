import os
from typing import Dict, Optional

from dotenv import dotenv_values

from .domain.models import DEFAULT_SENDER_NAME, OAuthAccount, SmtpSettings
from .logging import get_logger

log = get_logger("config")


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    Lets the CLI run from a subdirectory and still find the repository `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Key/value pairs of the nearest `.env`; does not mutate the environment."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir or '.')}")
        return {}
    values = {k: v.strip() for k, v in dotenv_values(path).items() if k and v is not None}
    log.debug(f"Loaded {len(values)} key(s) from .env at {path}")
    return values


def _lookup(name: str, env: Dict[str, str]) -> Optional[str]:
    # Process environment wins over .env
    v = os.environ.get(name)
    if v:
        return v.strip()
    v = env.get(name)
    return v.strip() if v else None


def load_forms_token(dotenv_dir: str) -> Optional[str]:
    tok = os.environ.get("FORMS_ACCESS_TOKEN")
    if tok:
        log.info("Using FORMS_ACCESS_TOKEN from environment")
        return tok.strip()
    v = _read_dotenv(dotenv_dir).get("FORMS_ACCESS_TOKEN")
    if v:
        log.info("Loaded FORMS_ACCESS_TOKEN from .env file")
        return v.strip()
    log.debug("FORMS_ACCESS_TOKEN not found in env or .env")
    return None


def load_oauth_account(dotenv_dir: str) -> Optional[OAuthAccount]:
    """Return the provider account from GMAIL_* keys, or None when incomplete."""
    env = _read_dotenv(dotenv_dir)
    account = OAuthAccount(
        access_token=_lookup("GMAIL_ACCESS_TOKEN", env),
        sender_email=_lookup("GMAIL_SENDER", env),
        sender_name=_lookup("GMAIL_SENDER_NAME", env),
    )
    return account if account.usable else None


def load_smtp_settings(dotenv_dir: str) -> Optional[SmtpSettings]:
    env = _read_dotenv(dotenv_dir)
    host = _lookup("SMTP_HOST", env)
    username = _lookup("SMTP_USERNAME", env)
    password = _lookup("SMTP_PASSWORD", env)
    if not (host and username and password):
        log.debug("SMTP_HOST/SMTP_USERNAME/SMTP_PASSWORD incomplete; SMTP not configured from env")
        return None
    raw_port = _lookup("SMTP_PORT", env) or "587"
    try:
        port = int(raw_port)
    except ValueError:
        log.warning(f"SMTP_PORT={raw_port!r} is not a number; using 587")
        port = 587
    return SmtpSettings(
        host=host,
        port=port,
        username=username,
        password=password,
        from_email=_lookup("SMTP_FROM_EMAIL", env) or username,
        from_name=_lookup("SMTP_FROM_NAME", env) or DEFAULT_SENDER_NAME,
    )


def load_relay_url(dotenv_dir: str) -> Optional[str]:
    v = _lookup("MAIL_RELAY_URL", _read_dotenv(dotenv_dir))
    return v.rstrip("/") if v else None


def load_currency(dotenv_dir: str, fallback: str = "USD") -> str:
    v = _lookup("CURRENCY_CODE", _read_dotenv(dotenv_dir))
    return (v or fallback).upper()
