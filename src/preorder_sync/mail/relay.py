from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..domain.models import DEFAULT_SENDER_NAME, OAuthAccount, SmtpSettings
from ..errors import NotConfigured, RemoteFetchFailed, TransportError
from ..forms.client import FormsClient
from ..logging import get_logger
from .dispatch import EmailDispatcher, TransportChoice
from .transports import TRANSPORT_OAUTH, TRANSPORT_SMTP, OutgoingEmail

LOG = get_logger("mail-relay")

# "gmail" is the older name of the provider-account transport
TYPE_ALIASES = {"gmail": TRANSPORT_OAUTH, TRANSPORT_OAUTH: TRANSPORT_OAUTH, TRANSPORT_SMTP: TRANSPORT_SMTP}


def response_checksum(response_ids: Iterable[str]) -> str:
    """MD5 of the sorted, comma-joined ids; ``"empty"`` when there are none."""
    ids = sorted(response_ids)
    if not ids:
        return "empty"
    return hashlib.md5(",".join(ids).encode("utf-8")).hexdigest()


def _choice_from_request(kind: str, auth: Dict[str, Any], message: OutgoingEmail) -> TransportChoice:
    if kind == TRANSPORT_OAUTH:
        token = auth.get("accessToken")
        if not token:
            raise ValueError("auth.accessToken is required for oauth")
        return TransportChoice(kind, OAuthAccount(access_token=str(token), sender_email=message.sender))
    host = auth.get("host")
    if not host:
        raise ValueError("auth.host is required for smtp")
    try:
        port = int(auth.get("port") or 587)
    except (TypeError, ValueError):
        raise ValueError("auth.port must be a number")
    return TransportChoice(
        kind,
        SmtpSettings(
            host=str(host),
            port=port,
            username=str(auth.get("user") or ""),
            password=str(auth.get("pass") or ""),
            from_email=message.sender,
            from_name=DEFAULT_SENDER_NAME,
        ),
    )


def create_app(
    *,
    dispatcher: Optional[EmailDispatcher] = None,
    forms_client_factory: Optional[Callable[[str], FormsClient]] = None,
    allow_origins: Optional[List[str]] = None,
) -> Starlette:
    """Create a Starlette app that relays email sends and form checksums."""

    mailer = dispatcher or EmailDispatcher()
    if mailer.relay is not None:
        raise ValueError("The relay service must send directly, not through another relay")
    make_forms_client = forms_client_factory or (lambda token: FormsClient(token))

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()})

    async def send_email(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse({"error": "Request body must be JSON"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "Request body must be a JSON object"}, status_code=400)
        kind_raw, auth, email = body.get("type"), body.get("auth"), body.get("email")
        if not kind_raw or not isinstance(auth, dict) or not isinstance(email, dict):
            return JSONResponse({"error": "Missing required fields: type, auth, email"}, status_code=400)
        kind = TYPE_ALIASES.get(str(kind_raw).lower())
        if kind is None:
            return JSONResponse({"error": 'Invalid email type. Must be "oauth", "gmail" or "smtp"'}, status_code=400)
        try:
            message = OutgoingEmail.from_wire(email)
            choice = _choice_from_request(kind, auth, message)
        except (ValueError, TypeError) as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)
        try:
            # Blocking transports; keep them off the event loop thread
            message_id = await run_in_threadpool(mailer.send, choice, message)
        except NotConfigured as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)
        except TransportError as exc:
            LOG.error("Relay send via %s failed: %s", kind, exc.detail)
            return JSONResponse({"error": exc.detail}, status_code=502)
        LOG.info("Relayed %r to %s via %s (%d inline part(s))", message.subject, message.to, kind, len(message.attachments))
        return JSONResponse({"success": True, "messageId": message_id})

    async def sync_check(request: Request) -> JSONResponse:
        form_id = request.query_params.get("formId")
        header = request.headers.get("authorization") or ""
        token = header[len("Bearer "):].strip() if header.lower().startswith("bearer ") else ""
        token = token or (request.query_params.get("accessToken") or "")
        if not form_id or not token:
            return JSONResponse({"error": "formId and a bearer token are required"}, status_code=400)
        try:
            responses = await run_in_threadpool(make_forms_client(token).list_responses, form_id)
        except RemoteFetchFailed as exc:
            LOG.warning("Checksum fetch for %s failed: %s", form_id, exc.detail)
            return JSONResponse({"error": exc.detail}, status_code=502)
        ids = [r.response_id for r in responses]
        return JSONResponse({"checksum": response_checksum(ids), "responseCount": len(ids), "formId": form_id})

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/email/send", send_email, methods=["POST"]),
        Route("/sync/check", sync_check, methods=["GET"]),
    ]
    app = Starlette(debug=False, routes=routes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app
