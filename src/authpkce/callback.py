"""Short-lived loopback HTTP listener for the OAuth redirect callback.

:class:`CallbackServer` binds to the host and port named by the configured
redirect URI and processes exactly one callback on the redirect path before
the attempt ends. It is a context manager: the socket is bound on entry and
closed on exit, whatever happened in between (success, provider error,
malformed callback, state mismatch, or timeout).

Requests for any other path (browsers like to ask for ``/favicon.ico``)
get a 404 and do not count as the callback.
"""

from __future__ import annotations

import html
import logging
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Mapping, Optional, Union
from urllib.parse import parse_qs, urlparse

from authpkce.exceptions import (
    AuthenticationError,
    CallbackTimeoutError,
    StateMismatchError,
    ValidationError,
)
from authpkce.models import AuthorizationState, CallbackResult

logger = logging.getLogger(__name__)

CALLBACK_TIMEOUT = 300.0
DEFAULT_CALLBACK_PORT = 8080

_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family: sans-serif; text-align: center; padding-top: 4em;">
<h1>{title}</h1>
<p>{message}</p>
{script}
</body>
</html>
"""


def parse_redirect_uri(redirect_uri: str) -> tuple[str, int, str]:
    """Split a loopback redirect URI into ``(host, port, path)``.

    The port defaults to 8080 when the URI does not name one, and the path
    defaults to ``/``.

    Raises:
        ValidationError: If the URI is not an ``http`` URL with a host.
    """
    parsed = urlparse(redirect_uri)
    if parsed.scheme != "http" or not parsed.hostname:
        raise ValidationError(
            f"Invalid redirect URI: {redirect_uri!r} (expected http://host:port/path)"
        )
    try:
        port = parsed.port or DEFAULT_CALLBACK_PORT
    except ValueError as exc:
        raise ValidationError(f"Invalid port in redirect URI: {redirect_uri!r}") from exc
    return parsed.hostname, port, parsed.path or "/"


def _render_page(title: str, message: str, close_window: bool = False) -> bytes:
    script = "<script>setTimeout(function () { window.close(); }, 3000);</script>"
    return _PAGE.format(
        title=html.escape(title),
        message=html.escape(message),
        script=script if close_window else "",
    ).encode("utf-8")


class _CallbackHandler(BaseHTTPRequestHandler):
    # Bounds how long a connected client may stall before sending its request line.
    timeout = 10

    server: _CallbackHTTPServer

    def do_GET(self) -> None:
        listener = self.server.listener
        parsed = urlparse(self.path)
        if parsed.path != listener.path:
            self._respond(404, _render_page("Not Found", "This is not the OAuth callback."))
            return

        params = parse_qs(parsed.query)
        outcome = listener.evaluate(
            {key: values[0] for key, values in params.items() if values}
        )
        if isinstance(outcome, CallbackResult):
            self._respond(
                200,
                _render_page(
                    "Authentication Successful!",
                    "You can now close this window and return to the CLI.",
                    close_window=True,
                ),
            )
        else:
            self._respond(400, _render_page("Authentication Failed", str(outcome)))
        listener.outcome = outcome

    def _respond(self, status: int, body: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("Callback server: " + format, *args)


class _CallbackHTTPServer(HTTPServer):
    listener: CallbackServer


class CallbackServer:
    """Scoped listener that captures one OAuth redirect.

    Args:
        redirect_uri: The registered loopback redirect URI, e.g.
            ``http://localhost:8080/callback``.
        pending_states: Pending authorization attempts keyed by ``state``.
            A callback whose ``state`` is not a key is rejected.

    Example::

        with CallbackServer(redirect_uri, pending) as server:
            webbrowser.open(auth_url)
            result = server.wait(timeout=300)
    """

    def __init__(
        self,
        redirect_uri: str,
        pending_states: Mapping[str, AuthorizationState],
    ) -> None:
        self.host, self.port, self.path = parse_redirect_uri(redirect_uri)
        self._pending_states = pending_states
        self._server: Optional[_CallbackHTTPServer] = None
        self.outcome: Union[CallbackResult, AuthenticationError, None] = None

    def __enter__(self) -> CallbackServer:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def start(self) -> None:
        """Bind the listening socket.

        Raises:
            AuthenticationError: If the port cannot be bound (for example
                because another process is already using it).
        """
        try:
            server = _CallbackHTTPServer((self.host, self.port), _CallbackHandler)
        except OSError as exc:
            raise AuthenticationError(
                f"Cannot listen for the OAuth callback on {self.host}:{self.port}: {exc}"
            ) from exc
        server.listener = self
        self._server = server
        logger.info("Callback server listening on %s:%d%s", self.host, self.port, self.path)

    def close(self) -> None:
        """Stop listening. Safe to call more than once."""
        if self._server is not None:
            self._server.server_close()
            self._server = None
            logger.debug("Callback server closed")

    @property
    def is_listening(self) -> bool:
        return self._server is not None

    def evaluate(
        self, params: Mapping[str, str]
    ) -> Union[CallbackResult, AuthenticationError]:
        """Classify callback query parameters without raising."""
        error = params.get("error")
        if error:
            description = params.get("error_description")
            message = f"OAuth error: {error}"
            if description:
                message += f" - {description}"
            logger.error("OAuth callback error: %s", message)
            return AuthenticationError(message)

        code = params.get("code")
        state = params.get("state")
        if not code or not state:
            logger.error(
                "OAuth callback missing parameters (code=%s, state=%s)",
                bool(code),
                bool(state),
            )
            return AuthenticationError("Missing authorization code or state parameter")

        if state not in self._pending_states:
            logger.error("OAuth callback carried an unknown state")
            return StateMismatchError(
                "Invalid state parameter: the callback does not match this login attempt"
            )
        return CallbackResult(code=code, state=state)

    def wait(self, timeout: float = CALLBACK_TIMEOUT) -> CallbackResult:
        """Serve requests until the callback arrives or *timeout* seconds pass.

        Returns:
            The captured :class:`~authpkce.models.CallbackResult`.

        Raises:
            AuthenticationError: If the provider reported an error or the
                callback was malformed.
            StateMismatchError: If the callback ``state`` is unknown.
            CallbackTimeoutError: If no callback arrived in time.
        """
        if self._server is None:
            raise RuntimeError("CallbackServer.wait() called before start()")
        deadline = time.monotonic() + timeout
        while self.outcome is None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise CallbackTimeoutError(
                    "Authentication timeout - no callback received within "
                    f"{_describe_duration(timeout)}"
                )
            self._server.timeout = remaining
            self._server.handle_request()

        if isinstance(self.outcome, AuthenticationError):
            raise self.outcome
        return self.outcome


def _describe_duration(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds:g} seconds"
