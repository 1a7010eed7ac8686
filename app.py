"""Application entry point for the Kudos Ledger webhooks and install flows."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Any, Dict
from uuid import uuid4

import httpx
from flask import Flask, jsonify, redirect, request
from slack_bolt import App as SlackApp
from slack_bolt.adapter.flask import SlackRequestHandler
from slack_bolt.authorization import AuthorizeResult
from slack_sdk.errors import SlackApiError
from sqlalchemy import text
import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

from kudos_ledger.background import run_async
from kudos_ledger.commands import (
    ExplicitId,
    GoogleChatCommandParser,
    MalformedCommand,
    SlackCommandParser,
    is_kudos_command,
)
from kudos_ledger.config import AppSettings, get_settings
from kudos_ledger.db import session_scope
from kudos_ledger.directory import (
    create_installation,
    get_installation_by_external_id,
    get_or_create_organization,
    register_space,
)
from kudos_ledger.ledger import grant
from kudos_ledger.logging_config import configure_logging
from kudos_ledger.messages import (
    GENERIC_FAILURE_TEXT,
    GOOGLE_INSTALL_REQUIRED_TEXT,
    INSTALL_REQUIRED_TEXT,
    KUDOS_ICON_EMOJI,
    build_google_chat_error,
    build_google_chat_kudos_message,
    build_slack_kudos_message,
    format_usage_error,
)
from kudos_ledger.models import IdentityConflict, InstallationNotFound, PersistenceFailure, Platform
from kudos_ledger.oauth import (
    OAuthExchangeError,
    build_google_authorize_url,
    build_slack_authorize_url,
    exchange_google_code,
    exchange_slack_code,
)
from kudos_ledger.oauth_state import OAuthStateStore
from kudos_ledger.security import (
    GOOGLE_CHAT_AUTH_HEADER,
    is_valid_google_chat_request,
    slack_request_is_valid,
)
from kudos_ledger.slack_client import SlackClient

GOOGLE_HTTP_TIMEOUT = 10.0


def _authorize_installation(enterprise_id, team_id, logger):
    """Bolt authorize hook: use the bot token stored for the team's installation."""

    try:
        installation = get_installation_by_external_id(team_id or "")
    except InstallationNotFound:
        logger.warning("No installation found for Slack team", extra={"team_id": team_id})
        return None

    return AuthorizeResult(
        enterprise_id=enterprise_id,
        team_id=team_id,
        bot_token=installation.bot_token,
    )


def _create_bolt_app(settings: AppSettings) -> SlackApp:
    """Initialise the Slack Bolt application using validated settings."""

    return SlackApp(
        signing_secret=settings.signing_secret,
        authorize=_authorize_installation,
        user_facing_authorize_error_message=INSTALL_REQUIRED_TEXT,
    )


def _register_error_handlers(flask_app: Flask) -> None:
    """Register a JSON error handler that attaches a trace identifier."""

    @flask_app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):  # type: ignore[override]
        trace_id = str(uuid4())
        structlog.get_logger().error(
            "unhandled_application_error", trace_id=trace_id, error=str(error), exc_info=error
        )
        response = jsonify({"error": "internal_server_error", "trace_id": trace_id})
        response.status_code = 500
        return response


def _ephemeral(text_value: str) -> Dict[str, str]:
    return {"response_type": "ephemeral", "text": text_value}


def _post_kudos_message(*, client, channel_id: str, message: Dict[str, Any], logger) -> None:
    log = structlog.get_logger().bind(channel=channel_id)
    try:
        SlackClient(client=client).post_message(
            channel=channel_id,
            text=message["text"],
            blocks=message["blocks"],
            icon_emoji=KUDOS_ICON_EMOJI,
        )
    except SlackApiError as exc:  # pragma: no cover - depends on Slack API behaviour
        error_code = exc.response.get("error") if getattr(exc, "response", None) else str(exc)
        log.error("kudos_announcement_failed", error=error_code)
        logger.error(
            "Failed to post kudos announcement",
            extra={"channel": channel_id, "error": error_code},
        )
        return

    log.info("kudos_announcement_posted")


def _recipient_handle(client, mention, log) -> str | None:
    if not isinstance(mention, ExplicitId):
        return None
    try:
        return SlackClient(client=client).get_username(mention.value)
    except SlackApiError as exc:
        error_code = exc.response.get("error") if getattr(exc, "response", None) else str(exc)
        log.warning("slack_user_lookup_failed", recipient=mention.value, error=error_code)
        return None


def _handle_kudos_command(ack, command, client, logger):
    trace_id = str(uuid4())
    bind_contextvars(trace_id=trace_id)
    settings = get_settings()
    team_id = command.get("team_id") or ""
    user_id = command.get("user_id") or ""
    channel_id = command.get("channel_id") or ""
    log = structlog.get_logger().bind(trace_id=trace_id, team_id=team_id, user_id=user_id)

    try:
        log.info("slash_command_received", command=command.get("command"))

        parser = SlackCommandParser(command=settings.slash_command)
        try:
            parsed = parser.parse(command.get("text") or "")
        except MalformedCommand as exc:
            log.info("slash_command_malformed", error=str(exc))
            ack(_ephemeral(format_usage_error(exc)))
            return

        try:
            result = grant(
                team_id,
                user_id,
                parsed.mention,
                parsed.description,
                from_username=command.get("user_name") or None,
                to_username=_recipient_handle(client, parsed.mention, log),
            )
        except InstallationNotFound:
            log.warning("slash_command_not_installed")
            ack(_ephemeral(INSTALL_REQUIRED_TEXT))
            return
        except (PersistenceFailure, IdentityConflict) as exc:
            log.error("slash_command_grant_failed", error=str(exc))
            ack(_ephemeral(GENERIC_FAILURE_TEXT))
            return

        ack()
        message = build_slack_kudos_message(
            mention=parsed.mention,
            description=result.description,
            total=result.total,
        )
        run_async(
            _post_kudos_message,
            client=client,
            channel_id=channel_id,
            message=message,
            logger=logger,
            trace_id=trace_id,
        )
    finally:
        unbind_contextvars("trace_id")


def _register_slash_handlers(bolt_app: SlackApp, settings: AppSettings) -> None:
    @bolt_app.command(settings.slash_command)
    def handle_kudos(ack, command, client, logger):
        _handle_kudos_command(ack=ack, command=command, client=client, logger=logger)


def _handle_google_chat_added(event: Dict[str, Any], settings: AppSettings, log) -> Dict[str, Any]:
    space_name = (event.get("space") or {}).get("name") or ""
    if not space_name or not settings.google_project_id:
        log.warning("googlechat_space_registration_skipped", space=space_name)
        return {}

    try:
        register_space(space_name, settings.google_project_id)
    except InstallationNotFound:
        log.warning("googlechat_project_not_installed", project_id=settings.google_project_id)
        return build_google_chat_error(GOOGLE_INSTALL_REQUIRED_TEXT)

    log.info("googlechat_space_registered", space=space_name)
    return {
        "text": f"Thanks for adding me! Give kudos with `{settings.slash_command} @user description`."
    }


def _handle_google_chat_event(event: Dict[str, Any], settings: AppSettings) -> Dict[str, Any]:
    """Turn one Google Chat event into the synchronous response message."""

    event_type = event.get("type")
    message = event.get("message") or {}
    space_name = (event.get("space") or {}).get("name") or (message.get("space") or {}).get("name") or ""
    log = structlog.get_logger().bind(event_type=event_type, space=space_name)

    if event_type == "ADDED_TO_SPACE":
        return _handle_google_chat_added(event, settings, log)

    if event_type != "MESSAGE":
        return {}

    command_text = (message.get("argumentText") or message.get("text") or "").strip()
    if not message.get("slashCommand") and not is_kudos_command(command_text, settings.slash_command):
        return {}

    if not space_name:
        log.warning("googlechat_missing_space")
        return build_google_chat_error("Invalid space information")

    sender = message.get("sender") or event.get("user") or {}
    sender_id = (sender.get("name") or "").removeprefix("users/")
    if not sender_id:
        log.warning("googlechat_missing_sender")
        return build_google_chat_error("Unable to identify sender")

    parser = GoogleChatCommandParser(command=settings.slash_command)
    try:
        parsed = parser.parse(command_text)
    except MalformedCommand as exc:
        log.info("googlechat_command_malformed", error=str(exc))
        return build_google_chat_error(format_usage_error(exc))

    try:
        result = grant(space_name, sender_id, parsed.mention, parsed.description)
    except InstallationNotFound:
        log.warning("googlechat_not_installed")
        return build_google_chat_error(GOOGLE_INSTALL_REQUIRED_TEXT)
    except (PersistenceFailure, IdentityConflict) as exc:
        log.error("googlechat_grant_failed", error=str(exc))
        return build_google_chat_error(GENERIC_FAILURE_TEXT)

    return build_google_chat_kudos_message(
        mention=parsed.mention,
        description=result.description,
        total=result.total,
    )


def _google_http_client() -> httpx.Client:
    return httpx.Client(timeout=GOOGLE_HTTP_TIMEOUT)


def _oauth_error(message: str, status_code: int):
    response = jsonify({"error": message})
    response.status_code = status_code
    return response


def _register_oauth_routes(flask_app: Flask, settings: AppSettings, state_store: OAuthStateStore) -> None:
    @flask_app.route("/auth/slack", methods=["GET"])
    def slack_login():
        if not settings.slack_oauth_enabled:
            return _oauth_error("slack_oauth_not_configured", 503)
        state_store.purge_expired()
        url = build_slack_authorize_url(
            client_id=settings.slack_client_id,
            redirect_uri=settings.slack_redirect_uri,
            state=state_store.issue(),
        )
        return redirect(url, code=307)

    @flask_app.route("/auth/slack/callback", methods=["GET"])
    def slack_callback():
        log = structlog.get_logger().bind(platform=Platform.SLACK.value)
        if not settings.slack_oauth_enabled:
            return _oauth_error("slack_oauth_not_configured", 503)
        if request.args.get("error"):
            log.info("oauth_denied", error=request.args["error"])
            return _oauth_error(f"OAuth authorization denied: {request.args['error']}", 400)
        code = request.args.get("code")
        if not code:
            return _oauth_error("Missing authorization code", 400)
        if not state_store.consume(request.args.get("state")):
            log.warning("oauth_state_rejected")
            return _oauth_error("Invalid or expired authentication request", 400)

        try:
            grant_result = exchange_slack_code(
                code=code,
                client_id=settings.slack_client_id,
                client_secret=settings.slack_client_secret,
                redirect_uri=settings.slack_redirect_uri,
            )
        except OAuthExchangeError as exc:
            log.error("oauth_exchange_failed", error=str(exc))
            return _oauth_error("Failed to exchange code for token", 502)

        organization = get_or_create_organization(grant_result.team_name)
        installation = create_installation(
            platform=Platform.SLACK,
            organization_id=organization.id,
            external_installation_id=grant_result.team_id,
            access_token=grant_result.access_token,
            bot_token=grant_result.bot_token,
            team_name=grant_result.team_name,
        )
        log.info("app_installed", team_id=grant_result.team_id, installation_id=installation.id)
        return jsonify(
            {"ok": True, "team_name": grant_result.team_name, "message": "Successfully installed Kudos app!"}
        )

    @flask_app.route("/auth/googlechat", methods=["GET"])
    def googlechat_login():
        if not settings.google_oauth_enabled:
            return _oauth_error("google_oauth_not_configured", 503)
        state_store.purge_expired()
        url = build_google_authorize_url(
            client_id=settings.google_client_id,
            redirect_uri=settings.google_redirect_uri,
            state=state_store.issue(),
        )
        return redirect(url, code=307)

    @flask_app.route("/auth/googlechat/callback", methods=["GET"])
    def googlechat_callback():
        log = structlog.get_logger().bind(platform=Platform.GOOGLE_CHAT.value)
        if not settings.google_oauth_enabled:
            return _oauth_error("google_oauth_not_configured", 503)
        if request.args.get("error"):
            log.info("oauth_denied", error=request.args["error"])
            return _oauth_error(f"OAuth authorization denied: {request.args['error']}", 400)
        code = request.args.get("code")
        if not code:
            return _oauth_error("Missing authorization code", 400)
        if not state_store.consume(request.args.get("state")):
            log.warning("oauth_state_rejected")
            return _oauth_error("Invalid or expired authentication request", 400)

        try:
            with _google_http_client() as client:
                tokens = exchange_google_code(
                    client,
                    code=code,
                    client_id=settings.google_client_id,
                    client_secret=settings.google_client_secret,
                    redirect_uri=settings.google_redirect_uri,
                )
        except (OAuthExchangeError, httpx.HTTPError) as exc:
            log.error("oauth_exchange_failed", error=str(exc))
            return _oauth_error("Failed to exchange code for token", 502)

        project_id = settings.google_project_id
        team_name = f"Google Chat Project: {project_id}"
        organization = get_or_create_organization(team_name)
        installation = create_installation(
            platform=Platform.GOOGLE_CHAT,
            organization_id=organization.id,
            external_installation_id=project_id,
            access_token=tokens.access_token,
            bot_token=tokens.refresh_token,
            team_name=team_name,
        )
        log.info("app_installed", project_id=project_id, installation_id=installation.id)
        return jsonify(
            {"ok": True, "team_name": team_name, "message": "Successfully installed Kudos app for Google Chat!"}
        )


_LOGGING_CONFIGURED = False


def _load_version() -> str:
    version_file = Path(__file__).resolve().parent / "VERSION"
    if version_file.exists():
        return version_file.read_text(encoding="utf-8").strip()
    return "unknown"


def create_app() -> Flask:
    """Create and configure the Flask application."""

    global _LOGGING_CONFIGURED
    if not _LOGGING_CONFIGURED:
        configure_logging()
        _LOGGING_CONFIGURED = True

    settings = get_settings()
    bolt_app = _create_bolt_app(settings)
    handler = SlackRequestHandler(bolt_app)
    state_store = OAuthStateStore(ttl=timedelta(seconds=settings.oauth_state_ttl_seconds))

    flask_app = Flask(__name__)
    flask_app.config["APP_VERSION"] = _load_version()
    flask_app.extensions["oauth_state_store"] = state_store
    flask_app.logger.setLevel("INFO")

    _register_error_handlers(flask_app)
    _register_slash_handlers(bolt_app, settings)
    _register_oauth_routes(flask_app, settings, state_store)

    @flask_app.route("/slack/events", methods=["POST"])
    def slack_events():
        raw_body = request.get_data(as_text=True)
        if not slack_request_is_valid(settings.signing_secret, request.headers, raw_body):
            response = jsonify({"error": "invalid_signature"})
            response.status_code = 401
            return response

        return handler.handle(request)

    @flask_app.route("/googlechat/webhook", methods=["POST"])
    def googlechat_webhook():
        if not is_valid_google_chat_request(
            audience=settings.google_chat_audience,
            authorization=request.headers.get(GOOGLE_CHAT_AUTH_HEADER),
        ):
            structlog.get_logger().warning("googlechat_unauthorized", remote_addr=request.remote_addr)
            response = jsonify({"error": "unauthorized"})
            response.status_code = 401
            return response

        event = request.get_json(silent=True)
        if not isinstance(event, dict):
            response = jsonify({"error": "invalid_request"})
            response.status_code = 400
            return response

        trace_id = str(uuid4())
        bind_contextvars(trace_id=trace_id)
        try:
            return jsonify(_handle_google_chat_event(event, settings))
        finally:
            unbind_contextvars("trace_id")

    @flask_app.route("/healthz", methods=["GET"])
    def healthz():
        health: dict[str, object] = {"ok": True}
        health["version"] = flask_app.config.get("APP_VERSION", "unknown")
        health["platforms"] = {
            "slack_oauth": settings.slack_oauth_enabled,
            "google_oauth": settings.google_oauth_enabled,
        }

        try:
            get_settings()
            health["config"] = "valid"
        except RuntimeError as exc:
            health["config"] = "invalid"
            health["config_error"] = str(exc)
            health["ok"] = False

        try:
            with session_scope() as session:
                session.execute(text("SELECT 1"))
            health["db"] = "up"
        except Exception as exc:
            health["db"] = "down"
            health["db_error"] = str(exc)
            health["ok"] = False

        status = 200 if health["ok"] else 503
        return jsonify(health), status

    return flask_app


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    application = create_app()
    application.run(host="0.0.0.0", port=3000, debug=True)
