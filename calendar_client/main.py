"""
Calendar Client web app.
Login pages and OAuth2 callback for the Microsoft identity platform, plus GET /next-event for the polled calendar.
GET /, /home, /login, /callback, /success, /error, /next-event.
"""
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from calendar_client.config import Settings, load_settings
from calendar_client.errors import ConfigError
from calendar_client.graph_calendar import CalendarPoller
from calendar_client.login_flow import LoginFlow
from calendar_client.manager import CredentialManager

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings,
    manager: CredentialManager | None = None,
    login_flow: LoginFlow | None = None,
    poller: CalendarPoller | None = None,
) -> FastAPI:
    """
    Build the app around one CredentialManager. Collaborators are kept on app.state;
    startup (silent refresh or login prompt) and the calendar poller run in the lifespan.
    """
    manager = manager or CredentialManager(settings.oauth, settings.credentials)
    login_flow = login_flow or LoginFlow(manager)
    if poller is None:
        poller = CalendarPoller(manager.get_access_token, settings.calendar)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Resume or prompt for login, start polling; stop background loops on shutdown."""
        await run_in_threadpool(login_flow.startup)
        poller.start()
        try:
            yield
        finally:
            poller.stop(timeout=5.0)
            login_flow.shutdown()

    app = FastAPI(title="Calendar Client", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.manager = manager
    app.state.login_flow = login_flow
    app.state.poller = poller

    @app.get("/health")
    def health(request: Request):
        """Health check endpoint."""
        _, authenticated = request.app.state.manager.get_access_token()
        return {"status": "ok", "service": "calendar_client", "authenticated": authenticated}

    @app.get("/", response_class=HTMLResponse)
    @app.get("/home", response_class=HTMLResponse)
    def home():
        """Home page with a link to start login."""
        return HTMLResponse(
            """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Calendar Client</title></head>
<body>
  <h1>Calendar Client</h1>
  <p><a href="/login">Login</a></p>
</body>
</html>"""
        )

    @app.get("/login")
    def login(request: Request):
        """Redirect to the provider's authorize endpoint."""
        url = request.app.state.login_flow.authorization_url()
        return RedirectResponse(url=url, status_code=302)

    @app.get("/callback")
    def callback(request: Request, code: str | None = None, error: str | None = None):
        """
        Provider redirects here with ?code=... (or ?error=...). Exchange the code and start token renewal.
        """
        if error:
            logger.warning(
                "Provider returned error on callback: %s (%s)",
                error,
                request.query_params.get("error_description", ""),
            )
            return RedirectResponse(url="/error", status_code=400)
        if not request.app.state.login_flow.handle_callback(code):
            return RedirectResponse(url="/error", status_code=400)
        return RedirectResponse(url="/success", status_code=303)

    @app.get("/success", response_class=HTMLResponse)
    def success():
        return HTMLResponse(
            """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Login success</title></head>
<body>
  <h1>Login success</h1>
  <p>You can now close this tab.</p>
</body>
</html>"""
        )

    @app.get("/error", response_class=HTMLResponse)
    def error_page():
        return HTMLResponse(
            """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Login error</title></head>
<body>
  <h1>Login error</h1>
  <p>Error on login to Microsoft Graph API.</p>
  <p>Try again at <a href="/home">Home</a></p>
</body>
</html>"""
        )

    @app.get("/next-event", response_class=PlainTextResponse)
    def next_event(request: Request):
        """Soonest upcoming event as "Subject - HH:MM", or "No events"."""
        return PlainTextResponse(request.app.state.poller.status_text())

    return app


def main() -> None:
    try:
        settings = load_settings()
    except ConfigError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    import uvicorn
    uvicorn.run(
        create_app(settings),
        host=settings.oauth.host,
        port=settings.oauth.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
