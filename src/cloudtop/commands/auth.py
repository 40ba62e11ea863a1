"""Auth commands -- log in with the device flow, log out, show status.

Provides the ``cloudtop auth`` sub-command group.  ``login`` runs the
OAuth2 device authorization grant without the dashboard: it prints the
verification URL, optionally opens a browser, and polls until the user
approves the request.

Typical workflow::

    cloudtop auth login     # authorize this machine
    cloudtop auth status    # check the stored credential
    cloudtop auth logout    # forget it
"""

from __future__ import annotations

import webbrowser
from datetime import datetime, timezone

import typer

from cloudtop.output import debug, format_response, info, success, suggest


auth_app = typer.Typer(no_args_is_help=True)


@auth_app.command("login")
def auth_login(
    ctx: typer.Context,
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Do not try to open the verification URL."
    ),
) -> None:
    """Authorize this CLI through a browser (OAuth2 device flow).

    Requests a device code, shows the verification URL and user code,
    then waits for approval.  The resulting credential is stored in the
    OS keyring, or under ``~/.cloudtop`` when no keyring is available.

    Raises:
        AuthorizationExpiredError: The code expired before approval.
        AuthorizationDeniedError: The request was declined.
        DeviceFlowTransportError: The authorization server was unreachable.

    Example::

        cloudtop auth login
        cloudtop auth login --no-browser
    """
    from cloudtop.auth import TokenStore, wait_for_authorization
    from cloudtop.services import build_device_flow, effective_config, run

    config = effective_config(ctx.obj)

    async def _login() -> None:
        async with build_device_flow(config) as flow:
            authorization = await flow.request_device_code()
            info(
                "Please visit the following link to authorize this CLI:\n\n"
                f"  {authorization.browser_url}\n\n"
                f"and confirm the code {authorization.user_code}.\n"
            )
            if not no_browser:
                try:
                    webbrowser.open(authorization.browser_url)
                except webbrowser.Error as exc:
                    debug(f"Could not open a browser: {exc}")
            info("Waiting authorization...")
            credential = await wait_for_authorization(
                flow,
                authorization,
                on_poll=lambda interval: debug(f"Polling again in {interval:.0f}s"),
            )
            TokenStore().save(credential)

    run(_login())
    success("Success! You are now authenticated.")
    suggest("List your projects: cloudtop get projects")


@auth_app.command("logout")
def auth_logout() -> None:
    """Delete the stored credential.

    Example::

        cloudtop auth logout
    """
    from cloudtop.auth import TokenStore

    if TokenStore().delete():
        success("Logged out.")
    else:
        info("Not logged in.")


@auth_app.command("status")
def auth_status() -> None:
    """Show whether a credential is stored and when it expires.

    Example::

        cloudtop auth status
        cloudtop --json auth status
    """
    from cloudtop.auth import TokenStore

    credential = TokenStore().load_or_none()
    if credential is None:
        format_response({"logged_in": False})
        suggest("Log in: cloudtop auth login")
        return

    now = datetime.now(timezone.utc)
    format_response(
        {
            "logged_in": True,
            "expires_at": credential.expires_at.isoformat(),
            "expired": credential.is_expired(now),
            "refreshable": bool(credential.refresh_token),
        }
    )
