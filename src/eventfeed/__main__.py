"""
Main entrypoint: demo backend server and a command-line event feed client.

Usage:
    python -m eventfeed serve --port 8080      # demo backend under uvicorn
    python -m eventfeed login admin            # password is prompted
    python -m eventfeed whoami
    python -m eventfeed feed --pages 2         # newest two pages
    python -m eventfeed feed --offline         # cached events only
    python -m eventfeed download <event-id>
    python -m eventfeed downloads [--delete <file-id>]
    python -m eventfeed logout
"""
import argparse
import asyncio
import getpass
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _run_serve(port: int) -> None:
    import uvicorn

    from eventfeed.api.main import create_app

    uvicorn.run(create_app(), host="0.0.0.0", port=port)


def _print_event(event) -> None:
    attachment = "  [file]" if event.download_url else ""
    print(
        f"{event.timestamp:%Y-%m-%d %H:%M:%S}  {event.severity_level.value:<8}  "
        f"{event.device_name:<30}  {event.message}{attachment}  ({event.id})"
    )


async def _run_client(args: argparse.Namespace) -> int:
    from eventfeed.app import build_app

    app = build_app()
    try:
        if not getattr(args, "offline", False):
            await app.connectivity.probe(app.client)
        else:
            app.connectivity.set_connected(False)

        if args.command == "login":
            password = getpass.getpass(f"Password for {args.username}: ")
            user = await app.session.login(app.client, args.username, password)
            print(f"Logged in as {user.name} ({user.username}, {user.role})")
            return 0

        if args.command == "logout":
            app.session.logout()
            print("Logged out")
            return 0

        if not app.session.is_logged_in:
            logger.error("Not logged in. Run `python -m eventfeed login USERNAME` first.")
            return 1

        if args.command == "whoami":
            user = app.session.user
            if app.connectivity.is_connected:
                user = await app.session.refresh_profile(app.client)
            if user is None:
                logger.error("Session ended by the server. Log in again.")
                return 1
            print(f"{user.name} ({user.username}) <{user.email}> role={user.role} id={user.id}")
            return 0

        if args.command == "feed":
            return await _feed(app, args.pages, args.refresh)

        if args.command == "download":
            return await _download(app, args.event_id)

        if args.command == "downloads":
            return _downloads(app, args.delete)

        raise ValueError(f"Unknown command {args.command!r}")
    finally:
        await app.aclose()


async def _feed(app, pages: int, refresh: bool) -> int:
    await app.sync.load_initial()
    for _ in range(max(pages, 1) - 1):
        if not app.sync.state.has_more:
            break
        await app.sync.load_more()
    if refresh:
        await app.sync.refresh_new_events()
    await app.sync.check_for_new_events()

    state = app.sync.state
    if state.last_error:
        print(f"! {state.last_error} (showing cached events)")
    if app.sync.is_offline:
        print("! Offline: showing cached events")
    for event in state.loaded_events:
        _print_event(event)
    print(f"-- {len(state.loaded_events)} events, more: {state.has_more}")
    if state.new_events_count:
        print(f"-- {state.new_events_count} new events ({state.new_critical_count} critical)")
    return 0


async def _download(app, event_id: str) -> int:
    event = app.cache.get(event_id)
    if event is None and app.connectivity.is_connected:
        event = await app.client.get_event(event_id)
    if event is None:
        logger.error("Event %s is not cached and the server is unreachable", event_id)
        return 1
    if not event.download_url:
        logger.error("Event %s has no attachment", event_id)
        return 1

    def _show(file_id, fraction):
        if fraction is not None:
            print(f"\r{file_id}: {fraction:6.1%}", end="", flush=True)

    app.downloads.progress.subscribe(_show)
    record = await app.downloads.download(event.id, event.download_url, event.timestamp)
    print()
    print(f"Saved {record.remote_filename} → {app.downloads.local_path(record)}")
    return 0


def _downloads(app, delete_id) -> int:
    records = app.downloads.list_all()
    if delete_id:
        for record in records:
            if record.id == delete_id:
                app.downloads.delete(record)
                print(f"Deleted {delete_id}")
                return 0
        logger.error("No download with id %s", delete_id)
        return 1

    for record in records:
        size = f"{record.size_bytes} B" if record.size_bytes is not None else "?"
        print(f"{record.downloaded_at:%Y-%m-%d %H:%M}  {size:>10}  {record.id}")
    print(f"-- {len(records)} downloads")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="eventfeed", description="IoT event feed client")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the demo backend")
    serve.add_argument("--port", type=int, default=None)

    login = sub.add_parser("login", help="Log in and store the token")
    login.add_argument("username")

    sub.add_parser("logout", help="Clear stored credentials")
    sub.add_parser("whoami", help="Show the logged-in user")

    feed = sub.add_parser("feed", help="Load and print the event feed")
    feed.add_argument("--pages", type=int, default=1)
    feed.add_argument("--offline", action="store_true", help="Read from the local cache only")
    feed.add_argument("--refresh", action="store_true", help="Also pull newer events")

    download = sub.add_parser("download", help="Download an event's attachment")
    download.add_argument("event_id")

    downloads = sub.add_parser("downloads", help="List (or delete) downloaded files")
    downloads.add_argument("--delete", metavar="FILE_ID", default=None)

    return parser


def main(argv=None) -> int:
    from eventfeed.remote.errors import EventFeedError

    args = _build_parser().parse_args(argv)

    if args.command == "serve":
        from eventfeed.config import get_settings

        _run_serve(args.port or get_settings().backend_port)
        return 0

    try:
        return asyncio.run(_run_client(args))
    except EventFeedError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
