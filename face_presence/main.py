from __future__ import annotations

import argparse
import asyncio
import sys
import threading

from .config import Settings, get_settings
from .exceptions import IdentityMissing, PresenceError
from .identity import IdentityStore
from .logger import setup_logger
from .session import CameraSession
from .types import Identity, Status, StatusSnapshot

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NO_IDENTITY = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Face presence capture and attendance verification")
    subparsers = parser.add_subparsers(dest="command", required=True)

    login = subparsers.add_parser("login", help="Store the identity used for attendance")
    login.add_argument("--roll", required=True, help="Roll number")
    login.add_argument("--name", required=True, help="Full name")
    login.add_argument("--email", required=True, help="Email address")

    subparsers.add_parser("logout", help="Forget the stored identity")

    run = subparsers.add_parser("run", help="Open the camera and mark attendance")
    run.add_argument("--policy", choices=("auto", "manual"), default=None, help="Capture trigger policy")
    run.add_argument("--camera", type=int, default=None, help="Webcam index override")
    run.add_argument("--interval", type=float, default=None, help="Detection interval in seconds (0.5-1.0)")
    run.add_argument("--no-upload", action="store_true", help="Do not upload a still image")

    return parser


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    update = {}
    if args.policy is not None:
        update["trigger_policy"] = args.policy
    if args.camera is not None:
        update["camera_index"] = args.camera
    if args.interval is not None:
        update["poll_interval_seconds"] = args.interval
    if args.no_upload:
        update["upload_images"] = False
    if not update:
        return settings
    # Re-validate so out-of-range overrides are rejected like env values.
    return Settings.model_validate({**settings.model_dump(), **update})


def _start_enter_listener(loop: asyncio.AbstractEventLoop, session: CameraSession) -> None:
    def _listen() -> None:
        for _line in sys.stdin:
            loop.call_soon_threadsafe(_trigger)

    def _trigger() -> None:
        if session.alive and not session.trigger_capture():
            print("No face ready for capture.")

    threading.Thread(target=_listen, name="enter-trigger", daemon=True).start()


async def run_session(session: CameraSession) -> StatusSnapshot:
    def _print(snapshot: StatusSnapshot) -> None:
        print(f"[{snapshot.display_state}] {snapshot.message}")

    session.subscribe(_print)
    try:
        await session.start()
        if session.policy == "manual" and session.alive:
            print("Press Enter to capture when your face is detected.")
            _start_enter_listener(asyncio.get_running_loop(), session)
        return await session.run_until_complete()
    finally:
        session.close()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = setup_logger("main")
    settings = get_settings()
    identities = IdentityStore(settings.identity_path)

    try:
        if args.command == "login":
            identities.save(Identity(roll=args.roll, name=args.name, email=args.email))
            print(f"Identity stored for {args.roll} ({args.name}).")
            return EXIT_OK

        if args.command == "logout":
            identities.clear()
            print("Stored identity removed.")
            return EXIT_OK

        if args.command == "run":
            session = CameraSession.from_settings(_apply_overrides(settings, args))
            final = asyncio.run(run_session(session))
            if final.status is Status.COMPLETED:
                return EXIT_OK
            return EXIT_ERROR

    except IdentityMissing as exc:
        logger.error("Cannot start: %s", exc)
        print(f"Error: {exc} Run 'face-presence login' first.")
        return EXIT_NO_IDENTITY
    except (PresenceError, ValueError) as exc:
        logger.error("Application error: %s", exc)
        print(f"Error: {exc}")
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("\nStopped by user.")
        return EXIT_ERROR

    parser.print_help()
    return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
