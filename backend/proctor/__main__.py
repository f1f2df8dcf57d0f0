"""명령줄 진입점.

Usage:
    python -m proctor relay --port 8000
    python -m proctor coordinate --identity teacher-01 --room exam-1 --allowed UNI001 UNI002 --duration 60
    python -m proctor coordinate --identity teacher-01 --room exam-1 --roster --duration 60
    python -m proctor participate --identity UNI001 --registration-id 20231234 --source sample.mp4
"""
import argparse
import asyncio
import logging
import sys

from .errors import ProctoringError
from .logging_config import setup_logging

logger = logging.getLogger("proctor")


async def run_coordinator(args) -> int:
    from .roster import RosterClient
    from .session import CoordinatorSession

    allowed = list(args.allowed or [])
    if args.roster:
        async with RosterClient() as client:
            allowed += await client.fetch_roster(args.identity)

    session = CoordinatorSession(args.identity, auto_record=True)
    try:
        await session.start(args.endpoint)
        await session.create_room(args.room, allowed)

        logger.info(f"참가자 연결 대기 {args.wait}초")
        await asyncio.sleep(args.wait)

        started = await session.start_recording()
        logger.info(f"녹화 시작: {started}")
        await asyncio.sleep(args.duration)

        archive = await session.end_session(save=True)
        print(f"{archive.name}: {len(archive.members)} file(s) {archive.members}")
    finally:
        await session.close()
    return 0


async def run_participant(args) -> int:
    from .session import ParticipantSession, media_player_source

    session = ParticipantSession(args.identity, registration_id=args.registration_id)
    try:
        await session.start(args.endpoint)
        logger.info("룸 공지 대기 중...")
        await session.joined.wait()

        options = {"video_size": args.video_size} if args.video_size else None
        await session.start_stream(media_player_source(args.source, format=args.format, options=options))

        # 종료될 때까지 스트리밍 유지
        await asyncio.Event().wait()
    finally:
        await session.close()
    return 0


def run_relay(args) -> int:
    import uvicorn

    uvicorn.run("app:app", host=args.host, port=args.port, log_level="info")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="proctor", description="WebRTC exam proctoring")
    subparsers = parser.add_subparsers(dest="command", required=True)

    relay = subparsers.add_parser("relay", help="Run the signaling relay server")
    relay.add_argument("--host", default="0.0.0.0")
    relay.add_argument("--port", type=int, default=8000)

    coordinate = subparsers.add_parser("coordinate", help="Open a room and record participants")
    coordinate.add_argument("--identity", required=True)
    coordinate.add_argument("--room", required=True)
    coordinate.add_argument("--allowed", nargs="*", help="Allowed participant identities")
    coordinate.add_argument("--roster", action="store_true", help="Fetch allowed identities from ROSTER_API_URL")
    coordinate.add_argument("--endpoint", help="Relay WebSocket URL (default: SIGNALING_URL)")
    coordinate.add_argument("--wait", type=float, default=10.0, help="Seconds to wait before recording")
    coordinate.add_argument("--duration", type=float, default=60.0, help="Recording length in seconds")

    participate = subparsers.add_parser("participate", help="Join a room and stream a screen")
    participate.add_argument("--identity", required=True)
    participate.add_argument("--registration-id")
    participate.add_argument("--source", required=True, help="MediaPlayer input (file or device)")
    participate.add_argument("--format", help="MediaPlayer input format (e.g. x11grab, avfoundation)")
    participate.add_argument("--video-size", help="Capture size, e.g. 1280x720")
    participate.add_argument("--endpoint", help="Relay WebSocket URL (default: SIGNALING_URL)")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "relay":
        return run_relay(args)

    setup_logging(args.command)
    runner = run_coordinator if args.command == "coordinate" else run_participant
    try:
        return asyncio.run(runner(args))
    except ProctoringError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
