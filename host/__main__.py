import argparse
import asyncio
import logging

from sutda.models import GameConfig
from .server import HostServer

logging.basicConfig(level=logging.INFO)


def main() -> None:
    parser = argparse.ArgumentParser(description="Sutda WebSocket host")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument("--base-bet", type=int, default=1_000)
    parser.add_argument("--starting-balance", type=int, default=10_000)
    parser.add_argument("--max-players", type=int, default=6)
    parser.add_argument("--mode", type=int, choices=(2, 3), default=2, help="Cards per hand")
    parser.add_argument("--move-time", type=int, default=30_000, help="Move time in milliseconds")
    parser.add_argument("--regame-delay", type=int, default=5_000, help="Regame countdown in milliseconds")
    parser.add_argument(
        "--sweep-interval",
        type=int,
        default=1_000,
        help="How often the timeout supervisor scans tables (milliseconds)",
    )
    args = parser.parse_args()

    try:
        config = GameConfig(
            base_bet=args.base_bet,
            starting_balance=args.starting_balance,
            max_players=args.max_players,
            mode=args.mode,
            move_time_ms=args.move_time,
            regame_delay_ms=args.regame_delay,
            sweep_interval_ms=args.sweep_interval,
        )
    except ValueError as exc:
        parser.error(str(exc))

    server = HostServer(config)
    asyncio.run(server.start(host=args.host, port=args.port))


if __name__ == "__main__":
    main()
