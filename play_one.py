import argparse
import asyncio
import logging

import chess

from src.oracle_chess.session import SessionConfig, SessionController

HELP = (
    "Input: a square to click (e2), a from-to pair (e2e4), a promotion piece (q/r/b/n) when asked,\n"
    "or one of: new [white|black], engine, flip, depth N, oracle on|off, pgn, help, quit"
)


def render(session: SessionController) -> str:
    orientation = chess.WHITE if session.cfg.orientation == "white" else chess.BLACK
    lines = [session.board.unicode(orientation=orientation, empty_square="·")]
    status = f"Turn: {session.turn}" + (" (check)" if session.in_check else "")
    status += f" | Eval: {session.evaluation_display} | Depth: {session.cfg.search_depth}"
    status += f" | Oracle: {'on' if session.cfg.oracle_enabled else 'off'}"
    lines.append(status)
    if session.selection.selected:
        lines.append(f"Selected {session.selection.selected} -> {' '.join(sorted(session.legal_targets)) or '(no moves)'}")
    if session.last_move:
        lines.append(f"Last move: {session.last_move.san}")
    if session.last_error:
        lines.append(f"Oracle: {session.last_error}")
    if session.is_game_over:
        lines.append(f"Game over: {session.result} ({session.termination_reason})")
    return "\n".join(lines)


def handle(session: SessionController, raw: str, log: logging.Logger) -> bool:
    """Apply one line of input. Returns False when the user asked to quit."""
    parts = raw.strip().lower().split()
    if not parts:
        return True
    cmd = parts[0]
    log.debug("Input %r", raw)
    if cmd in ("quit", "exit"):
        return False
    if cmd == "help":
        print(HELP)
    elif cmd == "new":
        session.new_game(parts[1] if len(parts) > 1 else session.human_side)
    elif cmd == "engine":
        if not session.request_oracle_move_now():
            print("Oracle unavailable right now.")
    elif cmd == "flip":
        session.toggle_orientation()
    elif cmd == "depth" and len(parts) > 1:
        print(f"Depth set to {session.set_search_depth(parts[1])}")
    elif cmd == "oracle" and len(parts) > 1:
        session.set_oracle_enabled(parts[1] == "on")
    elif cmd == "pgn":
        print(session.pgn())
    elif session.pending_promotion is not None:
        if session.choose_promotion(cmd) is None:
            print("Choose a promotion piece: q, r, b or n.")
    elif len(cmd) == 4:
        session.select_or_move(cmd[:2])
        session.select_or_move(cmd[2:])
    else:
        session.select_or_move(cmd)
    if session.pending_promotion is not None:
        print("Promote to: q, r, b or n?")
    return True


async def main(args) -> None:
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    log = logging.getLogger("play_one")
    cfg = SessionConfig(oracle_enabled=not args.no_oracle)
    if args.depth is not None:
        cfg.search_depth = cfg.clamp_depth(args.depth)
    session = SessionController(cfg=cfg)
    session.new_game(args.side, args.fen)
    log.info("Starting game: side=%s depth=%d oracle=%s", args.side, cfg.search_depth, cfg.oracle_enabled)
    print(HELP)
    while True:
        if session.busy:
            print("Thinking…")
            await session.wait_for_oracle()
        print(render(session))
        raw = await asyncio.to_thread(input, "> ")
        try:
            if not handle(session, raw, log):
                break
        except ValueError as exc:
            print(exc)
    if args.pgn_out:
        with open(args.pgn_out, "w", encoding="utf-8") as f:
            f.write(session.pgn())
        log.info("Wrote PGN to %s", args.pgn_out)


if __name__ == "__main__":
    ap = argparse.ArgumentParser()
    ap.add_argument("--side", choices=["white", "black"], default="white", help="Which side you play")
    ap.add_argument("--depth", type=int, default=None, help="Oracle search depth (clamped to the supported range)")
    ap.add_argument("--no-oracle", action="store_true", help="Start with the oracle off (you move both sides)")
    ap.add_argument("--fen", default=None, help="Optional starting position")
    ap.add_argument("--pgn-out", default=None, help="Optional path to write PGN at end")
    ap.add_argument("--log-level", default="WARNING", help="Python logging level (e.g., INFO, DEBUG)")
    asyncio.run(main(ap.parse_args()))
