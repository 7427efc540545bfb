"""
Stand-in for a GTP engine, launched as a subprocess by the engine tests.

Understands "<id> <command> [args]" lines and answers "=<id> ..." / "?<id> ...":
- boardsize, clear_board, play: acknowledged (plays are recorded; "showplays" lists them)
- kata-search_analyze: one line of canned "info move ..." records
- echo X: answers X; split X: answers X in two separate writes
- defer X / flush: defer holds its answer until the next flush, which answers first
- hold: never answered; crash: exits with status 3; quit: acknowledged, exits

Flags: --fail-handshake (boardsize fails), --no-analysis, --ignore-quit.
"""
import argparse
import sys
import time

ANALYSIS = (
    "info move Q16 visits 120 winrate 0.6 scoreLead 3.5 order 0 pv Q16 D4 "
    "info move D4 visits 40 winrate 0.4 scoreLead -1.0 order 1 pv D4"
)


def write(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--fail-handshake", action="store_true")
    ap.add_argument("--no-analysis", action="store_true")
    ap.add_argument("--ignore-quit", action="store_true")
    args, _ = ap.parse_known_args()

    plays = []
    deferred = []
    for raw in sys.stdin:
        tokens = raw.split()
        if not tokens:
            continue
        ident = ""
        if tokens[0].isdigit():
            ident = tokens.pop(0)
        if not tokens:
            continue
        cmd, rest = tokens[0], tokens[1:]

        if cmd == "quit":
            if args.ignore_quit:
                continue
            write(f"={ident}\n\n")
            return 0
        if cmd == "crash":
            return 3
        if cmd == "hold":
            continue
        if cmd == "boardsize" and args.fail_handshake:
            write(f"?{ident} unacceptable size\n\n")
        elif cmd in ("boardsize", "clear_board"):
            if cmd == "clear_board":
                plays = []
            write(f"={ident}\n\n")
        elif cmd == "play":
            plays.append(" ".join(rest))
            write(f"={ident}\n\n")
        elif cmd == "showplays":
            write(f"={ident} {','.join(plays)}\n\n")
        elif cmd == "kata-search_analyze" and not args.no_analysis:
            write(f"={ident} {ANALYSIS}\n\n")
        elif cmd == "echo":
            write(f"={ident} {' '.join(rest)}\n\n")
        elif cmd == "split":
            write(f"={ident} ")
            time.sleep(0.05)
            write(f"{' '.join(rest)}\n\n")
        elif cmd == "defer":
            deferred.append(f"={ident} {' '.join(rest)}\n\n")
        elif cmd == "flush":
            write(f"={ident} flushed\n\n")
            for line in deferred:
                write(line)
            deferred = []
        else:
            write(f"?{ident} unknown command\n\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
