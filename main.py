"""Novel Studio: dev launcher. Starts the generation service in watch mode.

    python main.py                 run the backend with auto-reload
    python main.py --demo          write the demo project first
    python main.py --play          play the current project in the terminal
"""

import argparse
import logging
import os
import signal
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = os.getenv("BACKEND_PORT", "3001")


def play(project) -> None:
    """Minimal terminal playback: Enter advances, a number picks a branch."""
    from novel_studio.errors import NovelStudioError
    from novel_studio.playback import PlaybackState, Player

    player = Player(project)
    while True:
        if player.state is PlaybackState.PRESENTING:
            dialog = player.current_dialog
            speaker = player.speaker
            prefix = f"{speaker.name}: " if speaker else ""
            input(f"[{player.current_chapter.title}] {prefix}{dialog.text}")
            try:
                player.advance()
            except NovelStudioError as e:
                print(f"! {e}")
                return
        elif player.state is PlaybackState.AWAITING_CHOICE:
            for i, choice in enumerate(player.choices, start=1):
                print(f"  {i}. {choice.text}")
            picked = input("> ").strip()
            if not picked.isdigit() or not 1 <= int(picked) <= len(player.choices):
                continue
            try:
                player.choose_branch(player.choices[int(picked) - 1].target_chapter_id)
            except NovelStudioError as e:
                print(f"! {e}")
                return
        else:
            print("The End.")
            return


def main():
    parser = argparse.ArgumentParser(description="Novel Studio dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--demo", action="store_true",
                        help="Overwrite the current project with the demo project")
    parser.add_argument("--play", action="store_true",
                        help="Play the current project in the terminal instead of serving")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.demo or args.data_dir or args.play:
        from backend import storage
        data_dir = args.data_dir or Path("data")
        storage.init_storage(data_dir)
        if args.demo:
            from backend.demo import create_demo_data
            create_demo_data()
        if args.play:
            project = storage.get_project()
            if project is None:
                sys.exit("No project saved yet; try --demo")
            play(project)
            return

    # Build env for the subprocess so the backend picks up the same data dir
    env = os.environ.copy()
    if args.data_dir:
        env["DATA_DIR"] = str(args.data_dir.resolve())

    print(f"Starting backend on http://localhost:{BACKEND_PORT} ...")
    proc = subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "backend.app:app", "--reload",
         "--host", HOST, "--port", BACKEND_PORT],
        cwd=ROOT, env=env,
    )

    def shutdown(*_):
        print("\nShutting down...")
        proc.terminate()
        proc.wait()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)
    proc.wait()


if __name__ == "__main__":
    main()
