"""Lorechat dev launcher. Starts the backend in watch mode."""

import argparse
import os
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = os.getenv("BACKEND_PORT", "13013")


def main():
    parser = argparse.ArgumentParser(description="Lorechat dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Settings directory (default: ./data)")
    parser.add_argument("--provider", default=None,
                        help="Set the active API provider before starting")
    args = parser.parse_args()

    if args.provider:
        from lorechat import config
        from lorechat.providers import provider_names
        if args.provider not in provider_names():
            parser.error(f"unknown provider {args.provider!r}; choose from {', '.join(provider_names())}")
        config.init_config(args.data_dir or ROOT / "data")
        config.update_config({"api_provider": args.provider})

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
    try:
        proc.wait()
    except KeyboardInterrupt:
        print("\nShutting down...")
        proc.terminate()
        proc.wait()


if __name__ == "__main__":
    main()
