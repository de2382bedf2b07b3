import argparse
import os
import subprocess
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SCRAPE_MODULE = "runner.ingest.scrape"
FREQUENCIES = ("hourly", "3h", "6h", "9h", "12h", "daily", "weekly")
TERM_GRACE_SEC = 60

# seconds; a slower cadence gets more sources per run
DEFAULT_TIMEOUTS = {
    "hourly": 50 * 60,
    "3h": 2 * 60 * 60,
    "6h": 3 * 60 * 60,
    "9h": 3 * 60 * 60,
    "12h": 4 * 60 * 60,
    "daily": 6 * 60 * 60,
    "weekly": 8 * 60 * 60,
}


def run_job(frequency: str | None, default_timeout: int = 3600) -> int:
    name = f"scrape:{frequency or 'all'}"
    print(f"Running {name}...")
    env = os.environ.copy()
    existing = env.get("PYTHONPATH", "")
    env["PYTHONPATH"] = f"{REPO_ROOT}{os.pathsep}{existing}" if existing else str(REPO_ROOT)
    timeout_env = f"SCRAPE_TIMEOUT_{(frequency or 'all').upper()}"
    timeout_sec = int(env.get(timeout_env, str(DEFAULT_TIMEOUTS.get(frequency, default_timeout))))
    cmd = [sys.executable, "-m", SCRAPE_MODULE]
    if frequency:
        cmd += ["--frequency", frequency]
    proc = subprocess.Popen(cmd, cwd=REPO_ROOT, env=env)
    try:
        returncode = proc.wait(timeout=timeout_sec)
    except subprocess.TimeoutExpired:
        # SIGTERM lets the scraper finish its page and release the browser
        proc.terminate()
        try:
            proc.wait(timeout=TERM_GRACE_SEC)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
        print(f"Job timed out: {name} after {timeout_sec}s")
        return 1
    if returncode != 0:
        print(f"Job failed: {name} ({returncode})")
        return returncode
    print(f"Job ok: {name}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run one scrape cadence with a hard timeout.")
    parser.add_argument("frequency", nargs="?", choices=FREQUENCIES, default=None)
    args = parser.parse_args(argv)
    return run_job(args.frequency)


if __name__ == "__main__":
    raise SystemExit(main())
