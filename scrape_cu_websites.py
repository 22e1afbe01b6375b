"""
CU Website Scraper
==================
Batch scraper for credit union websites from NCUA. Reads a list of charter
numbers, looks each one up with get_cu_website, and appends the results to
a CSV file.

Usage:
    python scrape_cu_websites.py
    python scrape_cu_websites.py --rate-limit 5 --commit-interval 50
    python scrape_cu_websites.py --dry-run
    python scrape_cu_websites.py --start-from 60000

Features:
    Resumable:     Can be interrupted and restarted without data loss. The
                   set of processed charters is rebuilt from the output CSV
                   on every start.
    Rate-limited:  Sleeps between requests to be nice to NCUA servers.
    Auto-commits:  Periodically commits the data files and pushes them with
                   git (retries with exponential backoff, never fatal).
    Error logging: Failed charters go to the error log and the batch keeps
                   going. They are retried on the next run.

Files (under --data-dir, default data/processed):
    charter-numbers           input, one charter number per line
    scraped-websites.csv      charter_number,website,scraped_timestamp
    scraping-errors.log       <timestamp>,charter_<n>,<message>
    scraping-progress.txt     last charter successfully processed
"""

import argparse
import logging
import os
import subprocess
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import BaseModel, field_validator
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
)

from get_cu_website import get_cu_website

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_DATA_DIR = os.path.join("data", "processed")
CHARTER_FILENAME = "charter-numbers"
OUTPUT_FILENAME = "scraped-websites.csv"
ERROR_LOG_FILENAME = "scraping-errors.log"
PROGRESS_FILENAME = "scraping-progress.txt"

CSV_HEADER = "charter_number,website,scraped_timestamp"

RATE_LIMIT_SECONDS = 3.0  # seconds between live requests
COMMIT_INTERVAL = 100     # records between git checkpoints
LOG_PROGRESS = 10         # records between progress lines

PUSH_MAX_ATTEMPTS = 4
PUSH_INITIAL_DELAY = 2    # seconds, doubled after every failed push


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class ScrapeConfig(BaseModel):
    """Validated run configuration built from the CLI flags."""

    rate_limit: float = RATE_LIMIT_SECONDS
    commit_interval: int = COMMIT_INTERVAL
    dry_run: bool = False
    start_from: int | None = None
    data_dir: str = DEFAULT_DATA_DIR
    charter_file: str | None = None
    remote: str = "origin"
    branch: str | None = None
    commit: bool = True

    @field_validator("rate_limit")
    @classmethod
    def validate_rate_limit(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Rate limit cannot be negative")
        return v

    @field_validator("commit_interval")
    @classmethod
    def validate_commit_interval(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Commit interval must be at least 1")
        return v

    @field_validator("start_from")
    @classmethod
    def validate_start_from(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("--start-from must be a positive charter number")
        return v


def parse_args(argv=None) -> ScrapeConfig:
    """Parse CLI arguments and return a validated ScrapeConfig."""
    parser = argparse.ArgumentParser(
        description="Scrape credit union websites from NCUA for a list of charter numbers.",
        epilog=(
            "Examples:\n"
            "  python scrape_cu_websites.py\n"
            "  python scrape_cu_websites.py --rate-limit 5 --commit-interval 50\n"
            "  python scrape_cu_websites.py --dry-run\n"
            "  python scrape_cu_websites.py --start-from 60000\n"
            "\n"
            "Resuming is automatic: charters already in the output CSV are skipped.\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--rate-limit",
        type=float,
        default=RATE_LIMIT_SECONDS,
        metavar="SECONDS",
        help=f"Seconds to sleep between requests (default: {RATE_LIMIT_SECONDS:g})",
    )
    parser.add_argument(
        "--commit-interval",
        type=int,
        default=COMMIT_INTERVAL,
        metavar="NUM",
        help=f"Number of records between git commits (default: {COMMIT_INTERVAL})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without scraping or writing anything",
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Resume from last checkpoint (default behavior, kept for compatibility)",
    )
    parser.add_argument(
        "--start-from",
        type=int,
        default=None,
        metavar="NUMBER",
        help="Skip charter numbers below NUMBER",
    )
    parser.add_argument(
        "--data-dir",
        default=DEFAULT_DATA_DIR,
        help=f"Directory holding the input and output files (default: {DEFAULT_DATA_DIR})",
    )
    parser.add_argument(
        "--charter-file",
        help=f"Charter number list (default: <data-dir>/{CHARTER_FILENAME})",
    )
    parser.add_argument(
        "--remote",
        default="origin",
        help="Git remote to push checkpoints to (default: origin)",
    )
    parser.add_argument(
        "--branch",
        help="Branch to push checkpoints to (default: current branch)",
    )
    parser.add_argument(
        "--no-commit",
        action="store_true",
        help="Do not commit or push checkpoints",
    )

    args = parser.parse_args(argv)

    try:
        return ScrapeConfig(
            rate_limit=args.rate_limit,
            commit_interval=args.commit_interval,
            dry_run=args.dry_run,
            start_from=args.start_from,
            data_dir=args.data_dir,
            charter_file=args.charter_file,
            remote=args.remote,
            branch=args.branch,
            commit=not args.no_commit,
        )
    except Exception as e:
        parser.error(str(e))


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


@dataclass
class DataPaths:
    data_dir: str
    charter_file: str
    output_file: str
    error_log: str
    progress_file: str

    @classmethod
    def from_dir(cls, data_dir: str, charter_file: str | None = None) -> "DataPaths":
        return cls(
            data_dir=data_dir,
            charter_file=charter_file or os.path.join(data_dir, CHARTER_FILENAME),
            output_file=os.path.join(data_dir, OUTPUT_FILENAME),
            error_log=os.path.join(data_dir, ERROR_LOG_FILENAME),
            progress_file=os.path.join(data_dir, PROGRESS_FILENAME),
        )

    def artifacts(self) -> list[str]:
        """Files staged on every checkpoint."""
        return [self.output_file, self.error_log, self.progress_file]


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def load_charter_numbers(path: str) -> list[int]:
    """Read charter numbers, one per line, in file order."""
    charters = []
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            if not (line.isascii() and line.isdigit()) or int(line) < 1:
                logger.warning(f"{path}:{lineno}: ignoring invalid charter number {line!r}")
                continue
            charters.append(int(line))
    return charters


def load_processed(path: str) -> set[int]:
    """Collect the charter numbers already present in the output CSV.

    This is the only source of truth for resuming. The file is scanned once;
    the header and any malformed rows are ignored.
    """
    processed: set[int] = set()
    if not os.path.exists(path):
        return processed
    with open(path, encoding="utf-8") as f:
        for line in f:
            first = line.split(",", 1)[0].strip()
            if first.isascii() and first.isdigit():
                processed.add(int(first))
    return processed


def init_output_files(paths: DataPaths) -> None:
    """Create the data directory, CSV header and error log if missing."""
    os.makedirs(paths.data_dir, exist_ok=True)

    if not os.path.exists(paths.output_file):
        with open(paths.output_file, "w", encoding="utf-8") as f:
            f.write(CSV_HEADER + "\n")
        print(f"Initialized output file: {paths.output_file}")

    if not os.path.exists(paths.error_log):
        open(paths.error_log, "a", encoding="utf-8").close()
        print(f"Initialized error log: {paths.error_log}")


def escape_website(website: str) -> str:
    """Percent-escape commas so a row always has exactly three fields."""
    return website.replace(",", "%2C").replace("\r", "").replace("\n", "")


def sanitize_error(message: str) -> str:
    return message.replace(",", ";").replace("\r", " ").replace("\n", " ").strip()


def append_result(paths: DataPaths, charter: int, website: str, timestamp: str) -> None:
    with open(paths.output_file, "a", encoding="utf-8") as f:
        f.write(f"{charter},{escape_website(website)},{timestamp}\n")


def log_error(paths: DataPaths, charter: int, message: str, timestamp: str) -> None:
    with open(paths.error_log, "a", encoding="utf-8") as f:
        f.write(f"{timestamp},charter_{charter},{sanitize_error(message)}\n")


def write_progress(paths: DataPaths, charter: int) -> None:
    with open(paths.progress_file, "w", encoding="utf-8") as f:
        f.write(f"{charter}\n")


# ---------------------------------------------------------------------------
# Checkpoint (git commit + push)
# ---------------------------------------------------------------------------


class GitError(RuntimeError):
    """A git command could not run or exited non-zero."""


def push_delay(attempt: int) -> float:
    """Seconds to wait after failed push number `attempt` (2, 4, 8, ...)."""
    return PUSH_INITIAL_DELAY * 2 ** (attempt - 1)


def _push_wait(retry_state) -> float:
    return push_delay(retry_state.attempt_number)


PUSH_RETRY_CONFIG = {
    "stop": stop_after_attempt(PUSH_MAX_ATTEMPTS),
    "wait": _push_wait,
    "retry": retry_if_exception_type(GitError),
    "reraise": True,
    "before_sleep": before_sleep_log(logger, logging.WARNING),
}


class GitCheckpoint:
    """Commits the data files and pushes them to a remote.

    Local data is never at risk here: every failure is downgraded to a
    warning and the batch carries on.
    """

    def __init__(
        self,
        repo_dir: str,
        paths: list[str],
        remote: str = "origin",
        branch: str | None = None,
        sleep=time.sleep,
    ):
        self.repo_dir = repo_dir
        self.paths = paths
        self.remote = remote
        self.branch = branch
        self.sleep = sleep

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        try:
            proc = subprocess.run(
                ["git", *args], cwd=self.repo_dir, capture_output=True, text=True
            )
        except OSError as e:
            raise GitError(f"could not run git: {e}") from e
        if check and proc.returncode != 0:
            raise GitError(
                (proc.stderr or proc.stdout or f"git {args[0]} failed").strip()
            )
        return proc

    def _push(self) -> None:
        self._git("push", "-u", self.remote, self.branch or "HEAD")

    def commit_and_push(self, message: str) -> bool:
        """Stage, commit and push. Returns True only if the push succeeded."""
        print("\nCommitting progress...")

        existing = [p for p in self.paths if os.path.exists(p)]
        try:
            if existing:
                # Files outside the repo or ignored by git are not fatal
                self._git("add", "--", *existing, check=False)
            diff = self._git("diff", "--staged", "--quiet", check=False)
        except GitError as e:
            logger.warning(f"Skipping checkpoint: {e}")
            return False

        if diff.returncode == 0:
            print("No changes to commit\n")
            return False
        if diff.returncode != 1:
            logger.warning(f"git diff failed: {(diff.stderr or '').strip()}")
            return False

        try:
            self._git("commit", "-m", message)
        except GitError as e:
            logger.warning(f"git commit failed: {e}")
            return False

        print(f"Pushing to {self.remote}...")
        retryer = Retrying(sleep=self.sleep, **PUSH_RETRY_CONFIG)
        try:
            retryer(self._push)
        except GitError as e:
            logger.warning(
                f"Failed to push after {PUSH_MAX_ATTEMPTS} attempts: {e}. "
                "You may need to push manually later"
            )
            return False

        print("Successfully pushed\n")
        return True


# ---------------------------------------------------------------------------
# Batch loop
# ---------------------------------------------------------------------------


@dataclass
class RunStats:
    total: int = 0
    already_processed: int = 0
    processed: int = 0
    success: int = 0
    error: int = 0
    skipped: int = 0
    records_since_commit: int = 0

    @property
    def in_database(self) -> int:
        return self.already_processed + self.success


def plan_run(
    charters: list[int],
    processed: set[int],
    start_from: int | None = None,
) -> tuple[list[int], int]:
    """Split the input into charters to fetch (in order) and a skip count."""
    pending = []
    skipped = 0
    for charter in charters:
        if charter in processed:
            skipped += 1
            continue
        if start_from is not None and charter < start_from:
            skipped += 1
            continue
        pending.append(charter)
    return pending, skipped


def _progress_pct(done: int, total: int) -> int:
    return done * 100 // total if total else 100


def run_batch(
    charters: list[int],
    config: ScrapeConfig,
    paths: DataPaths,
    fetch=get_cu_website,
    checkpoint: GitCheckpoint | None = None,
    sleep=time.sleep,
    processed: set[int] | None = None,
) -> RunStats:
    """Fetch every pending charter and append the results.

    `processed` is the set built by load_processed. When the caller has not
    scanned the output file yet it is scanned here, once. A failing charter
    is logged and skipped; it is retried on the next run because it never
    reaches the output file.
    """
    if processed is None:
        processed = load_processed(paths.output_file)
    pending, skipped = plan_run(charters, processed, config.start_from)

    stats = RunStats(
        total=len(charters),
        already_processed=len(processed),
        skipped=skipped,
    )
    live = not config.dry_run

    for index, charter in enumerate(pending):
        stats.processed += 1

        if stats.processed % LOG_PROGRESS == 0 or stats.processed == 1:
            remaining = len(pending) - stats.processed
            print(
                f"Progress: {stats.processed} processed, {stats.success} success, "
                f"{stats.error} errors, {remaining} remaining"
            )

        if config.dry_run:
            print(f"[DRY RUN] Would scrape charter {charter}")
            stats.success += 1
        else:
            print(f"Scraping charter {charter}... ", end="", flush=True)
            try:
                website = fetch(charter)
            except Exception as e:
                print("✗ Failed")
                logger.error(f"Charter {charter} failed: {e}")
                log_error(paths, charter, str(e) or type(e).__name__, utc_timestamp())
                stats.error += 1
            else:
                append_result(paths, charter, website, utc_timestamp())
                write_progress(paths, charter)
                print(f"✓ {website}")
                stats.success += 1

        stats.records_since_commit += 1
        if live and checkpoint and stats.records_since_commit >= config.commit_interval:
            done = stats.already_processed + stats.processed
            checkpoint.commit_and_push(
                f"Progress: scraped {done}/{stats.total} CU websites "
                f"({_progress_pct(done, stats.total)}%)"
            )
            stats.records_since_commit = 0

        if live and index < len(pending) - 1:
            sleep(config.rate_limit)

    if live and checkpoint and stats.records_since_commit > 0:
        checkpoint.commit_and_push(
            f"Final commit: scraped {stats.in_database}/{stats.total} CU websites"
        )
        stats.records_since_commit = 0

    return stats


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def validate_setup(paths: DataPaths, fetch) -> list[str]:
    """Return the problems that make a run impossible (empty list if none)."""
    problems = []
    if not os.path.isfile(paths.charter_file):
        problems.append(f"Charter numbers file not found: {paths.charter_file}")
    if not callable(fetch):
        problems.append(f"Scraper is not callable: {fetch!r}")
    return problems


def print_summary(stats: RunStats, paths: DataPaths, dry_run: bool) -> None:
    print(f"\n{'='*34}")
    print("Scraping Complete!" if not dry_run else "Dry Run Complete!")
    print(f"{'='*34}")
    print(f"Total processed this run: {stats.processed}")
    print(f"Successful: {stats.success}")
    print(f"Errors: {stats.error}")
    print(f"Skipped (already done): {stats.skipped}")
    print(f"Total in database: {stats.in_database}")
    print(f"{'='*34}")

    if not dry_run:
        print(f"\nResults saved to: {paths.output_file}")
        if stats.error:
            print(f"Errors logged to: {paths.error_log}")


def main(argv=None) -> None:
    config = parse_args(argv)
    paths = DataPaths.from_dir(config.data_dir, config.charter_file)
    fetch = get_cu_website

    problems = validate_setup(paths, fetch)
    if problems:
        for problem in problems:
            print(f"Error: {problem}", file=sys.stderr)
        sys.exit(1)

    if not config.dry_run:
        init_output_files(paths)

    charters = load_charter_numbers(paths.charter_file)
    processed = load_processed(paths.output_file)
    already_processed = len(processed)

    print(f"{'='*34}")
    print("CU Website Scraper")
    print(f"{'='*34}")
    print(f"Total charter numbers: {len(charters)}")
    print(f"Already processed: {already_processed}")
    print(f"Remaining: {max(len(charters) - already_processed, 0)}")
    print(f"Rate limit: {config.rate_limit:g}s between requests")
    if config.commit:
        print(f"Auto-commit every: {config.commit_interval} records")
    else:
        print("Auto-commit: disabled")
    print(f"Dry run: {str(config.dry_run).lower()}")
    print(f"{'='*34}\n")

    if config.dry_run:
        print("DRY RUN MODE - No actual scraping will occur\n")

    checkpoint = None
    if config.commit and not config.dry_run:
        checkpoint = GitCheckpoint(
            repo_dir=os.getcwd(),
            paths=paths.artifacts(),
            remote=config.remote,
            branch=config.branch,
        )

    stats = run_batch(
        charters, config, paths, fetch=fetch, checkpoint=checkpoint, processed=processed
    )
    print_summary(stats, paths, config.dry_run)


if __name__ == "__main__":
    main()
