"""
Central configuration for the compute scheduler.

Backward-compatible flat-constant interface.  All values that overlap
with ``config_structured.py`` are derived from the structured config
singleton so there is a single source of truth.  Constants that exist
only in this module (paths, logging) are defined here.

Config Status Legend
====================
Each constant is annotated with one of the following statuses:

  ACTIVE      — Imported and used by running code.  Changing the value
                affects live behaviour.
  PLACEHOLDER — Defined for future use.  Safe to change without affecting
                current behaviour.

Search for ``# STATUS:`` to locate all annotations.
"""
from pathlib import Path
from typing import Dict, List

try:
    from .config_structured import DEFAULT_TIERS_FILE, get_config as _get_config
except ImportError:
    from config_structured import DEFAULT_TIERS_FILE, get_config as _get_config

_cfg = _get_config()

# ── Paths ──────────────────────────────────────────────────────────────
ROOT_DIR = Path(__file__).parent                  # STATUS: ACTIVE — base path for all relative references
TIERS_FILE = DEFAULT_TIERS_FILE                   # STATUS: ACTIVE — config_structured.load_tiers default
RESULTS_DIR = ROOT_DIR / "results"                # STATUS: ACTIVE — jobs/config.py default for local backend result files
JOB_DB_PATH = ROOT_DIR / "scheduler_jobs.db"      # STATUS: ACTIVE — jobs/config.py default store path

# ── Scheduling ─────────────────────────────────────────────────────────
ADMISSION_INTERVAL_SECONDS = _cfg.scheduler.admission_interval_seconds    # STATUS: ACTIVE — jobs/config.py; admission loop period
ADMISSION_ATTEMPTS_PER_TICK = _cfg.scheduler.admission_attempts_per_tick  # STATUS: ACTIVE — jobs/config.py; admissions per tick
POLL_INTERVAL_SECONDS = _cfg.scheduler.poll_interval_seconds              # STATUS: ACTIVE — jobs/config.py; status poll period
DEFAULT_MAX_RETRIES = _cfg.scheduler.default_max_retries                  # STATUS: ACTIVE — jobs/config.py; max_retries for new jobs
STARTING_PROGRESS = _cfg.scheduler.starting_progress                      # STATUS: ACTIVE — jobs/scheduler.py; placeholder for backend "starting"
IN_PROGRESS_PROGRESS = _cfg.scheduler.in_progress_progress                # STATUS: ACTIVE — jobs/scheduler.py; placeholder for backend "in_progress"

# ── Local backends ─────────────────────────────────────────────────────
LOCAL_RESULT_FILENAME = "result.json"             # STATUS: ACTIVE — jobs/backends/local.py

# ── Logging ────────────────────────────────────────────────────────────
LOG_LEVEL = "INFO"                                # STATUS: ACTIVE — run_scheduler.py; "DEBUG", "INFO", "WARNING", "ERROR"
LOG_FORMAT = "structured"                         # STATUS: ACTIVE — run_scheduler.py; "structured" or "plain"


def validate_config() -> List[dict]:
    """Check config for common misconfigurations.

    Returns a list of dicts: [{"level": "WARNING"|"ERROR", "message": str}].
    Called on scheduler startup.
    """
    issues = []

    # 1. No tiers at all → nothing can ever be admitted
    if not _cfg.tiers:
        issues.append({
            "level": "ERROR",
            "message": f"No tiers configured in {TIERS_FILE}. Every submission will be rejected.",
        })

    # 2. Priority collisions make the informational ordering ambiguous
    seen: Dict[int, str] = {}
    for name, tier in _cfg.tiers.items():
        other = seen.get(tier.priority)
        if other is not None:
            issues.append({
                "level": "WARNING",
                "message": (
                    f"Tiers {other!r} and {name!r} share priority {tier.priority}. "
                    "Priority is informational only, but job listings cannot tell them apart."
                ),
            })
        seen[tier.priority] = name

    # 3. Poll interval shorter than the admission interval floods backends
    if POLL_INTERVAL_SECONDS < ADMISSION_INTERVAL_SECONDS:
        issues.append({
            "level": "WARNING",
            "message": (
                f"POLL_INTERVAL_SECONDS ({POLL_INTERVAL_SECONDS}) is shorter than "
                f"ADMISSION_INTERVAL_SECONDS ({ADMISSION_INTERVAL_SECONDS}); "
                "backend status APIs will be polled more often than jobs are admitted."
            ),
        })

    # 4. Placeholders must keep running progress below 100
    if not STARTING_PROGRESS <= IN_PROGRESS_PROGRESS < 100:
        issues.append({
            "level": "ERROR",
            "message": (
                f"STARTING_PROGRESS ({STARTING_PROGRESS}) must not exceed "
                f"IN_PROGRESS_PROGRESS ({IN_PROGRESS_PROGRESS}), which must stay below 100."
            ),
        })

    return issues
