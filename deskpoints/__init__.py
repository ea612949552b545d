"""
deskpoints — Gamification Scoring Engine for a Helpdesk
========================================================
Turns helpdesk lifecycle events (tickets opened, closed, reopened and
deleted, notes, assignments, shift starts, breaks, ...) into point entries
in an append-oriented ledger, and derives daily badges from per-user
behavioural counters.

Package layout::

    deskpoints/
    ├── config.py          # YAML → typed Python config
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Ledger, badges, stats, notifications, collaborator tables
    ├── engine/
    │   ├── events.py      # LifecycleEvent envelope, ScoringResult, errors
    │   ├── rules.py       # Point rule table (pure)
    │   ├── similarity.py  # Levenshtein subject similarity
    │   ├── business_time.py  # Fixed-offset business day arithmetic
    │   ├── achievements.py   # Badge registry + pure criteria
    │   └── locks.py       # Keyed in-process locks
    ├── services/
    │   ├── scoring_service.py    # The event handler
    │   ├── ledger_store.py       # Ledger reads / writes
    │   ├── compensation.py       # Reversal + supersession planning
    │   ├── distribution.py       # Closer / creator split
    │   ├── milestone_service.py  # Daily 10 / 15 ticket milestones
    │   ├── badge_service.py      # Badge evaluator + client hero job
    │   ├── broadcast_service.py  # Banner + notifications
    │   ├── directory.py          # Reads from helpdesk-owned tables
    │   └── log_buffer.py         # In-memory log tail
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # Intake, ledger reads, jobs
"""

__version__ = "0.1.0"
