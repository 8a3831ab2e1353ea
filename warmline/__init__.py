"""Warmline Source Package.

Priority ranking, opportunity lifecycle and engagement throttling for
proactive member outreach.

Layers:
    - core: Configuration, logging, exceptions, clock, tasks
    - db: Database, models
    - engine: Business logic (scoring, ranking, presentation, throttle)
    - ai: Decision Oracle implementations
    - autonomous: Background operations (decision runs, worker sweeps)
    - utils: Cost tracking
"""

__version__ = "0.1.0"
