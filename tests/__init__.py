"""Warmline Test Suite.

Test organization mirrors warmline/ structure:
    tests/
    ├── conftest.py          # Shared fixtures
    ├── test_core/           # Config, errors, logging, clock, tasks
    ├── test_db/             # Database tests
    ├── test_engine/         # Scoring, ranking, presentation, conflicts, throttle
    ├── test_ai/             # Decision Oracle tests
    ├── test_autonomous/     # Orchestrator, worker and loop tests
    └── test_utils/          # Cost tracking tests

Markers:
    - @pytest.mark.slow: Tests taking > 1 second
    - @pytest.mark.database: Tests requiring database
"""
