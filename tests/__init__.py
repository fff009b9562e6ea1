"""devstack test suite.

- startup/: profile resolution, preflight, launch, health verification,
  seeding, reporting and the full pipeline
- core/: exceptions and logging configuration
- fakes/: test doubles for the runtime, the database and the readiness endpoint
"""

from __future__ import annotations
