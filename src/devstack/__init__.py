"""devstack - single-command local stack startup with health verification.

Brings up a profile-scoped subset of the local development stack, waits for
every service to report healthy and tells the operator exactly what to do
when something does not come up.
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
