"""Core infrastructure shared by the devstack startup pipeline."""
