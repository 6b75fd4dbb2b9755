"""Module __init__: foundational pieces for sniwatch."""
#
# PURPOSE:
# Marks the "base" directory as a package holding the components every other
# package depends on.
#
# WHAT'S IN THIS MODULE:
# - config.py: environment-driven settings and logging setup
# - exceptions.py: structured error codes and exception classes
#
