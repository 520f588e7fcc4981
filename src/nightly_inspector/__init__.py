"""Nightly Inspector: correlate nightly build images with their source commits.

Finds the first nightly containing a change and reports what changed
between two nightlies, using the registry and a local git clone.
"""

__version__ = "0.1.0"
