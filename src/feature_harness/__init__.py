"""Feature harness - drives a coding agent through a feature backlog.

One session implements one feature; the durable feature_list.json and the
append-only progress.log carry state from one session to the next.
"""

__version__ = "0.1.0"
