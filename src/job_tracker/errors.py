"""
Error taxonomy for the tracker.

Classification and roster-write failures are recovered per message by the
reconciler; roster-read and upstream-fetch failures end the run.
"""


class TrackerError(Exception):
    """Base class for tracker errors."""


class ClassificationFailure(TrackerError):
    """The classifier could not produce a usable verdict for one message."""


class RosterWriteFailure(TrackerError):
    """The roster store rejected a create or update."""


class RosterReadFailure(TrackerError):
    """The roster snapshot could not be loaded."""


class UpstreamFetchFailure(TrackerError):
    """Candidate messages could not be fetched from the mail source."""
