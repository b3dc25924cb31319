"""Exception hierarchy for record source failures."""


class ProctrackError(Exception):
    pass


class SourceError(ProctrackError):
    """The record source could not be read to the end."""


class SourceAccessDenied(SourceError):
    pass


class SourceReadFailure(SourceError):
    pass
