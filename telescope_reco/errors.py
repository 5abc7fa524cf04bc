from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator


class TruthFitError(RuntimeError):
    """Base class for every fatal error raised by the truth-fitting pipeline."""


class DataIntegrityError(TruthFitError):
    r"""
    Truth data for an event is unusable.

    Raised when the truth population is empty, or when a measurement refers
    to a hit, particle or surface that the event (or geometry) does not know.
    """


class DegenerateTrajectoryError(TruthFitError):
    """A zero-momentum truth particle was met where q/p scaling is required."""


class DuplicateMeasurementError(TruthFitError):
    """A measurement is attributed to the same truth candidate more than once."""


class EmptyTrackError(TruthFitError):
    """A fitted track contains no track states."""


class ExternalCollaboratorError(TruthFitError):
    r"""
    Failure surfaced by the geometry, field or fitter collaborators.

    The original exception is chained as ``__cause__`` and its message is
    carried unchanged, so callers see exactly what the collaborator reported.
    """

    def __init__(self, collaborator: str, cause: BaseException) -> None:
        super().__init__(f"{collaborator} failed: {type(cause).__name__}: {cause}")
        self.collaborator = collaborator
        self.cause = cause


@contextmanager
def collaborator_errors(collaborator: str) -> Iterator[None]:
    r"""
    Re-raise anything but a :class:`TruthFitError` as :class:`ExternalCollaboratorError`.

    .. code-block:: python

        with collaborator_errors("fitter"):
            tracks = fitter.fit(geometry, field, candidates)
    """
    try:
        yield
    except TruthFitError:
        raise
    except Exception as e:
        raise ExternalCollaboratorError(collaborator, e) from e


__all__ = [
    "collaborator_errors",
    "TruthFitError",
    "DataIntegrityError",
    "DegenerateTrajectoryError",
    "DuplicateMeasurementError",
    "EmptyTrackError",
    "ExternalCollaboratorError",
]
