__all__ = [
    "Particle", "Measurement", "TruthPoint", "BoundParameters", "SeedState",
    "TruthCandidate", "TrackState", "FitResult", "FittedTrack", "ResidualRecord",
    "TruthFitError", "DataIntegrityError", "DegenerateTrajectoryError",
    "DuplicateMeasurementError", "EmptyTrackError", "ExternalCollaboratorError",
    "EventReader", "EventRecords", "SurfaceGeometry", "MagneticField", "Fitter",
    "CsvEventReader", "write_event_csv",
    "PlaneSurface", "TelescopeGeometry",
    "ConstantField", "GridField",
    "FieldGridConfig", "sample_field_grid", "write_field_grid", "read_field_grid",
    "EventTruthIndex", "TruthSelectionPolicy",
    "SeedConfig", "SeedGenerator",
    "TruthCandidateBuilder",
    "FitterConfig", "StraightLineKalmanFitter",
    "ResidualExtractor", "TrackOutputSinks",
    "PipelineConfig", "load_pipeline_config",
    "RunSummary", "run_truth_fitting",
    "SimulationConfig", "TelescopeSimulator",
    "residual_summary",
]

# Event data model & errors
from .edm import (
    Particle,
    Measurement,
    TruthPoint,
    BoundParameters,
    SeedState,
    TruthCandidate,
    TrackState,
    FitResult,
    FittedTrack,
    ResidualRecord,
)
from .errors import (
    TruthFitError,
    DataIntegrityError,
    DegenerateTrajectoryError,
    DuplicateMeasurementError,
    EmptyTrackError,
    ExternalCollaboratorError,
)

# Collaborator interfaces and reference implementations
from .interfaces import EventReader, EventRecords, SurfaceGeometry, MagneticField, Fitter
from .event_io import CsvEventReader, write_event_csv
from .geometry import PlaneSurface, TelescopeGeometry
from .field import ConstantField, GridField
from .field_grid import FieldGridConfig, sample_field_grid, write_field_grid, read_field_grid
from .fitting import FitterConfig, StraightLineKalmanFitter
from .simulation import SimulationConfig, TelescopeSimulator

# Truth-fitting core
from .truth_index import EventTruthIndex, TruthSelectionPolicy
from .seeding import SeedConfig, SeedGenerator
from .candidates import TruthCandidateBuilder
from .residuals import ResidualExtractor, TrackOutputSinks
from .config import PipelineConfig, load_pipeline_config
from .pipeline import RunSummary, run_truth_fitting

# Metrics (plotting is imported lazily, after the headless guard)
from .metrics import residual_summary
