"""> CPO Analyzer: Core enums, record format descriptor and default parameters.

The record format descriptor (`RecordFormat`) is threaded explicitly through the index
and decoder calls, so that experiments with different output formats can be processed
in the same run.

"""

from dataclasses import asdict, dataclass
from enum import Enum, IntEnum, unique

import numpy as np

# NOTE: Do NOT import any cpoanalyzer submodules here to avoid cyclical imports.


@unique
class Mineral(IntEnum):
    """Supported mineral phases.

    Forsterite and fayalite are grouped into “olivine”.

    """

    olivine = 0
    """(Mg,Fe)₂SiO₄"""
    enstatite = 1
    """MgSiO₃"""

    @property
    def label(self):
        """Name used in configuration files and figure descriptions, e.g. 'Olivine'."""
        return self.name.capitalize()

    @property
    def abbreviation(self):
        """Three-letter abbreviation used in output file names.

        >>> Mineral.enstatite.abbreviation
        'ens'

        """
        return self.name[:3]


@unique
class CrystalAxis(IntEnum):
    """Crystallographic axes that can be shown in pole figures.

    Each axis is a fixed unit vector in the crystal frame, see `CrystalAxis.vector`.

    >>> CrystalAxis.b.vector.tolist()
    [0.0, 1.0, 0.0]
    >>> CrystalAxis.c.label
    'CAxis'

    """

    a = 0
    """[100]"""
    b = 1
    """[010]"""
    c = 2
    """[001]"""

    @property
    def vector(self):
        """Unit vector of the axis in the crystal frame."""
        return np.eye(3)[self.value]

    @property
    def label(self):
        """Name used in configuration files, e.g. 'AAxis'."""
        return f"{self.name.upper()}Axis"


@unique
class Representation(Enum):
    """Orientation representations that may be stored in CPO data files.

    - `euler` — extrinsic ZXZ (Bunge) Euler angles, columns
      `mineral_<i>_EA_phi`, `mineral_<i>_EA_theta`, `mineral_<i>_EA_z`
    - `matrix` — direction cosine matrix in row-major order, columns
      `mineral_<i>_RM_0` to `mineral_<i>_RM_8`
    - `quaternion` — scalar-last (x, y, z, w) rotation quaternion, columns
      `mineral_<i>_Q_0` to `mineral_<i>_Q_3`

    """

    euler = "euler"
    matrix = "matrix"
    quaternion = "quaternion"


SUPPORTED_FORMAT_VERSIONS = (1,)
"""Versions of the `RecordFormat` descriptor understood by this package."""


@dataclass(frozen=True)
class RecordFormat:
    """Versioned description of the on-disk layout of CPO grain data files.

    Grain data files are whitespace delimited text files with a header line that
    names the columns. Each line holds one grain per mineral slot of one particle,
    starting with the particle `id`. The header determines the field order and the
    record stride, this descriptor determines how the orientation columns are
    interpreted and which mineral each slot `mineral_<i>` holds.

    >>> fmt = RecordFormat()
    >>> fmt.orientation_columns(1)
    ('mineral_1_EA_phi', 'mineral_1_EA_theta', 'mineral_1_EA_z')
    >>> fmt.fraction_column(0)
    'mineral_0_volume_fraction'

    """

    version: int = 1
    representation: Representation = Representation.euler
    angle_unit: str = "degrees"
    """Unit of Euler angles, either 'degrees' or 'radians'."""
    minerals: tuple = (Mineral.olivine, Mineral.enstatite)
    """Mineral held by each `mineral_<i>` slot, in slot order."""
    compressed: bool = False
    """Whether each data file is wrapped in a zlib stream."""
    validate_orientations: bool = False
    orthonormality_tolerance: float = 1e-6

    def __post_init__(self):
        if self.version not in SUPPORTED_FORMAT_VERSIONS:
            raise ValueError(f"unsupported record format version: {self.version}")
        if self.angle_unit not in ("degrees", "radians"):
            raise ValueError(f"unsupported angle unit: {self.angle_unit}")

    def orientation_columns(self, slot):
        """Get names of the orientation columns for mineral slot `slot`."""
        match self.representation:
            case Representation.euler:
                return tuple(f"mineral_{slot}_EA_{s}" for s in ("phi", "theta", "z"))
            case Representation.matrix:
                return tuple(f"mineral_{slot}_RM_{i}" for i in range(9))
            case Representation.quaternion:
                return tuple(f"mineral_{slot}_Q_{i}" for i in range(4))
            case _:
                raise ValueError(f"unsupported representation: {self.representation}")

    def fraction_column(self, slot):
        """Get name of the (optional) volume fraction column for mineral slot `slot`."""
        return f"mineral_{slot}_volume_fraction"


@dataclass(frozen=True)
class DefaultParams:
    """Default values of the `[pole_figures]` configuration section."""

    time_data_file: str = "statistics"
    """File relating output snapshot numbers to model time, relative to the experiment."""
    time_data_marker: str = "particle_LPO"
    """Lines of the time data file that contain this string mark an output snapshot."""
    particle_data_file_prefix: str = "particle_CPO/particles"
    """Prefix of the per-rank particle files holding position and elasticity data.

    The analyzer appends `-<timestep:05d>.<rank:04d>.dat` to find each file.

    """
    grain_data_file_prefix: str = "particle_CPO/weighted_CPO"
    """Prefix of the per-rank grain files holding the grain orientations."""
    figure_output_dir: str = "CPO_figures/"
    figure_output_prefix: str = "weighted_LPO"
    color_scale: str = "Batlow"
    """One of 'Batlow', 'Vik', 'Imola', 'Hawaii', 'Roma' or 'Simple'."""
    elastisity_header: bool = True
    """Whether to attach elasticity information to datasets and figure headers."""
    small_figure: bool = False
    no_description_text: bool = False
    sphere_points: int = 301
    """Number of counters along each side of the Lambert counting grid."""
    ref_axes: str = "xz"
    """Horizontal and vertical axes of the pole figure plane, the third axis is 'up'.

    The default shows the X-Z plane of the model, viewed along the Y axis.

    """
    times: tuple = ()
    particle_ids: tuple = ()
    axes: tuple = ()
    minerals: tuple = ()

    def as_dict(self):
        """Return mutable copy of the parameters as a dictionary."""
        return asdict(self)


COLOR_SCALES = ("Batlow", "Vik", "Imola", "Hawaii", "Roma", "Simple")
"""Names of the colour scales supported by the pole figure renderer."""
