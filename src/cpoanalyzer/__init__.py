r"""
#### Pole figures of crystallographic preferred orientation in geodynamic models

---

.. warning::
    **This software is currently in early development (alpha)
    and therefore subject to breaking changes without notice.**

## Introduction

Geodynamic models that track the texture of mantle rocks write the lattice
orientations of thousands of grains for each tracer particle, at every output
snapshot, split over one file per MPI rank. Crystallographic preferred orientation
(CPO) of such a polycrystal is best inspected using pole figures, which show the
directions of one crystallographic axis of all grains of one mineral phase.
The CPO Analyzer locates the grains of selected particles at selected times in these
files and turns them into pole figures. **These are the main features:**

- **Experiment index** mapping (time, particle) to the byte ranges of grain records
  in per-rank data files, optionally compressed with zlib

- **Versioned record format** descriptor for Euler angle, rotation matrix
  and quaternion orientations of up to one grain per mineral slot and record

- **Lambert equal-area projection** of axial crystallographic directions

- **Gaussian point densities** weighted by grain volume fractions
  (Robin & Jowett 1986)

- **Parallel processing** of pole figure selections, using
  [Ray](https://www.ray.io/) if it is installed

- Pole figure **grids** with per-mineral colour scales and elasticity headers

## Usage

The analyzer is configured with a TOML file, see `cpoanalyzer.io` for an example.
To render the configured pole figures, execute:

    cpoanalyzer config.toml

Use `cpoanalyzer --help` for the available options. Pole figure datasets can also be
exported to NumPy NPZ archives (`--export`) and listed with `cpoanalyzer-inspect`.

## Data layout

See `cpoanalyzer.index` for the expected layout of experiment directories and
`cpoanalyzer.records` for the layout of the grain data files.

"""

# Set up the top-level cpoanalyzer namespace for convenient usage.
# To keep it clean, we don't want every single symbol here, especially not those from
# `utils` or `visualisation` modules, which should be explicitly imported instead.
import cpoanalyzer.axes  # Defines the 'cpoanalyzer.polefigure' Axes subclass.
from cpoanalyzer.core import (
    CrystalAxis,
    DefaultParams,
    Mineral,
    RecordFormat,
    Representation,
)
from cpoanalyzer.geometry import (
    euler_to_matrix,
    lambert_equal_area,
    poles,
    quaternion_to_matrix,
)
from cpoanalyzer.index import ExperimentIndex, Snapshot
from cpoanalyzer.polefigures import (
    PoleFigureDataset,
    PoleFigureSelection,
    aggregate,
    expand_requests,
)
from cpoanalyzer.stats import point_density
