"""> CPO Analyzer: Decoder for grain orientation records and companion particle records.

Grain data files are whitespace delimited text files written by the geodynamic code,
one file per MPI rank and output snapshot. The first line is a header naming the
columns, see `cpoanalyzer.core.RecordFormat`. Each following line holds the grains with
the same index in each mineral slot of one particle, e.g.

    id mineral_0_EA_phi mineral_0_EA_theta mineral_0_EA_z mineral_1_EA_phi ...
    12 15.2 87.1 3.4 100.5 ...

All lines of one particle are stored contiguously, so that each particle corresponds to
one byte range of the (decompressed) file. When the record format is `compressed`, the
whole file is a single zlib stream and byte ranges refer to the decompressed data.

"""

import zlib
from dataclasses import dataclass, field

import numpy as np

from cpoanalyzer import core as _core
from cpoanalyzer import exceptions as _err
from cpoanalyzer import geometry as _geo
from cpoanalyzer import logger as _log

_CHUNK_SIZE = 1 << 16


@dataclass(frozen=True)
class SlotLayout:
    """Column indices of one mineral slot in a grain data file."""

    slot: int
    mineral: _core.Mineral
    orientation_columns: tuple
    fraction_column: int | None = None


@dataclass(frozen=True)
class RecordLayout:
    """Field order of a grain data file, parsed from its header line."""

    columns: tuple
    id_column: int
    slots: tuple

    @property
    def stride(self):
        """Number of fields in each record."""
        return len(self.columns)

    def slot_for(self, mineral):
        """Get the `SlotLayout` holding `mineral`, or None if it isn't stored."""
        for slot in self.slots:
            if slot.mineral == mineral:
                return slot
        return None


@dataclass(frozen=True)
class RecordLocation:
    """Location of the record block of one particle in one grain data file."""

    path: object
    """Path to the grain data file."""
    offset: int
    """Offset of the first record in bytes (of the decompressed stream)."""
    length: int
    """Length of the record block in bytes."""
    particle_id: int
    layout: RecordLayout
    particle_file: object = None
    """Path to the companion particle data file of the same rank, if known."""


@dataclass(frozen=True, eq=False)
class Grain:
    """Orientation state of one crystal at one time, for one particle.

    The `orientation` is an active rotation matrix from the crystal frame into the
    sample frame, see `cpoanalyzer.geometry`. The array is read-only.

    """

    particle_id: int
    mineral: _core.Mineral
    orientation: np.ndarray
    volume_fraction: float | None = None

    def __post_init__(self):
        self.orientation.setflags(write=False)


@dataclass(frozen=True)
class ParticleRecord:
    """Position and elasticity information of one particle.

    The norms are the squared norms of the decomposition of the elastic tensor into
    symmetry classes (Browaeys & Chevrot 2004). Each anisotropic symmetry class has
    three entries, one for each choice of the symmetry axis.

    """

    id: int
    position: tuple
    olivine_deformation_type: float | None = None
    full_norm_square: float | None = None
    isotropic_norm_square: float | None = None
    norms: dict = field(default_factory=dict)
    """Squared norms of the anisotropic parts, keys are in `SYMMETRY_CLASSES`."""

    def anisotropy_percentages(self):
        """Get percentages of the full norm for each symmetry class.

        Returns a dictionary with keys from `SYMMETRY_CLASSES` and an additional
        "anisotropic" key for the total (based on the first entry of each class).
        Returns an empty dictionary if the full norm is unavailable.

        >>> record = ParticleRecord(
        ...     1, (0.0, 0.0, 0.0), full_norm_square=4.0,
        ...     norms={"hexagonal": (1.0, 0.5, 0.0)},
        ... )
        >>> record.anisotropy_percentages()
        {'hexagonal': (25.0, 12.5, 0.0), 'anisotropic': 25.0}

        """
        if not self.full_norm_square:
            return {}
        percentages = {
            name: tuple(100 * v / self.full_norm_square for v in values)
            for name, values in self.norms.items()
        }
        percentages["anisotropic"] = (
            100 * sum(v[0] for v in self.norms.values()) / self.full_norm_square
        )
        return percentages

    def anisotropic_shares(self):
        """Get percentages of the total anisotropic norm for each symmetry class.

        The total is the sum of the first entries of all classes, as for the
        "anisotropic" percentage of `anisotropy_percentages`. Returns an empty
        dictionary if there is no anisotropy.

        >>> record = ParticleRecord(
        ...     1, (0.0, 0.0, 0.0), full_norm_square=4.0,
        ...     norms={"hexagonal": (1.0, 0.5, 0.0), "triclinic": (3.0, 3.0, 3.0)},
        ... )
        >>> record.anisotropic_shares()
        {'hexagonal': (25.0, 12.5, 0.0), 'triclinic': (75.0, 75.0, 75.0)}

        """
        total = sum(v[0] for v in self.norms.values())
        if not total:
            return {}
        return {
            name: tuple(100 * v / total for v in values)
            for name, values in self.norms.items()
        }


SYMMETRY_CLASSES = ("hexagonal", "tetragonal", "orthorhombic", "monoclinic", "triclinic")
"""Anisotropic symmetry classes of the elastic tensor decomposition."""

# Column prefixes in particle data files, note the historical spelling.
_NORM_COLUMN_PREFIXES = {
    "hexagonal": ("hexagonal",),
    "tetragonal": ("tetragonal",),
    "orthorhombic": ("orthohombic", "orthorhombic"),
    "monoclinic": ("monoclinic",),
    "triclinic": ("triclinic",),
}


def parse_header(line, fmt):
    """Parse the header line of a grain data file into a `RecordLayout`.

    Raises a `cpoanalyzer.exceptions.HeaderError` if the header lacks the `id` column
    or the orientation columns of a declared mineral slot, and a
    `cpoanalyzer.exceptions.UnknownMineralError` if the file declares more mineral slots
    than the record format `fmt` enumerates.

    >>> layout = parse_header("id mineral_0_EA_phi mineral_0_EA_theta mineral_0_EA_z",
    ...     _core.RecordFormat())
    >>> layout.stride, layout.slots[0].mineral.label
    (4, 'Olivine')

    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    columns = tuple(line.lstrip("#").split())
    if "id" not in columns:
        raise _err.HeaderError(f"header does not contain an 'id' column: '{line.strip()}'")
    if len(set(columns)) != len(columns):
        raise _err.HeaderError(f"header contains duplicate columns: '{line.strip()}'")

    slot_numbers = set()
    for name in columns:
        parts = name.split("_")
        if len(parts) > 2 and parts[0] == "mineral" and parts[1].isdigit():
            slot_numbers.add(int(parts[1]))

    slots = []
    for slot in sorted(slot_numbers):
        if slot >= len(fmt.minerals):
            raise _err.UnknownMineralError(
                f"data file declares mineral slot {slot}"
                + f" but the record format only enumerates {len(fmt.minerals)} minerals"
            )
        try:
            orientation_columns = tuple(
                columns.index(c) for c in fmt.orientation_columns(slot)
            )
        except ValueError:
            raise _err.HeaderError(
                f"missing {fmt.representation.value} orientation columns"
                + f" for mineral slot {slot}"
            ) from None
        fraction = fmt.fraction_column(slot)
        slots.append(
            SlotLayout(
                slot=slot,
                mineral=fmt.minerals[slot],
                orientation_columns=orientation_columns,
                fraction_column=columns.index(fraction) if fraction in columns else None,
            )
        )
    if not slots:
        raise _err.HeaderError(f"header does not declare any mineral slots: '{line.strip()}'")
    return RecordLayout(columns=columns, id_column=columns.index("id"), slots=tuple(slots))


def iter_chunks(path, compressed=False):
    """Yield the (decompressed) contents of a data file in chunks of bytes.

    Raises a `cpoanalyzer.exceptions.CompressionError` if a compressed file is corrupt
    or truncated.

    """
    with open(path, "rb") as file:
        if not compressed:
            while chunk := file.read(_CHUNK_SIZE):
                yield chunk
            return

        decompressor = zlib.decompressobj()
        while not decompressor.eof:
            chunk = file.read(_CHUNK_SIZE)
            if not chunk:
                raise _err.CompressionError(f"truncated compressed stream in '{path}'")
            try:
                data = decompressor.decompress(chunk)
            except zlib.error as e:
                raise _err.CompressionError(
                    f"corrupt compressed stream in '{path}': {e}"
                ) from None
            if data:
                yield data


def iter_lines(path, compressed=False):
    """Yield the lines of a data file as bytes, including line terminators."""
    remainder = b""
    for chunk in iter_chunks(path, compressed):
        lines = (remainder + chunk).split(b"\n")
        remainder = lines.pop()
        for line in lines:
            yield line + b"\n"
    if remainder:
        yield remainder


def read_range(path, offset, length, compressed=False):
    """Read `length` bytes starting at `offset` from a data file.

    For compressed files, the offsets refer to the decompressed data, which is
    decompressed on the fly and discarded up to `offset`. Raises a
    `cpoanalyzer.exceptions.FormatError` if the file holds fewer bytes than requested.

    """
    if offset < 0 or length < 0:
        raise ValueError(f"invalid byte range ({offset}, {length})")
    if not compressed:
        with open(path, "rb") as file:
            file.seek(offset)
            data = file.read(length)
    else:
        position = 0
        buffer = []
        end = offset + length
        for chunk in iter_chunks(path, compressed=True):
            chunk_end = position + len(chunk)
            if chunk_end > offset:
                buffer.append(chunk[max(offset - position, 0) : end - position])
            position = chunk_end
            if position >= end:
                break
        data = b"".join(buffer)
    if len(data) != length:
        raise _err.FormatError(
            f"record block ({offset}, {length}) exceeds available data in '{path}'"
            + f" ({len(data)} bytes readable)"
        )
    return data


def _orientation_from_fields(values, fmt):
    # Convert orientation fields to an active (crystal to sample) rotation matrix.
    match fmt.representation:
        case _core.Representation.euler:
            return _geo.euler_to_matrix(values, degrees=fmt.angle_unit == "degrees")[
                0
            ].transpose()
        case _core.Representation.matrix:
            return np.reshape(values, (3, 3)).transpose()
        case _core.Representation.quaternion:
            return _geo.quaternion_to_matrix(values)[0]
        case _:
            raise ValueError(f"unsupported representation: {fmt.representation}")


def decode(location, fmt, minerals=None):
    """Decode the grains stored in the record block at `location`.

    Returns a generator of `Grain` values in record order. For each record, one grain
    is produced per mineral slot (optionally only for the `minerals` listed). The
    generator reads the byte range when iteration starts, and can't be restarted, call
    `decode` again to decode the block again.

    Raises `cpoanalyzer.exceptions.FormatError` for records that are inconsistent with
    the header or belong to a different particle, and (if orientation validation is
    enabled in `fmt`) for orientations that are not orthonormal.
    Raises `cpoanalyzer.exceptions.CompressionError` for corrupt compressed data.

    """
    layout = location.layout
    slots = [s for s in layout.slots if minerals is None or s.mineral in minerals]
    data = read_range(location.path, location.offset, location.length, fmt.compressed)
    text = data.decode("utf-8", errors="replace")
    for lineno, line in enumerate(text.splitlines(), start=1):
        fields = line.split()
        if not fields:
            continue
        if len(fields) != layout.stride:
            raise _err.FormatError(
                f"record {lineno} of particle {location.particle_id} in"
                + f" '{location.path}' has {len(fields)} fields,"
                + f" but the header declares {layout.stride}"
            )
        try:
            particle_id = int(fields[layout.id_column])
            values = np.array(fields, dtype=np.float64)
        except ValueError:
            raise _err.FormatError(
                f"malformed record {lineno} of particle {location.particle_id}"
                + f" in '{location.path}'"
            ) from None
        if particle_id != location.particle_id:
            raise _err.FormatError(
                f"record {lineno} in block of particle {location.particle_id}"
                + f" belongs to particle {particle_id} ('{location.path}')"
            )
        if not np.all(np.isfinite(values)):
            raise _err.FormatError(
                f"non-finite value in record {lineno} of particle {particle_id}"
                + f" in '{location.path}'"
            )
        for slot in slots:
            orientation = _orientation_from_fields(
                values[list(slot.orientation_columns)], fmt
            )
            if fmt.validate_orientations and not _geo.is_orthonormal(
                orientation, atol=fmt.orthonormality_tolerance
            ):
                raise _err.FormatError(
                    f"orientation of {slot.mineral.label} grain in record {lineno}"
                    + f" of particle {particle_id} is not orthonormal"
                )
            fraction = None
            if slot.fraction_column is not None:
                fraction = float(values[slot.fraction_column])
                if fraction < 0:
                    raise _err.FormatError(
                        f"negative volume fraction in record {lineno}"
                        + f" of particle {particle_id}"
                    )
            yield Grain(
                particle_id=particle_id,
                mineral=slot.mineral,
                orientation=orientation,
                volume_fraction=fraction,
            )


def _optional_float(row, name):
    value = row.get(name)
    return None if value is None else float(value)


def read_particle_record(path, particle_id):
    """Read the companion particle record of `particle_id` from a particle data file.

    Particle data files are plain whitespace delimited text with a header line, and
    contain the columns `id`, `x`, `y` and optionally `z`,
    `olivine_deformation_type`, `full_norm_square`, `isotropic_norm_square`
    and `<symmetry>_norm_square_p<1|2|3>` for the anisotropic symmetry classes.

    Returns None if the particle is not present in the file. Raises `OSError` if the
    file can't be read and `cpoanalyzer.exceptions.FormatError` for malformed data.

    """
    with open(path) as file:
        header = file.readline().lstrip("#").split()
        if "id" not in header:
            raise _err.FormatError(f"particle data file '{path}' has no 'id' column")
        id_column = header.index("id")
        for line in file:
            fields = line.split()
            if not fields:
                continue
            if len(fields) != len(header):
                raise _err.FormatError(f"malformed line in particle data file '{path}'")
            try:
                if int(fields[id_column]) != particle_id:
                    continue
                row = dict(zip(header, fields, strict=True))
                position = tuple(
                    float(row.get(c, 0.0)) for c in ("x", "y", "z")
                )
                norms = {}
                for name, prefixes in _NORM_COLUMN_PREFIXES.items():
                    for prefix in prefixes:
                        columns = [f"{prefix}_norm_square_p{i}" for i in (1, 2, 3)]
                        if all(c in row for c in columns):
                            norms[name] = tuple(float(row[c]) for c in columns)
                            break
                return ParticleRecord(
                    id=particle_id,
                    position=position,
                    olivine_deformation_type=_optional_float(
                        row, "olivine_deformation_type"
                    ),
                    full_norm_square=_optional_float(row, "full_norm_square"),
                    isotropic_norm_square=_optional_float(row, "isotropic_norm_square"),
                    norms=norms,
                )
            except ValueError:
                raise _err.FormatError(
                    f"malformed line in particle data file '{path}'"
                ) from None
    _log.debug("particle %s not found in '%s'", particle_id, path)
    return None
