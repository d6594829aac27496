"""> CPO Analyzer: Custom Matplotlib Axes subclasses."""

import matplotlib as mpl
import matplotlib.axes as mplax
import numpy as np
from matplotlib.projections import register_projection

from cpoanalyzer import stats as _stats


class PoleFigureAxes(mplax.Axes):
    """Axes class designed for crystallographic pole figures.

    Thin matplotlib Axes wrapper for crystallographic pole figures.

    .. note::
        Projections are not performed automatically using default methods like
        `scatter` or `plot`. To actually plot the pole figures, use `polefigure`.

    """

    name = "cpoanalyzer.polefigure"

    def _prep_polefig_axis(self, ref_axes="xy"):
        """Set various options of a matplotlib `Axes` to prepare for a pole figure.

        Use a two-letter string for `ref_axes`.
        These letters will be used for the horizontal and vertical labels, respectively.

        """
        self.set_axis_off()
        self.set_aspect("equal")
        _circle_points = np.linspace(0, np.pi * 2, 100)
        self.plot(
            np.sqrt(2) * np.cos(_circle_points),
            np.sqrt(2) * np.sin(_circle_points),
            linewidth=0.5,
            color=mpl.rcParams["axes.edgecolor"],
        )
        self.axhline(0, color=mpl.rcParams["grid.color"], alpha=0.5)
        self.text(
            1.05, 0.5, ref_axes[0], verticalalignment="center", transform=self.transAxes
        )
        self.axvline(0, color=mpl.rcParams["grid.color"], alpha=0.5)
        self.text(
            0.5,
            1.05,
            ref_axes[1],
            horizontalalignment="center",
            transform=self.transAxes,
        )

    def polefigure(
        self,
        dataset,
        density=False,
        sphere_points=301,
        weighted=True,
        vmax=None,
        **kwargs,
    ):
        """Plot pole figure of a `cpoanalyzer.polefigures.PoleFigureDataset`.

        Args:
        - `dataset` (PoleFigureDataset) — projected poles of one selection
        - `density` (bool, optional) — plot Gaussian point density instead of the
          scattered poles, False by default
        - `sphere_points` (int, optional) — resolution of the counting grid, see
          `cpoanalyzer.stats.point_density`
        - `weighted` (bool, optional) — weight densities by grain volume fractions
        - `vmax` (float, optional) — upper limit of the colour scale for densities

        Any additional keyword arguments are passed to either `pcolormesh` if
        `density=True` or `scatter` if `density=False`

        """
        self._prep_polefig_axis(ref_axes=dataset.ref_axes)

        if density:
            X, Y, counts = _stats.point_density(
                *dataset.poles.transpose(),
                sphere_points=sphere_points,
                weights=dataset.weights if weighted else None,
            )
            return self.pcolormesh(
                X,
                Y,
                np.ma.masked_invalid(counts),
                shading=kwargs.pop("shading", "auto"),
                vmin=kwargs.pop("vmin", 0),
                vmax=vmax,
                **kwargs,
            )
        return self.scatter(
            *dataset.points.transpose(),
            s=kwargs.pop("s", 1),
            c=kwargs.pop("c", mpl.rcParams["axes.edgecolor"]),
            marker=kwargs.pop("marker", "."),
            alpha=kwargs.pop("alpha", 0.33),
            zorder=kwargs.pop("zorder", 11),
            **kwargs,
        )


register_projection(PoleFigureAxes)
