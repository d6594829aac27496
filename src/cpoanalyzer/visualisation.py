"""> CPO Analyzer: Visualisation of pole figure datasets."""

from cmcrameri import cm as cmc
from matplotlib import projections as mproj
from matplotlib import pyplot as plt

from cpoanalyzer import axes as _axes
from cpoanalyzer import io as _io
from cpoanalyzer import logger as _log
from cpoanalyzer import records as _records

# Get default figure size for easy referencing and scaling.
DEFAULT_FIG_WIDTH, DEFAULT_FIG_HEIGHT = plt.rcParams["figure.figsize"]
# Make sure we have the required matplotlib "projections" (really just Axes subclasses).
if "cpoanalyzer.polefigure" not in mproj.get_projection_names():
    _log.warning(
        "failed to find cpoanalyzer.polefigure projection; it should be registered in %s",
        _axes,
    )

COLORMAPS = {
    "Batlow": cmc.batlow,
    "Vik": cmc.vik,
    "Imola": cmc.imola,
    "Hawaii": cmc.hawaii,
    "Roma": cmc.roma,
    "Simple": plt.get_cmap("Greys"),
}
"""Colour maps for the supported `color_scale` names.

All except `Simple` are from <https://www.fabiocrameri.ch/colourmaps/>.

"""


def header_text(dataset):
    """Get a description of the particle shown in a pole figure grid.

    Returns a list of lines, the first one describes the particle and its position.
    The second line gives the percentages of the full elastic tensor norm per symmetry
    class (e.g. `hex%`), the third their shares of the anisotropic part (e.g. `h/a%`).

    """
    selection = dataset.selection
    lines = [
        f"id={selection.particle_id}, time={dataset.time:.5e}, grains={dataset.n_grains}"
    ]
    info = dataset.particle_info
    if info is None:
        return lines
    lines[0] += ", position=({:.3e}:{:.3e}:{:.3e})".format(*info.position)
    if info.olivine_deformation_type is not None:
        lines[0] += f", ODT={info.olivine_deformation_type:.4f}"
    percentages = info.anisotropy_percentages()
    if "anisotropic" in percentages:
        lines[0] += f", anisotropic%={percentages['anisotropic']:.4f}"
    lines.append(_percentages_line(percentages, lambda name: f"{name[:3]}%"))
    shares = info.anisotropic_shares()
    if shares:
        lines.append(_percentages_line(shares, lambda name: f"{name[0]}/a%"))
    return lines


def _percentages_line(percentages, label):
    return ", ".join(
        "{}={}".format(label(name), ",".join(f"{v:.2f}" for v in percentages[name]))
        for name in _records.SYMMETRY_CLASSES
        if name in percentages
    )


def polefigure_grid(datasets, params, savefile=None):
    """Plot a grid of pole figures for one particle at one time.

    Minerals are shown in rows and crystallographic axes in columns, in order of their
    first appearance in `datasets`. Densities are estimated with
    `cpoanalyzer.stats.point_density` and share one colour scale per mineral. The
    `params` are the `[pole_figures]` configuration parameters, which choose the colour
    scale, counting grid resolution, figure size and description text.

    Returns the path to the saved figure, or the figure itself if `savefile` is None.

    """
    minerals = list(dict.fromkeys(d.selection.mineral for d in datasets))
    axes = list(dict.fromkeys(d.selection.axis for d in datasets))
    by_selection = {(d.selection.mineral, d.selection.axis): d for d in datasets}

    scale = 0.6 if params["small_figure"] else 1.0
    fig = plt.figure(
        figsize=(
            scale * DEFAULT_FIG_WIDTH * len(axes) / 2,
            scale * DEFAULT_FIG_HEIGHT * (len(minerals) + 0.5) / 2,
        ),
        layout="constrained",
    )
    if params["elastisity_header"] and not params["no_description_text"]:
        fig.suptitle("\n".join(header_text(datasets[0])), fontsize="x-small")

    cmap = COLORMAPS[params["color_scale"]]
    for i, mineral in enumerate(minerals):
        row_axes = []
        row_meshes = []
        for j, axis in enumerate(axes):
            dataset = by_selection.get((mineral, axis))
            if dataset is None:
                continue
            ax = fig.add_subplot(
                len(minerals),
                len(axes),
                i * len(axes) + j + 1,
                projection="cpoanalyzer.polefigure",
            )
            row_meshes.append(
                ax.polefigure(
                    dataset,
                    density=True,
                    sphere_points=params["sphere_points"],
                    cmap=cmap,
                )
            )
            row_axes.append(ax)
            if not params["no_description_text"]:
                ax.set_title(f"{mineral.label} {axis.label}", fontsize="small")
        # Share the colour scale along each mineral row.
        row_max = max(float(m.get_array().max()) for m in row_meshes)
        for mesh in row_meshes:
            mesh.set_clim(0, row_max)
        fig.colorbar(
            row_meshes[-1], ax=row_axes, fraction=0.05, label=f"max {row_max:.2f}"
        )

    if savefile is None:
        return fig
    path = _io.resolve_path(savefile)
    fig.savefig(path)
    plt.close(fig)
    return path

