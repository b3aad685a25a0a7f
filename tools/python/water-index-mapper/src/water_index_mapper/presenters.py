"""
presenters.py
=============
Turn a :class:`~water_index_mapper.render.LayerPlan` into something a
person can look at.

``FoliumPresenter`` renders:
  - An interactive Leaflet map with one toggleable image overlay per layer
  - The region outline and a colour bar for every palette layer

``MatplotlibPresenter`` renders:
  - A static PNG with one panel per layer

Both consume the same plan, so analysis code never depends on a display
library.
"""

from __future__ import annotations

import base64
import io
import logging
import math
from abc import ABC, abstractmethod
from pathlib import Path

import branca.colormap as bc
import folium
import folium.raster_layers
import matplotlib
matplotlib.use("Agg")  # non-interactive backend safe for headless execution
import matplotlib.colors as mcolors
import matplotlib.pyplot as plt
import numpy as np
import numpy.typing as npt
from PIL import Image
from rasterio.warp import transform_bounds

from shared.python.exceptions import OutputWriteError
from shared.python.validators import Validators

from .render import LayerPlan, LayerRequest, parse_color, to_rgba

logger = logging.getLogger("beadedstreams.water_index_mapper.presenters")


def _rgba_to_png_b64(rgba: npt.NDArray[np.uint8]) -> str:
    """Encode an RGBA array as a base64 PNG string for ``ImageOverlay``."""
    img = Image.fromarray(rgba)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def _bounds_wgs84(request: LayerRequest) -> tuple[float, float, float, float]:
    """``(west, south, east, north)`` of the layer in EPSG:4326."""
    raster = request.raster
    if raster.crs is None:
        logger.warning("Layer '%s' has no CRS; treating its bounds as lon/lat.", request.label)
        return raster.bounds
    return transform_bounds(raster.crs, "EPSG:4326", *raster.bounds)


class LayerPresenter(ABC):
    """Something that can display a :class:`LayerPlan`."""

    @abstractmethod
    def present(self, plan: LayerPlan, output_path: Path) -> Path:
        """Draw *plan* and save it to *output_path*.

        Raises:
            OutputWriteError: If the output cannot be written.
        """


# ---------------------------------------------------------------------------
# Interactive Folium map
# ---------------------------------------------------------------------------


class FoliumPresenter(LayerPresenter):
    """Leaflet map saved as a standalone HTML file.

    Args:
        tiles: Basemap tile set name, passed directly to ``folium.Map``.
        default_zoom: Zoom used when the plan has no view.
    """

    def __init__(self, tiles: str = "CartoDB positron", default_zoom: int = 13) -> None:
        self.tiles = tiles
        self.default_zoom = default_zoom

    def build(self, plan: LayerPlan) -> folium.Map:
        """Return the folium map for *plan* without saving it."""
        if plan.view is not None:
            centre = [plan.view.center_lat, plan.view.center_lon]
            zoom = plan.view.zoom
        elif plan.region is not None:
            lon, lat = plan.region.centroid
            centre, zoom = [lat, lon], self.default_zoom
        elif plan.layers:
            w, s, e, n = _bounds_wgs84(plan.layers[0])
            centre, zoom = [(s + n) / 2.0, (w + e) / 2.0], self.default_zoom
        else:
            centre, zoom = [0.0, 0.0], 2
        m = folium.Map(location=centre, tiles=self.tiles, zoom_start=zoom)

        for request in plan.layers:
            w, s, e, n = _bounds_wgs84(request)
            url = "data:image/png;base64," + _rgba_to_png_b64(to_rgba(request))
            fg = folium.FeatureGroup(name=request.label, show=request.shown)
            folium.raster_layers.ImageOverlay(
                image=url,
                bounds=[[s, w], [n, e]],
                name=request.label,
            ).add_to(fg)
            fg.add_to(m)

            vis = request.vis
            if vis.palette is not None:
                colors = [mcolors.to_hex(parse_color(c)) for c in vis.palette]
                if len(colors) == 1:
                    colors = colors * 2
                lo, hi = vis.per_band("min", 1)[0], vis.per_band("max", 1)[0]
                bc.LinearColormap(colors, vmin=lo, vmax=hi, caption=request.label).add_to(m)

        if plan.region is not None:
            region_fg = folium.FeatureGroup(name=plan.region.label or "Region", show=True)
            folium.GeoJson(
                plan.region.to_geojson(),
                style_function=lambda _: {"color": "#e63946", "weight": 2, "fillOpacity": 0.0},
            ).add_to(region_fg)
            region_fg.add_to(m)

        folium.LayerControl(collapsed=False).add_to(m)
        return m

    def present(self, plan: LayerPlan, output_path: Path) -> Path:
        output_path = Path(output_path)
        Validators.assert_output_dir_writable(output_path)
        m = self.build(plan)
        try:
            m.save(str(output_path))
        except OSError as exc:
            raise OutputWriteError(str(output_path), str(exc)) from exc
        logger.info("Interactive map (%d layer(s)) → %s", len(plan), output_path)
        return output_path


# ---------------------------------------------------------------------------
# Static matplotlib figure
# ---------------------------------------------------------------------------


class MatplotlibPresenter(LayerPresenter):
    """PNG grid with one panel per shown layer.

    Args:
        columns: Panels per row.
        panel_size: Width and height of one panel in inches.
        dpi: Output resolution.
        include_hidden: Also draw layers added with ``shown=False``.
    """

    def __init__(
        self,
        columns: int = 3,
        panel_size: float = 4.0,
        dpi: int = 150,
        include_hidden: bool = False,
    ) -> None:
        Validators.assert_positive_int(columns, "columns")
        self.columns = columns
        self.panel_size = panel_size
        self.dpi = dpi
        self.include_hidden = include_hidden

    def present(self, plan: LayerPlan, output_path: Path) -> Path:
        output_path = Path(output_path)
        Validators.assert_output_dir_writable(output_path)
        layers = [l for l in plan.layers if l.shown or self.include_hidden]
        n = max(len(layers), 1)
        cols = min(self.columns, n)
        rows = math.ceil(n / cols)

        fig, axes = plt.subplots(
            rows, cols,
            figsize=(self.panel_size * cols, self.panel_size * rows),
            squeeze=False,
        )
        for ax in axes.flat:
            ax.set_axis_off()
        for ax, request in zip(axes.flat, layers):
            west, south, east, north = request.raster.bounds
            ax.imshow(to_rgba(request), extent=(west, east, south, north), interpolation="nearest")
            ax.set_title(request.label, fontsize=10)
        if not layers:
            axes.flat[0].text(0.5, 0.5, "No layers", ha="center", va="center")

        fig.tight_layout()
        try:
            fig.savefig(output_path, dpi=self.dpi)
        except OSError as exc:
            raise OutputWriteError(str(output_path), str(exc)) from exc
        finally:
            plt.close(fig)
        logger.info("Static figure (%d panel(s)) → %s", len(layers), output_path)
        return output_path
