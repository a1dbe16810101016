import io
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from PIL import Image, ImageDraw, ImageFont

from . import utils
from .exceptions import ArtifactNotFound, ArtifactRenderError


logger = logging.getLogger(__name__)

TOP_N = 5
UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class SummaryEntry:
    rank: int
    name: str
    indicator: str


@dataclass
class SummaryArtifact:
    total_count: int
    generated_at: datetime
    top: List[SummaryEntry] = field(default_factory=list)

    @property
    def generated_label(self):
        return self.generated_at.strftime("%Y-%m-%d %H:%M:%S UTC")


def format_indicator(value):
    if value is None:
        return UNAVAILABLE
    return f"{value:,.2f}"


class PillowRenderer:
    """Paints a SummaryArtifact onto a fixed-size PNG."""

    size = (800, 500)

    def _fonts(self):
        try:
            return ImageFont.truetype("arial.ttf", 28), ImageFont.truetype("arial.ttf", 20)
        except OSError:
            return ImageFont.load_default(), ImageFont.load_default()

    def render(self, summary):
        img = Image.new("RGB", self.size, color="white")
        draw = ImageDraw.Draw(img)
        font_title, font_body = self._fonts()

        # Header
        draw.text((20, 20), "Country Summary Report", fill="black", font=font_title)
        draw.text((20, 70), f"Total Countries: {summary.total_count}", fill="black", font=font_body)
        draw.text((20, 120), f"Top {TOP_N} Countries by Estimated GDP:", fill="black", font=font_body)

        y = 160
        if not summary.top:
            draw.text((40, y), "No GDP data available.", fill="gray", font=font_body)
        for entry in summary.top:
            colour = "gray" if entry.indicator == UNAVAILABLE else "blue"
            draw.text((40, y), f"{entry.rank}. {entry.name}: {entry.indicator}", fill=colour, font=font_body)
            y += 30

        # Timestamp
        draw.text((20, 400), f"Last Refresh: {summary.generated_label}", fill="black", font=font_body)

        buf = io.BytesIO()
        img.save(buf, "PNG")
        return buf.getvalue()


class SummaryArtifactBuilder:

    def __init__(self, renderer=None):
        self.renderer = renderer or PillowRenderer()

    def summarize(self, records, generated_at):
        records = list(records)
        # Stable sort: missing estimates rank below every known one.
        ranked = sorted(
            records,
            key=lambda c: (c.estimated_gdp is None, -(c.estimated_gdp or 0)),
        )[:TOP_N]
        return SummaryArtifact(
            total_count=len(records),
            generated_at=generated_at,
            top=[
                SummaryEntry(rank, c.name, format_indicator(c.estimated_gdp))
                for rank, c in enumerate(ranked, start=1)
            ],
        )

    def build(self, records, generated_at):
        summary = self.summarize(records, generated_at)
        try:
            return self.renderer.render(summary)
        except (OSError, ValueError, TypeError) as exc:
            raise ArtifactRenderError(str(exc)) from exc


class ArtifactSlot:
    """
    Single summary image on disk, replaced atomically on every write.

    Without an explicit path the location follows the CACHE_DIR setting.
    """

    def __init__(self, path=None):
        self._path = path

    @property
    def path(self):
        return self._path or utils.get_summary_image_path()

    def exists(self):
        return os.path.exists(self.path)

    def read(self):
        try:
            with open(self.path, "rb") as fh:
                return fh.read()
        except FileNotFoundError as exc:
            raise ArtifactNotFound() from exc

    def write(self, payload):
        directory = os.path.dirname(os.path.abspath(self.path))
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".summary-", suffix=".png")
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise ArtifactRenderError(f"Could not write {self.path}: {exc}") from exc
        logger.info("Summary image written to %s", self.path)
