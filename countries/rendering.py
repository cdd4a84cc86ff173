# countries/rendering.py
import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Tuple

from django.conf import settings
from django.db.models import Max
from django.template.loader import render_to_string
from django.utils.module_loading import import_string
from PIL import Image, ImageDraw, ImageFont

from .models import Country


logger = logging.getLogger('countries')

SUMMARY_IMAGE_NAME = 'summary.png'
FALLBACK_NOTICE_NAME = 'summary.txt'
FALLBACK_NOTICE_TEXT = 'Summary image generation failed. Please try refreshing the data.'
WRITE_TEST_FILE_NAME = '.write-test'
CANVAS_SIZE = (800, 600)
TOP_COUNTRIES_LIMIT = 5


class RenderError(Exception):
    pass


class CacheDirectoryError(Exception):
    pass


class SummaryImageNotFound(Exception):
    pass


# ==============================================================================
# SUMMARY DATA
# ==============================================================================

@dataclass
class SummaryData:
    total_countries: int
    top_countries: List[Tuple[str, float]] = field(default_factory=list)
    last_refreshed_at: Optional[datetime] = None

    @property
    def last_refreshed_label(self) -> str:
        if self.last_refreshed_at is None:
            return 'Never'
        return self.last_refreshed_at.isoformat()

    @property
    def ranked_countries(self) -> List[Tuple[int, str, str]]:
        return [
            (rank, name, format_gdp(gdp))
            for rank, (name, gdp) in enumerate(self.top_countries, start=1)
        ]


def format_gdp(value) -> str:
    if value is None:
        return 'N/A'
    return f"${value:,.2f}"


def collect_summary_data(limit: int = TOP_COUNTRIES_LIMIT) -> SummaryData:
    """Reads the totals, top GDP countries and latest refresh from the store."""
    top_countries = (
        Country.objects.filter(estimated_gdp__isnull=False)
        .order_by('-estimated_gdp', 'id')
        .values_list('name', 'estimated_gdp')[:limit]
    )
    return SummaryData(
        total_countries=Country.objects.count(),
        top_countries=list(top_countries),
        last_refreshed_at=Country.objects.aggregate(last=Max('last_refreshed_at'))['last'],
    )


# ==============================================================================
# RENDERERS
# ==============================================================================

class PillowRenderer:
    """Draws the summary straight onto an 800x600 canvas with Pillow."""

    def __init__(self, font_path: Optional[str] = None):
        self.font_path = font_path if font_path is not None else settings.SUMMARY_FONT_PATH

    def _load_fonts(self):
        if self.font_path:
            try:
                return (
                    ImageFont.truetype(self.font_path, 32),
                    ImageFont.truetype(self.font_path, 24),
                    ImageFont.truetype(self.font_path, 18),
                )
            except OSError:
                logger.warning(f"Font not found at {self.font_path}. Falling back to default font.")
        default = ImageFont.load_default()
        return default, default, default

    def render(self, summary: SummaryData) -> bytes:
        title_font, header_font, text_font = self._load_fonts()
        try:
            img = Image.new('RGB', CANVAS_SIZE, color=(248, 249, 250))
            d = ImageDraw.Draw(img)

            y_pos = 40
            d.text((50, y_pos), "Countries Summary", fill=(44, 62, 80), font=title_font)
            y_pos += 60
            d.text((50, y_pos), f"Total Countries: {summary.total_countries}", fill=(0, 0, 0), font=header_font)
            y_pos += 60
            d.text((50, y_pos), "Top 5 Countries by GDP:", fill=(0, 0, 0), font=header_font)
            y_pos += 45

            if not summary.top_countries:
                d.text((70, y_pos), "No GDP data available.", fill=(120, 120, 120), font=text_font)
                y_pos += 35
            for rank, name, gdp in summary.ranked_countries:
                d.text((70, y_pos), f"{rank}. {name}: {gdp}", fill=(20, 20, 20), font=text_font)
                y_pos += 35

            d.text(
                (50, CANVAS_SIZE[1] - 60),
                f"Last Refreshed: {summary.last_refreshed_label}",
                fill=(102, 102, 102),
                font=text_font,
            )

            buffer = BytesIO()
            img.save(buffer, format='PNG')
        except (OSError, ValueError) as e:
            raise RenderError(f"Pillow could not draw the summary: {e}") from e
        return buffer.getvalue()


def render_summary_html(summary: SummaryData) -> str:
    return render_to_string('countries/summary.html', {
        'summary': summary,
        'width': CANVAS_SIZE[0],
        'height': CANVAS_SIZE[1],
    })


class HeadlessChromeRenderer:
    """
    Renders the HTML summary template and screenshots it with a headless
    Chrome/Chromium binary (settings.CHROME_EXECUTABLE).
    """

    def __init__(self, executable: Optional[str] = None):
        self.executable = executable or settings.CHROME_EXECUTABLE

    def render(self, summary: SummaryData) -> bytes:
        html = render_summary_html(summary)
        with tempfile.TemporaryDirectory(prefix='summary-') as workdir:
            html_path = Path(workdir) / 'summary.html'
            png_path = Path(workdir) / 'summary.png'
            html_path.write_text(html, encoding='utf-8')

            command = [
                self.executable,
                '--headless',
                '--disable-gpu',
                '--no-sandbox',
                '--hide-scrollbars',
                f'--screenshot={png_path}',
                f'--window-size={CANVAS_SIZE[0]},{CANVAS_SIZE[1]}',
                html_path.as_uri(),
            ]
            logger.debug(f"Running renderer: {' '.join(command)}")
            try:
                subprocess.run(command, check=True, capture_output=True)
            except (OSError, subprocess.CalledProcessError) as e:
                raise RenderError(f"{self.executable} failed to render the summary: {e}") from e

            try:
                content = png_path.read_bytes()
            except OSError as e:
                raise RenderError("Renderer exited without writing a screenshot") from e

        if not content:
            raise RenderError("Renderer produced an empty image")
        return content


def get_renderer():
    return import_string(settings.SUMMARY_RENDERER)()


# ==============================================================================
# CACHE DIRECTORY AND ARTIFACTS
# ==============================================================================

def cache_dir() -> Path:
    return Path(settings.SUMMARY_CACHE_DIR)


def summary_image_path() -> Path:
    return cache_dir() / SUMMARY_IMAGE_NAME


def prepare_cache_dir() -> Path:
    """Creates the cache directory and proves it is writable with a scratch file."""
    directory = cache_dir()
    try:
        directory.mkdir(parents=True, exist_ok=True)
        scratch = directory / WRITE_TEST_FILE_NAME
        scratch.write_text('test')
        scratch.unlink()
    except OSError as e:
        raise CacheDirectoryError(f"Cache directory {directory} is not writable: {e}") from e
    return directory


def _write_fallback_notice():
    try:
        directory = cache_dir()
        directory.mkdir(parents=True, exist_ok=True)
        (directory / FALLBACK_NOTICE_NAME).write_text(FALLBACK_NOTICE_TEXT)
        logger.info(f"Wrote fallback summary notice to {directory / FALLBACK_NOTICE_NAME}")
    except OSError as e:
        logger.error(f"Fallback summary creation failed: {e}", exc_info=True)


def generate_summary_image() -> Optional[Path]:
    """
    Renders the summary PNG into the cache directory.

    Never raises: on any failure the error is logged, a plain-text notice
    is written next to where the image would be, and None is returned.
    """
    logger.debug("Starting summary image generation...")
    try:
        directory = prepare_cache_dir()
        summary = collect_summary_data()
        content = get_renderer().render(summary)

        path = directory / SUMMARY_IMAGE_NAME
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix='.summary-', suffix='.png')
        try:
            with os.fdopen(fd, 'wb') as tmp:
                tmp.write(content)
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        (directory / FALLBACK_NOTICE_NAME).unlink(missing_ok=True)
        logger.info(f"Summary image successfully generated and saved to {path}")
        return path
    except Exception as e:
        # The refresh that triggered this has already been committed.
        logger.error(f"Failed to generate summary image: {e}", exc_info=True)
        _write_fallback_notice()
        return None


def read_summary_image() -> bytes:
    path = summary_image_path()
    try:
        return path.read_bytes()
    except FileNotFoundError:
        logger.warning(f"Summary image not found at {path}")
        raise SummaryImageNotFound(str(path))
