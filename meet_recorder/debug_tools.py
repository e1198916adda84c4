"""
Debug helpers for inspecting the meeting page.

Enabled with ``DEBUG=1`` (or ``debug: true`` in the bot config). They only
log or write files; none of them change what the bot does.
"""

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from meet_recorder.surface import AutomationSurface

logger = logging.getLogger(__name__)

DEBUG_OUTPUT_DIR = Path("/tmp/dout")

_MUTATION_LOGGER_JS = """
(sel) => {
    const target = document.querySelector(sel);
    if (!target) return false;
    const observer = new MutationObserver((mutations) => {
        console.log(`[DEBUG][DOM] ${mutations.length} mutation(s) on ${sel}`);
    });
    observer.observe(target, {attributes: true, childList: true, subtree: true, characterData: true});
    return true;
}
"""


async def dump_page_html(
    surface: "AutomationSurface",
    label: str,
    output_dir: Path = DEBUG_OUTPUT_DIR,
) -> Path:
    """Save the current page HTML as ``<output_dir>/pageContent-<label>-<ms>.html``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"pageContent-{label}-{int(time.time() * 1000)}.html"
    path.write_text(await surface.content(), encoding="utf-8")
    logger.info(f"[DEBUG][HTML] Snapshot saved: {path}")
    return path


async def attach_mutation_logger(surface: "AutomationSurface", selector: str = "body") -> bool:
    """Log DOM mutations under ``selector`` to the browser console."""
    attached = bool(await surface.evaluate(_MUTATION_LOGGER_JS, selector))
    if attached:
        logger.info(f"[DEBUG][DOM] Observer attached to {selector}")
    else:
        logger.info(f"[DEBUG][DOM] No element matches {selector}")
    return attached


def setup_network_logging(page) -> None:
    """Log every request and response of a Playwright page."""
    page.on("request", lambda req: logger.debug(f"[DEBUG][Network][Request] {req.method} {req.url}"))
    page.on("response", lambda res: logger.debug(f"[DEBUG][Network][Response] {res.status} {res.url}"))
