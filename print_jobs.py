"""
Print orchestration for single and batched report cards.

A print run has two phases. `PrintJob.render()` renders every card into
one A4 document and returns it once rendering is complete; only then may
`PrintJob.emit()` open an output surface, write the document and trigger
printing. The trigger waits for the document's own load event.
"""

import logging
import time

from flask import Response, render_template
from markupsafe import Markup

from report_render import render_result_card

logger = logging.getLogger(__name__)

PRINT_CSS = """
@page { size: A4; margin: 12mm; }
* { box-sizing: border-box; margin: 0; padding: 0; }
html, body { -webkit-print-color-adjust: exact; print-color-adjust: exact; color-adjust: exact; }
body { font-family: 'Times New Roman', Times, serif; font-size: 11pt; color: #000; }
table { width: 100%; border-collapse: collapse; }
th, td { border: 1px solid #000; padding: 3px 5px; text-align: center; }
th { background: #1a5276; color: #fff; font-weight: bold; }
.left { text-align: left; }
.section-title { font-size: 10pt; font-weight: bold; text-align: center; background: #d5e8f0; border: 1px solid #000; padding: 3px; margin: 4px 0 0; }
.result-page { page-break-inside: avoid; }
.page-break { page-break-after: always; break-after: page; }
"""

PRINT_TRIGGER = (
    "<script>window.addEventListener('load', function () "
    "{ window.focus(); window.print(); });</script>"
)

IDLE = 'idle'
RENDERING = 'rendering'
READY = 'ready'
EMITTED = 'emitted'


class PrintError(Exception):
    """A print run could not be completed."""


class PrintSurfaceError(PrintError):
    """The host refused to open an output surface."""


class PrintCancelled(PrintError):
    pass


class PrintTimeout(PrintError):
    pass


class HtmlResponseSurface:
    """Output surface backed by an HTTP response opened in a new browser tab."""

    def __init__(self, title):
        self.title = title
        self.html = ''
        self.print_requested = False

    def write(self, html):
        self.html += str(html)

    def print(self):
        self.print_requested = True
        if '</body>' in self.html:
            self.html = self.html.replace('</body>', PRINT_TRIGGER + '</body>', 1)
        else:
            self.html += PRINT_TRIGGER

    def response(self):
        return Response(self.html, mimetype='text/html')


def open_response_surface(title, enabled=True):
    if not enabled:
        return None
    return HtmlResponseSurface(title)


class PrintJob:
    """One print run over one or many cards."""

    def __init__(self, title, cards, render_card=render_result_card, timeout=None, clock=time.monotonic):
        self.title = title
        self.cards = list(cards or [])
        self.render_card = render_card
        self.timeout = timeout
        self.clock = clock
        self.state = IDLE
        self.document = None
        self.page_count = 0
        self._cancelled = False

    def cancel(self):
        self._cancelled = True
        if self.state in (RENDERING, READY):
            self.state = IDLE
            self.document = None

    def _check_deadline(self, started):
        if self._cancelled:
            raise PrintCancelled('Print run was cancelled.')
        if self.timeout is not None and self.clock() - started > self.timeout:
            raise PrintTimeout(f"Rendering took longer than {self.timeout} seconds.")

    def render(self):
        """Render every card into one document; returns it when rendering is done."""
        if self.state == RENDERING:
            raise PrintError('This print run is already rendering.')
        if not self.cards:
            raise PrintError('Select at least one student to print.')
        self.state = RENDERING
        self._cancelled = False
        started = self.clock()
        pages = []
        try:
            for card in self.cards:
                self._check_deadline(started)
                pages.append(Markup(self.render_card(card)))
            self._check_deadline(started)
            self.document = render_template(
                'results/print_document.html',
                title=self.title,
                pages=pages,
                print_css=Markup(PRINT_CSS),
            )
        except Exception:
            self.state = IDLE
            self.document = None
            raise
        self.page_count = len(pages)
        self.state = READY
        return self.document

    def emit(self, open_surface):
        """Hand the rendered document to a fresh output surface and trigger printing."""
        if self.state != READY:
            raise PrintError('The document must finish rendering before it is printed.')
        surface = open_surface(self.title)
        if surface is None:
            self.state = IDLE
            raise PrintSurfaceError('Could not open the print window. Allow pop-ups for this site and try again.')
        surface.write(self.document)
        surface.print()
        self.state = EMITTED
        logger.info("Print run '%s' emitted with %d document(s)", self.title, self.page_count)
        return surface

    def run(self, open_surface):
        self.render()
        return self.emit(open_surface)
