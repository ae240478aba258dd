import logging

from flask import jsonify, make_response, render_template
from jinja2 import TemplateError

log = logging.getLogger(__name__)

MARKUP_TEMPLATE = 'activity.html'

# Columns per session row for each dashboard view
LAYOUT_COLUMNS = {
    'full': 2,
    'half_horizontal': 2,
    'half_vertical': 1,
    'quadrant': 1,
}


class RenderError(Exception):
    """Raised when the markup template cannot be loaded or executed."""


def render_json(page):
    return jsonify(page)


def render_markup(page, layout='full'):
    """
    Renders the display page into the dashboard markup. The template is
    rendered completely before a response exists, so a failure never
    produces partial output.
    """
    try:
        body = render_template(
            MARKUP_TEMPLATE,
            page=page,
            layout=layout,
            columns=LAYOUT_COLUMNS.get(layout, 1),
        )
    except TemplateError as e:
        raise RenderError(f"Could not render {MARKUP_TEMPLATE}: {e}") from e

    response = make_response(body)
    response.headers['Content-Type'] = 'text/html; charset=utf-8'
    return response


def render_page(page, output_format, layout='full'):
    if output_format == 'json':
        return render_json(page)
    return render_markup(page, layout)
