"""
XML request templates for the Tally API.

Templates are Jinja2 files that render <ENVELOPE> requests for the Tally
HTTP API.
"""
from pathlib import Path
from jinja2 import Environment, FileSystemLoader

# Template directory
TEMPLATE_DIR = Path(__file__).parent

# Available templates
TEMPLATES = {
    "groups": "groups.xml.j2",
    "ledgers": "ledgers.xml.j2",
    "stock_items": "stock_items.xml.j2",
    "voucher_types": "voucher_types.xml.j2",
    "cost_centres": "cost_centres.xml.j2",
    "godowns": "godowns.xml.j2",
    "units": "units.xml.j2",
    "vouchers": "vouchers.xml.j2",
    "tdl_report": "tdl_report.xml.j2",
}

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
)


def get_template_path(name: str) -> Path:
    """Get path to a template file."""
    if name not in TEMPLATES:
        raise ValueError(f"Unknown template: {name}. Valid: {list(TEMPLATES.keys())}")
    return TEMPLATE_DIR / TEMPLATES[name]


def render(name: str, **context) -> str:
    """Render a named template."""
    get_template_path(name)
    return _env.get_template(TEMPLATES[name]).render(**context)
