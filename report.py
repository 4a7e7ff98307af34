"""
M365 Sizing - Report Rendering
Renders the sizing result to a static HTML file and serves the latest one
"""

import json
import logging
import os
import pathlib
from datetime import datetime

from flask import Flask, render_template, jsonify, send_file

from analyzer import format_size
from config import OUTPUT_DIR, WORKLOADS, FORECAST_YEARS
from models import SizingResult

logger = logging.getLogger(__name__)

# Get absolute path for templates
BASE_DIR = pathlib.Path(__file__).parent.absolute()

app = Flask(__name__, template_folder=str(BASE_DIR / "templates"))
app.config["OUTPUT_DIR"] = OUTPUT_DIR

REPORT_PREFIX = "M365_Sizing_Report_"
DATA_FILE = "data.json"

# Cached data.json for the viewer
_data_cache = None


@app.template_filter("filesize")
def filesize_filter(value) -> str:
    return format_size(value)


@app.template_filter("percent")
def percent_filter(value) -> str:
    return f"{value:+d}%" if isinstance(value, int) else f"{value}%"


def render_report(result: SizingResult, output_dir: str = OUTPUT_DIR) -> str:
    """
    Render the HTML report for a sizing result

    Returns the path of the written file
    """
    os.makedirs(output_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output_path = os.path.join(output_dir, f"{REPORT_PREFIX}{timestamp}.html")

    with app.app_context():
        html = render_template(
            "report.html",
            result=result,
            workloads=[result.workload(name) for name in WORKLOADS],
            forecast_years=FORECAST_YEARS,
        )

    with open(output_path, "w", encoding="utf-8") as f:
        f.write(html)

    logger.info("Report written to %s", output_path)
    return os.path.abspath(output_path)


def save_result_json(result: SizingResult, output_dir: str = OUTPUT_DIR) -> str:
    """Save the sizing record as data.json next to the reports"""
    os.makedirs(output_dir, exist_ok=True)
    output_path = os.path.join(output_dir, DATA_FILE)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, indent=2, default=str)
    return os.path.abspath(output_path)


def latest_report_path(output_dir: str):
    """Newest rendered report in output_dir, or None"""
    if not os.path.isdir(output_dir):
        return None
    reports = sorted(
        name for name in os.listdir(output_dir)
        if name.startswith(REPORT_PREFIX) and name.endswith(".html")
    )
    if not reports:
        return None
    return os.path.abspath(os.path.join(output_dir, reports[-1]))


def load_static_data() -> dict:
    """Load the last saved data.json"""
    global _data_cache

    if _data_cache is not None:
        return _data_cache

    data_path = os.path.join(app.config["OUTPUT_DIR"], DATA_FILE)
    if os.path.exists(data_path):
        with open(data_path, "r", encoding="utf-8") as f:
            _data_cache = json.load(f)
    else:
        _data_cache = {}

    return _data_cache


@app.route("/")
def view_report():
    """Serve the most recent rendered report"""
    path = latest_report_path(app.config["OUTPUT_DIR"])
    if not path:
        return jsonify({"error": "No report available. Run run_sizing.py first."}), 404
    return send_file(path, mimetype="text/html")


@app.route("/api/sizing")
def api_sizing():
    """Sizing record of the last run"""
    data = load_static_data()
    if not data:
        return jsonify({"error": "No data available. Run run_sizing.py first."}), 404
    return jsonify(data)


@app.route("/api/refresh")
def api_refresh():
    """Reload data.json from disk"""
    global _data_cache
    _data_cache = None
    load_static_data()
    return jsonify({"status": "ok", "message": "Data reloaded from file"})


if __name__ == "__main__":
    print("Serving the latest M365 sizing report...")
    print("Open http://localhost:5000 in your browser")
    app.run(port=5000)
