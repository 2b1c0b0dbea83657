"""
Read-only HTTP status page for the SNTP server.
GET /       - HTML summary, refreshed from /stats every second
GET /stats  - JSON counters from ServerStats
"""

import logging
import time

from flask import Flask, jsonify
from waitress import serve

logger = logging.getLogger(__name__)

# Counter name -> label shown in the HTML table
STAT_LABELS = [
    ('requests_received', 'Requests received'),
    ('responses_sent', 'Responses sent'),
    ('malformed', 'Malformed (short) requests'),
    ('invalid_format', 'Invalid header requests'),
    ('receive_errors', 'Receive errors'),
    ('send_errors', 'Send errors'),
    ('last_client', 'Last client'),
    ('last_request_str', 'Last request'),
    ('uptime_seconds', 'Uptime (s)'),
]


def get_stats_table_html():
    rows = "\n".join(
        f'          <tr><th>{label}</th><td id="{key}">--</td></tr>'
        for key, label in STAT_LABELS
    )
    return f"""
        <table>
{rows}
        </table>
    """


def get_javascript_html():
    return """
    <script>
      async function refresh() {
        try {
          const resp = await fetch('/stats');
          const data = await resp.json();
          for (const [key, value] of Object.entries(data)) {
            const cell = document.getElementById(key);
            if (cell) { cell.textContent = value; }
          }
        } catch (e) {
          console.error('stats fetch failed', e);
        }
      }
      refresh();
      setInterval(refresh, 1000);
    </script>
    """


def create_app(stats):
    """Build the Flask app around a ServerStats instance."""
    app = Flask(__name__)

    @app.route('/stats')
    def get_stats():
        data_to_send = stats.snapshot()

        # Format last-request timestamp
        if data_to_send.get('last_request_time'):
            data_to_send['last_request_str'] = time.strftime(
                '%Y-%m-%d %H:%M:%S',
                time.localtime(data_to_send['last_request_time'])
            )
        else:
            data_to_send['last_request_str'] = 'N/A'
        return jsonify(data_to_send)

    @app.route('/')
    def index_page():
        return f"""
    <!DOCTYPE html>
    <html lang="en">
      <head>
        <meta charset="UTF-8">
        <title>SNTP Server Status</title>
        <style>
          body {{
            font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif;
            margin: 20px;
            background-color: #f0f2f5;
            color: #333;
          }}
          .container {{
            background-color: #fff;
            max-width: 600px;
            margin: 0 auto;
            padding: 20px 30px;
            border-radius: 10px;
          }}
          th {{ text-align: left; padding-right: 20px; }}
        </style>
      </head>
      <body>
        <div class="container">
          <h1>SNTP Server Status</h1>
          {get_stats_table_html()}
        </div>
        {get_javascript_html()}
      </body>
    </html>
    """

    return app


def run_dashboard(stats, host, port):
    """Serve the dashboard with Waitress; blocks until interrupted."""
    app = create_app(stats)
    logger.info("Starting status dashboard at http://%s:%s", host, port)
    serve(app, host=host, port=port, threads=2)
