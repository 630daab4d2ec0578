import json
import logging
import os
import threading
import urllib.error
import urllib.parse
import urllib.request
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from llm_config import DEFAULT_BASE_URL, DEFAULT_PROXY_PORT

logger = logging.getLogger("WikiDeck.proxy")

API_PREFIX = "/api/v1"
COMPLETIONS_PATH = API_PREFIX + "/chat/completions"
MOCK_FILE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "flashcard_mock.json")
ALLOWED_ORIGIN_HOSTS = ('localhost', '127.0.0.1', '::1')
FORWARD_TIMEOUT = 120

# Global server reference for shutdown
httpd = None


def load_mock_response(path=MOCK_FILE):
    """Loads the canned completion payload served in mock mode."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        logger.info(f"Mock data loaded from {os.path.basename(path)}")
        return data
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Error loading mock data: {e}")
        return {"choices": [{"message": {"content": json.dumps({"flashcards": []})}}]}


def is_allowed_origin(origin):
    """Only loopback pages may call the proxy cross-origin."""
    if not origin:
        return False
    try:
        parsed = urllib.parse.urlparse(origin)
        hostname = parsed.hostname
    except ValueError:
        return False
    if parsed.scheme not in ('http', 'https') or parsed.path not in ('', '/') or parsed.query:
        return False
    return hostname in ALLOWED_ORIGIN_HOSTS


def is_mock_request(path, headers):
    query = urllib.parse.parse_qs(urllib.parse.urlsplit(path).query)
    return query.get('mock', [''])[0] == 'true' or headers.get('X-Use-Mock') == 'true'


def normalize_completion_body(raw):
    """
    Some servers return message.content as a JSON object instead of a
    string. Re-encode it as a string so every backend looks like OpenAI.
    Bodies that are not JSON pass through untouched.
    """
    try:
        body = json.loads(raw)
        message = body['choices'][0]['message']
    except (ValueError, KeyError, IndexError, TypeError):
        return raw

    if isinstance(message, dict) and isinstance(message.get('content'), (dict, list)):
        message['content'] = json.dumps(message['content'])
        logger.info("Modified response to ensure content is a valid JSON string")
        return json.dumps(body).encode('utf-8')
    return raw


class ProxyHandler(BaseHTTPRequestHandler):
    target_url = DEFAULT_BASE_URL
    mock_response = None

    def log_message(self, format, *args):
        logger.debug("%s [%s] %s", self.address_string(), self.command, format % args)

    def send_cors_headers(self):
        origin = self.headers.get('Origin')
        if is_allowed_origin(origin):
            self.send_header('Access-Control-Allow-Origin', origin)
            self.send_header('Vary', 'Origin')

    def send_json(self, status, payload):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode('utf-8')
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(body)))
        self.send_cors_headers()
        self.end_headers()
        self.wfile.write(body)

    def do_OPTIONS(self):
        self.send_response(204)
        self.send_cors_headers()
        self.send_header('Access-Control-Allow-Methods', 'GET, POST, OPTIONS')
        self.send_header('Access-Control-Allow-Headers', 'Content-Type, Authorization, X-Use-Mock')
        self.end_headers()

    def do_GET(self):
        if urllib.parse.urlsplit(self.path).path == '/health':
            self.send_json(200, {"status": "ok", "mockModeAvailable": True})
        else:
            self.send_json(404, {"error": "Not found"})

    def do_POST(self):
        path = urllib.parse.urlsplit(self.path).path
        if not path.startswith(API_PREFIX + "/"):
            self.send_json(404, {"error": "Not found"})
            return

        try:
            content_length = int(self.headers.get('Content-Length') or 0)
        except ValueError:
            self.send_json(400, {"error": "Invalid Content-Length header"})
            return
        body = self.rfile.read(content_length)

        if path == COMPLETIONS_PATH and is_mock_request(self.path, self.headers):
            logger.info("Using MOCK response mode")
            if self.mock_response is None:
                type(self).mock_response = load_mock_response()
            self.send_json(200, self.mock_response)
            return

        self.forward(path, body)

    def upstream_url(self, path):
        query = urllib.parse.urlsplit(self.path).query
        url = self.target_url.rstrip('/') + path[len(API_PREFIX):]
        return f"{url}?{query}" if query else url

    def forward(self, path, body):
        url = self.upstream_url(path)
        headers = {'Content-Type': self.headers.get('Content-Type', 'application/json')}
        if self.headers.get('Authorization'):
            headers['Authorization'] = self.headers['Authorization']

        logger.info(f"Proxying request to inference server: POST {url}")
        req = urllib.request.Request(url, data=body, headers=headers, method='POST')
        try:
            with urllib.request.urlopen(req, timeout=FORWARD_TIMEOUT) as response:
                status = response.status
                raw = response.read()
        except urllib.error.HTTPError as e:
            status = e.code
            raw = e.read()
        except (urllib.error.URLError, OSError) as e:
            logger.error(f"Proxy error: {e}")
            self.send_response(500)
            self.send_header('Content-Type', 'text/plain; charset=utf-8')
            self.send_cors_headers()
            self.end_headers()
            self.wfile.write(f"Proxy Error: {getattr(e, 'reason', e)}".encode('utf-8'))
            return

        logger.info(f"Received response from inference server: {status}")
        if path == COMPLETIONS_PATH and status == 200:
            raw = normalize_completion_body(raw)
        self.send_json(status, raw)


def create_server(port=DEFAULT_PROXY_PORT, target_url=DEFAULT_BASE_URL, host='localhost'):
    ProxyHandler.target_url = target_url
    ProxyHandler.mock_response = load_mock_response()
    return ThreadingHTTPServer((host, port), ProxyHandler)


def run_server(port=DEFAULT_PROXY_PORT, target_url=DEFAULT_BASE_URL):
    global httpd
    try:
        httpd = create_server(port, target_url)
    except OSError as e:
        raise OSError(f"Port {port} is already in use or unavailable: {e}") from e

    logger.info(f"Proxy server running on http://localhost:{port}")
    logger.info(f"Forwarding requests from http://localhost:{port}{API_PREFIX} to {target_url}")
    logger.info("Mock mode available: add ?mock=true to URL or set X-Use-Mock header to 'true'")
    try:
        httpd.serve_forever()
    finally:
        httpd.server_close()


def start_in_background(port=DEFAULT_PROXY_PORT, target_url=DEFAULT_BASE_URL):
    """Starts the proxy on a daemon thread and returns the server."""
    global httpd
    httpd = create_server(port, target_url)
    threading.Thread(target=httpd.serve_forever, daemon=True).start()
    return httpd


def stop_server():
    global httpd
    if httpd:
        httpd.shutdown()
        httpd.server_close()
        httpd = None
