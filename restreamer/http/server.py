"""
HTTP server for the restreamer.

Endpoints:
- GET  /              health check
- GET  /status        supervisor snapshot
- POST /start-stream  start (or restart) streaming, optional {"streamKey": "..."}

Every response allows cross-origin use; OPTIONS answers preflights.
"""

import concurrent.futures
import json
import logging
import socketserver
import threading
import time
from http.server import BaseHTTPRequestHandler
from typing import Optional

from restreamer.config import RestreamConfig
from restreamer.encoder.stream_supervisor import StreamSupervisor

logger = logging.getLogger(__name__)

HEALTH_MESSAGE = "YouTube Video Streamer is running"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def make_handler(
    supervisor: StreamSupervisor,
    config: RestreamConfig,
    start_time: Optional[float] = None,
):
    """Create a RestreamHandler class bound to the supervisor and config."""

    class RestreamHandler(BaseHTTPRequestHandler):
        """HTTP request handler for restreamer endpoints."""

        def __init__(self, *args, **kwargs):
            self.supervisor = supervisor
            self.config = config
            self.start_time = start_time or time.time()
            super().__init__(*args, **kwargs)

        def do_GET(self):
            try:
                if self.path == "/":
                    self._send_json(200, {"status": "healthy", "message": HEALTH_MESSAGE})
                elif self.path == "/status":
                    self._handle_status()
                else:
                    self._send_json(404, {"error": "Not Found"})
            except Exception as e:
                logger.error(f"Error handling GET {self.path}: {e}", exc_info=True)
                self._send_json(500, {"error": "Something broke!"})

        def do_POST(self):
            try:
                if self.path == "/start-stream":
                    self._handle_start_stream()
                else:
                    self._send_json(404, {"error": "Not Found"})
            except Exception as e:
                logger.error(f"Error handling POST {self.path}: {e}", exc_info=True)
                self._send_json(500, {"error": "Something broke!"})

        def do_OPTIONS(self):
            """CORS preflight."""
            self.send_response(204)
            self._send_cors_headers()
            self.send_header("Content-Length", "0")
            self.end_headers()

        def _handle_status(self):
            response = self.supervisor.snapshot()
            response["uptime_seconds"] = time.time() - self.start_time
            self._send_json(200, response)

        def _handle_start_stream(self):
            """Handle POST /start-stream."""
            content_length = int(self.headers.get("Content-Length", 0) or 0)
            body = self.rfile.read(content_length) if content_length > 0 else b""

            data = {}
            if body.strip():
                try:
                    data = json.loads(body.decode("utf-8"))
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    self._send_json(400, {"error": f"Invalid JSON: {e}"})
                    return
                if not isinstance(data, dict):
                    self._send_json(400, {"error": "Request body must be a JSON object"})
                    return

            stream_key = data.get("streamKey")
            if stream_key is not None and not isinstance(stream_key, str):
                self._send_json(400, {"error": "'streamKey' must be a string"})
                return
            stream_key = stream_key or self.config.stream_key
            if not stream_key:
                self._send_json(400, {"error": "Missing stream key"})
                return

            stream = self.config.stream_config(stream_key)
            future = self.supervisor.start_stream(stream)
            try:
                video = future.result(timeout=self.config.start_timeout_sec)
            except concurrent.futures.TimeoutError:
                logger.error(
                    f"Stream did not start within {self.config.start_timeout_sec}s"
                )
                self._send_json(500, {"error": "Timed out waiting for stream to start"})
                return
            except Exception as e:
                logger.error(f"Error starting stream: {e}")
                self._send_json(500, {"error": str(e)})
                return

            self._send_json(200, {"message": "Stream started successfully", "video": video})

        def _send_json(self, status_code: int, payload: dict):
            body = json.dumps(payload).encode("utf-8")
            self.send_response(status_code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self._send_cors_headers()
            self.end_headers()
            self.wfile.write(body)

        def _send_cors_headers(self):
            for name, value in CORS_HEADERS.items():
                self.send_header(name, value)

        def log_message(self, format, *args):
            """Override to use our logger instead of stderr."""
            logger.debug(f"{self.address_string()} - {format % args}")

    return RestreamHandler


class ThreadingHTTPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """
    Threaded HTTP server.

    Each request runs on its own thread, so a POST /start-stream waiting for
    ffmpeg does not block health checks.
    """
    allow_reuse_address = True
    daemon_threads = True


class RestreamHTTPServer:
    """HTTP trigger for the stream supervisor."""

    def __init__(
        self,
        host: str,
        port: int,
        supervisor: StreamSupervisor,
        config: RestreamConfig,
        start_time: Optional[float] = None,
    ):
        """
        Initialize HTTP server.

        Args:
            host: Host to bind to
            port: Port to bind to (0 picks a free port)
            supervisor: StreamSupervisor that start requests are sent to
            config: Restreamer config (default stream key, start timeout)
            start_time: Service start time (for uptime calculation)
        """
        self.host = host
        self.port = port
        self.supervisor = supervisor
        self.config = config
        self.start_time = start_time or time.time()
        self.server: Optional[ThreadingHTTPServer] = None
        self.server_thread: Optional[threading.Thread] = None
        self._shutdown = False

    def start(self) -> None:
        """Bind and start serving in a background thread."""
        if self.server is not None:
            raise RuntimeError("Server already started")

        handler_class = make_handler(self.supervisor, self.config, start_time=self.start_time)
        self.server = ThreadingHTTPServer((self.host, self.port), handler_class)
        self.port = self.server.server_address[1]

        self.server_thread = threading.Thread(
            target=self._run_server,
            daemon=True,
            name="HTTPServer",
        )
        self.server_thread.start()

        logger.info(f"Server running on port {self.port}")

    def _run_server(self):
        try:
            self.server.serve_forever()
        except Exception as e:
            if not self._shutdown:
                logger.error(f"HTTP server error: {e}")

    def stop(self) -> None:
        """Stop HTTP server."""
        if self.server is None:
            return

        self._shutdown = True
        self.server.shutdown()
        self.server.server_close()

        if self.server_thread:
            self.server_thread.join(timeout=2.0)

        self.server = None
        self.server_thread = None
        logger.info("HTTP server stopped")
