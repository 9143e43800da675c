import asyncio
import json
import logging
import os
import socket
import threading
from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlparse


logger = logging.getLogger(__name__)

# short routes so the frontend pages can be opened without ".html"
PAGE_ALIASES = {
    "/live": "live.html",
    "/settings": "settings.html",
    "/editor": "editor.html",
    "/history": "history.html",
}


class FileWriteError(Exception): ...


class HTTPHandler(SimpleHTTPRequestHandler):
    """This handler uses server.base_path instead of always using os.getcwd()"""

    def translate_path(self, path):
        self.directory = self.server.base_path
        return SimpleHTTPRequestHandler.translate_path(self, path)

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def end_headers(self):
        self.send_cors_headers()
        SimpleHTTPRequestHandler.end_headers(self)

    def send_cors_headers(self):
        headers = getattr(self, "headers", None)
        origin = headers.get("Origin") if headers is not None else None
        if origin and self.server.allow_origin:
            self.send_header("Access-Control-Allow-Origin", origin)
            self.send_header("Vary", "Origin")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, PUT, DELETE, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type, Authorization, X-Requested-With")
        self.send_header("Access-Control-Allow-Credentials", "true")

    def send_json(self, code: int, obj):
        body = bytes(json.dumps(obj), "utf8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def send_error(self, code: int, message: str = None, explain: str = None):
        if message is None:
            message = HTTPStatus(code).phrase
        logger.debug("HTTP %d for %s: %s", code, getattr(self, "path", "?"), message)
        self.close_connection = True
        self.send_json(code, {"error": message})

    def write_json_file(self, file_path: str, json_object, error_message_os: str = ""):
        """Tries to write `json_object` to `file_path`, creating parent directories.\n
        If it fails because of `OSError`, it will respond to the HTTP request automatically
        using `error_message_os` and then raise a `FileWriteError`."""
        if error_message_os: error_message_os += ' '
        try:
            os.makedirs(os.path.dirname(file_path) or ".", exist_ok=True)
            with open(file_path, 'w', encoding="utf-8") as file:
                file.write(json.dumps(json_object, indent=2, ensure_ascii=False))

        except OSError as e:
            logger.error("Could not write %s: %s", file_path, e)
            self.send_error(500, f"(Server Error) Could not write to {error_message_os}file: {e.strerror or e}")
            raise FileWriteError

    def do_OPTIONS(self):
        self.send_response(204)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_POST_save(self):
        try:
            content_length = int(self.headers.get("Content-Length", 0))
        except ValueError:
            self.send_error(400, "Invalid Content-Length.")
            return
        post_data_raw = self.rfile.read(content_length)

        try:
            post_data = json.loads(post_data_raw)
        except ValueError:
            self.send_error(400, "Content Type should be JSON.")
            return

        try:
            name = post_data["name"]
            root = post_data["root"]
            data = post_data["data"]
            assert isinstance(name, str) and name and isinstance(root, str) and root
            assert data is not None
        except (KeyError, TypeError, AssertionError):
            self.send_error(400, "JSON object needs to have attributes: 'name', 'root', 'data'.")
            return

        file_path = os.path.join(root, name)
        logger.debug("Saving config file: %s", file_path)
        try:
            self.write_json_file(file_path, data, "config")
        except FileWriteError: return

        logger.info("Config file saved: %s", file_path)
        self.send_json(200, {
            "success": True,
            "message": "Config file saved.",
            "path": file_path,
        })

    def do_POST(self):
        path = urlparse(self.path).path
        logger.debug("[POST] %s", path)

        if path == self.server.save_endpoint:
            self.do_POST_save()
        else:
            self.send_error(404, "Invalid post URI.")

    def do_GET(self):
        path = urlparse(self.path).path

        if path == "/":
            self.path = "/" + self.server.index
        elif path.rstrip("/") in PAGE_ALIASES:
            self.path = "/" + PAGE_ALIASES[path.rstrip("/")]

        SimpleHTTPRequestHandler.do_GET(self)


class HTTPServer(ThreadingHTTPServer):
    """The main server, you pass in base_path which is the path you want to serve requests from"""

    def __init__(self, base_path, server_address, index="index.html", save_endpoint="/api/save",
                 allow_origin=True, RequestHandlerClass=HTTPHandler):
        self.base_path = base_path
        self.index = index
        self.save_endpoint = save_endpoint
        self.allow_origin = allow_origin
        if ":" in server_address[0]:
            self.address_family = socket.AF_INET6
        ThreadingHTTPServer.__init__(self, server_address, RequestHandlerClass)

    def server_bind(self):
        if self.address_family == socket.AF_INET6:
            # the IPv4 listener is bound separately
            self.socket.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        ThreadingHTTPServer.server_bind(self)


class HTTPListener:
    """Runs an `HTTPServer` in a daemon thread and exposes the same
    ``close()`` / ``await wait_closed()`` pair as a websockets server."""

    def __init__(self, server: HTTPServer):
        self.server = server
        self._thread = None
        self._closed = None

    @property
    def address(self):
        return self.server.server_address

    def start(self):
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self._thread.start()

    def close(self):
        if self._closed is not None:
            return
        loop = asyncio.get_running_loop()
        self._closed = asyncio.Event()

        def shutdown():
            if self._thread is not None:
                self.server.shutdown()
            self.server.server_close()
            loop.call_soon_threadsafe(self._closed.set)

        # shutdown() blocks until serve_forever returns, keep it off the loop
        threading.Thread(target=shutdown, daemon=True).start()

    async def wait_closed(self):
        if self._closed is None:
            self.close()
        await self._closed.wait()


def make_http_server(config, host: str) -> HTTPServer:
    return HTTPServer(
        config.root,
        (host, config.port),
        index=config.index,
        save_endpoint=config.save_endpoint,
        allow_origin=config.origin,
    )
