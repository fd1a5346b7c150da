import os
import logging
import threading
from functools import partial
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer

from .errors import FolioError
from .watcher import Watcher

logger = logging.getLogger('folio.server')


class QuietHandler(SimpleHTTPRequestHandler):
    """Static file handler that logs requests through the folio logger."""

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


def create_server(directory, host='127.0.0.1', port=4000):
    handler = partial(QuietHandler, directory=directory)
    return ThreadingHTTPServer((host, port), handler)


def serve(folio, host='127.0.0.1', port=4000, watch=True):
    """
    Build, then serve the destination directory while rebuilding on change.

    The HTTP server runs in a background thread; the watcher (or a plain
    wait when ``watch`` is False) keeps the foreground.
    """
    watcher = Watcher(folio)
    try:
        folio.build()
    except (FolioError, IOError, OSError) as e:
        logger.error(f"Initial build failed, still serving: {e}")
    os.makedirs(folio.config.destination, exist_ok=True)

    httpd = create_server(folio.config.destination, host, port)
    thread = threading.Thread(target=httpd.serve_forever, name='folio-http', daemon=True)
    thread.start()
    logger.info(f"Serving {folio.config.destination} at http://{host}:{httpd.server_address[1]}/")

    try:
        if watch:
            watcher.run(initial_build=False)
        else:
            thread.join()
    except KeyboardInterrupt:
        logger.info("Stopping server")
    finally:
        watcher.stop()
        httpd.shutdown()
        httpd.server_close()
