import ctypes
import gc
import logging
from functools import wraps

logger = logging.getLogger(__name__)


def trim_now() -> None:
    """Force a GC and ask glibc to release arenas back to the OS."""
    gc.collect()
    try:
        libc = ctypes.CDLL("libc.so.6")
        libc.malloc_trim(0)
    except (OSError, AttributeError):
        # Not fatal on non-glibc platforms
        logger.debug("malloc_trim unavailable on this platform")


def _trim_after_stream(content):
    try:
        yield from content
    finally:
        trim_now()


def trim_memory_after(view_func):
    @wraps(view_func)
    def _wrapped(request, *args, **kwargs):
        response = None
        try:
            response = view_func(request, *args, **kwargs)
        finally:
            if getattr(response, "streaming", False):
                # Proxied fonts are sent after we return; trim once the body is out.
                response.streaming_content = _trim_after_stream(response.streaming_content)
            elif request.method == "POST":
                # Crawls are POSTs.
                trim_now()
        return response
    return _wrapped
