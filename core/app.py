"""Application routes served over every negotiated protocol."""

import logging

from tlsgate.http import PlainTextResponse, Request, Response

LOGGER = logging.getLogger("tlsgate.request")

SUCCESS_BODY = "success!\n"


def handle(request: Request) -> Response:
    """Answer ``GET /`` with a fixed body and everything else with 404."""
    if request.method == "GET" and request.path == "/":
        response: Response = PlainTextResponse(SUCCESS_BODY)
    else:
        response = Response(status_code=404)
    LOGGER.info("%s", response.status_line)
    return response


__all__ = ["handle", "SUCCESS_BODY"]
