#!/usr/bin/env python3
"""
Mock SPA development server for trying the proxy locally.

Serves a tiny index page and a script, and echoes anything under /echo so the
forwarded method, headers and body can be inspected.

Run with: python scripts/mock_dev_server.py
Listens on: http://localhost:5173
"""
from __future__ import annotations

from datetime import datetime

from fastapi import FastAPI, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse
import uvicorn

app = FastAPI(title="Mock SPA Dev Server", description="Stand-in for a front-end hot-reload server")

INDEX_HTML = """<!doctype html>
<html>
  <head><script type="module" src="/app/main.js"></script></head>
  <body><div id="root">mock dev server</div></body>
</html>
"""


def log_request(request: Request):
    """Log what arrived from the proxy."""
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] {request.method} {request.url.path} | Host: {request.headers.get('host')}")


@app.get("/")
async def index(request: Request):
    log_request(request)
    return HTMLResponse(INDEX_HTML)


@app.get("/app/main.js")
async def main_js(request: Request):
    log_request(request)
    return Response(content="console.log(1)", media_type="application/javascript")


@app.api_route("/echo/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def echo(request: Request, path: str):
    """Echo the request back as JSON."""
    log_request(request)
    body = await request.body()
    return JSONResponse({
        "method": request.method,
        "path": f"/echo/{path}",
        "query": request.url.query,
        "headers": dict(request.headers),
        "body": body.decode("utf-8", errors="replace"),
    })


if __name__ == "__main__":
    print("\nMock SPA Dev Server")
    print("=" * 50)
    print("Listening on http://localhost:5173")
    print("Endpoints:")
    print("  GET  /             - index page")
    print("  GET  /app/main.js  - script bundle")
    print("  ANY  /echo/...     - echoes the request")
    print("=" * 50 + "\n")

    uvicorn.run(app, host="127.0.0.1", port=5173, log_level="warning")
