from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

from nodectl.api.middleware import AuthMiddleware
from nodectl.api.routes import backends, containers, nodes, tasks
from nodectl.errors import (
    ConcurrencyConflict, LeaseTimeout, NodeNotFound, NodectlError,
    PreconditionFailure, ReconciliationFailure, TransportError,
)

load_dotenv()
app = FastAPI(title="nodectl")
app.add_middleware(AuthMiddleware)

app.include_router(nodes.router)
app.include_router(tasks.router)
app.include_router(containers.router)
app.include_router(backends.router)

_STATUS = (
    (NodeNotFound, 404),
    (PreconditionFailure, 409),
    (ConcurrencyConflict, 409),
    (LeaseTimeout, 423),
    (TransportError, 502),
    (ReconciliationFailure, 500),
)


@app.exception_handler(NodectlError)
async def orchestration_error(request: Request, exc: NodectlError):
    status = next((code for cls, code in _STATUS if isinstance(exc, cls)), 500)
    body = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, TransportError):
        body["kind"] = exc.kind
    if isinstance(exc, ReconciliationFailure) and exc.report is not None:
        body["report"] = exc.report
    return JSONResponse(status_code=status, content=body)


@app.exception_handler(ValueError)
async def invalid_request(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": "ValueError", "detail": str(exc)})
