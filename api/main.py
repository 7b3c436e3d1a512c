from fastapi import FastAPI, Request
from loguru import logger
from starlette.responses import JSONResponse

from api.routers import context_graph
from context_graph.exceptions import ContextGraphError

# Error kind -> HTTP status
STATUS_BY_KIND = {
    "NotFound": 404,
    "UnknownEntity": 404,
    "DuplicateId": 409,
    "DuplicateEdge": 409,
    "SelfLoop": 400,
    "UnsupportedOperator": 400,
    "InvalidParameter": 400,
    "Cancelled": 499,
    "ConvergenceFailure": 500,
}


async def context_graph_error_handler(request: Request, exc: ContextGraphError):
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    else:
        logger.debug(f"{request.method} {request.url.path} rejected: {exc.kind}: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


def create_app() -> FastAPI:
    app = FastAPI(
        title="Context Graph API",
        description="Analytics over the architecture context graph",
        version="0.1.0",
    )
    app.add_exception_handler(ContextGraphError, context_graph_error_handler)
    app.include_router(context_graph.router, prefix="/api", tags=["context-graph"])

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


app = create_app()
