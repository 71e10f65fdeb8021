from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

import convene.models  # noqa: F401  register every table on Base.metadata
from convene.api.routes.fixtures import router as fixtures_router
from convene.api.routes.inbox import router as inbox_router
from convene.api.routes.invites import router as invites_router
from convene.api.routes.one_to_many import router as one_to_many_router
from convene.errors import SchedulingError, scheduling_error_handler
from convene.logging_config import configure_logging
from convene.tracing import configure_tracing

# ------------------------------------------------------------------
# Configure Observability
# ------------------------------------------------------------------
configure_logging()
configure_tracing()

app = FastAPI(title="convene", version="0.1.0")

app.include_router(one_to_many_router)
app.include_router(invites_router)
app.include_router(inbox_router)
app.include_router(fixtures_router)

app.add_exception_handler(SchedulingError, scheduling_error_handler)

# ------------------------------------------------------------------
# Observability
# ------------------------------------------------------------------
FastAPIInstrumentor.instrument_app(app)
Instrumentator().instrument(app).expose(app)


# ------------------------------------------------------------------
# Health Check
# ------------------------------------------------------------------
@app.get("/health")
def health_check():
    return {"status": "ok"}
