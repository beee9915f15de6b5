from fastapi import FastAPI

from wellio.api.auth import router as auth_router
from wellio.api.clients import router as clients_router
from wellio.api.engagement import router as engagement_router
from wellio.api.goals import router as goals_router
from wellio.api.logs import router as logs_router
from wellio.api.progress import router as progress_router
from wellio.api.smart_logs import router as smart_logs_router
from wellio.api.webhooks import router as webhooks_router
from wellio.db.session import create_tables

app = FastAPI(title="Wellio")


@app.on_event("startup")
def on_startup() -> None:
    create_tables()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api")
def api_root() -> dict[str, str]:
    return {"service": "Wellio API", "status": "ok"}


app.include_router(auth_router)
app.include_router(clients_router)
app.include_router(goals_router)
app.include_router(logs_router)
app.include_router(smart_logs_router)
app.include_router(progress_router)
app.include_router(engagement_router)
app.include_router(webhooks_router)
