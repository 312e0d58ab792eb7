from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routers import viewer

app = FastAPI(title="clab topology viewer API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(viewer.router)


@app.get("/api/health")
def health():
    return {"status": "ok"}
