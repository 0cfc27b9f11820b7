from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from notesync import config
from notesync.api import auth, notes, realtime

config.configure_logging()

app = FastAPI(title="Collaborative Notes API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(notes.router)
app.include_router(realtime.router)


@app.get("/health")
def health():
    return {"ok": True}
