import logging
import uvicorn
from fastapi import FastAPI
from .routers import callbacks, payments, students
from .db import init_db
from .config import settings
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Course Payments Service")

# CORS - allow your app domain(s)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # change to your frontend domains in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(payments.router)
app.include_router(callbacks.router)
app.include_router(students.router)

@app.on_event("startup")
async def on_startup():
    # init db tables if not using migrations
    await init_db()

if __name__ == "__main__":
    uvicorn.run("coursepay.main:app", host=settings.app_host, port=settings.app_port, reload=(settings.env != "production"))
