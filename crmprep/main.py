import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crmprep.config import settings
from crmprep.routes.pipeline import router as pipeline_router

logging.basicConfig(level=settings.LOG_LEVEL)

app = FastAPI(title=settings.APP_NAME, version="1.0.0", debug=settings.DEBUG)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"message": f"{settings.APP_NAME} is running", "version": "1.0.0"}


@app.get("/health")
def health():
    return {"status": "healthy"}


app.include_router(pipeline_router)
