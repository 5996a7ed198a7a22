import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dalil_tables import __version__
from dalil_tables.Common.Constants import API_HOST, API_PORT
from dalil_tables.api.router.router import api_router

# Create the main FastAPI app
app1 = FastAPI(
    title="Dalil Table Extraction Service",
    description="Table detection, reconstruction, cross-page merging and export for scanned documents",
    version=__version__
)

app1.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,  # Cache preflight requests for 24 hours
)

app1.include_router(api_router, prefix="/api/v1")

if __name__ == "__main__":
    uvicorn.run(
        "Main:app1",
        host=API_HOST,
        port=API_PORT,
        reload=True
    )
