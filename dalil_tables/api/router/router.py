from fastapi import APIRouter
from dalil_tables.api.Controller.TableController import router as table_router

# Create the main API router
api_router = APIRouter()

# Include all individual routers
api_router.include_router(table_router, tags=["Table Extraction"])
