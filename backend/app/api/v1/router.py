"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import reservations, documents, checklists, vehicles

router = APIRouter()

# Reservation lifecycle
router.include_router(reservations.router)

# Return paperwork and checklists, nested under a reservation
router.include_router(documents.reservation_router)
router.include_router(checklists.reservation_router)

# Fleet registry
router.include_router(vehicles.router)

# Collaborator endpoints addressed by their own ids
router.include_router(documents.router)
router.include_router(checklists.router)
