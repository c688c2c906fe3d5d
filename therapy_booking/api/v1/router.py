"""API v1 router configuration."""

from fastapi import APIRouter

from therapy_booking.api.v1.endpoints import (
    appointments,
    availability,
    health,
    payments,
    profiles,
    slots,
    time_slots,
)

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(time_slots.router, prefix="/time-slots", tags=["Time Slots"])
api_router.include_router(profiles.router, tags=["Profiles"])
api_router.include_router(availability.router, tags=["Availability"])
api_router.include_router(slots.router, tags=["Slots"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(payments.router, prefix="/payments", tags=["Payments"])
