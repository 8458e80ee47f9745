"""
Health check and status endpoints
"""
from fastapi import APIRouter
from datetime import datetime
from dental_vitals.config import get_settings
from dental_vitals import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status():
    """Get system status"""
    llm_configured = bool(
        settings.anthropic_api_key if settings.llm_provider == "anthropic" else settings.openai_api_key
    )
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "features": {
            "llm_insights": settings.enable_llm_insights and llm_configured,
            "llm_provider": settings.llm_provider,
            "scheduler": settings.enable_scheduler
        },
        "timestamp": datetime.utcnow().isoformat()
    }
